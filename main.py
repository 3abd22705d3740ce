"""FastAPI entrypoint for the Repair Desk backend.

This file stays small so feature modules can be added cleanly:
- `repair_desk/routes/` for API and webhook endpoints
- `repair_desk/services/` for business logic
- `repair_desk/db/` for SQLAlchemy models and session management
- `repair_desk/scheduler/` for APScheduler jobs
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from repair_desk.core.config import SCHEDULER_ENABLED
from repair_desk.core.exceptions import register_exception_handlers
from repair_desk.core.middleware import RequestContextMiddleware
from repair_desk.db.init_db import init_db
from repair_desk.routes import (
    agent,
    ai,
    billing,
    customers,
    fleet,
    inspections,
    maintenance,
    messaging,
    parts,
    planner,
    portal,
    reports,
    shop_boost,
    work_orders,
)
from repair_desk.scheduler.reminder_scheduler import start_scheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Initialize app resources before serving traffic."""
    init_db()
    logger.info("Database tables initialized.")

    scheduler = None
    if SCHEDULER_ENABLED:
        try:
            scheduler = start_scheduler()
        except Exception:
            logger.exception("Failed to start scheduler.")
            scheduler = None

    yield

    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shut down.")


app = FastAPI(
    title="Repair Desk API",
    version="0.1.0",
    description="Multi-tenant repair shop backend: work orders, scheduling, fleet, billing and AI assistants.",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)
register_exception_handlers(app)

app.include_router(customers.router)
app.include_router(work_orders.router)
app.include_router(parts.router)
app.include_router(inspections.router)
app.include_router(portal.router)
app.include_router(maintenance.router)
app.include_router(ai.router)
app.include_router(agent.router)
app.include_router(planner.router)
app.include_router(billing.router)
app.include_router(fleet.router)
app.include_router(messaging.router)
app.include_router(shop_boost.router)
app.include_router(reports.router)


@app.get("/", tags=["health"])
def root() -> dict[str, str]:
    """Simple status endpoint for uptime checks."""
    return {"status": "Repair Desk Running"}
