"""Agent run routes: start a run and stream its events over SSE."""

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, Header
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.core.auth import require_staff
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db, get_session_factory
from repair_desk.services import run_service


class RunCreate(BaseModel):
    goal: str | None = None
    planner: str | None = None
    context: Any = None
    idempotency_key: str | None = None


def build_run_router(kind: str, prefix: str, tag: str) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.post("/runs")
    def api_start_run(
        payload: RunCreate,
        profile: Profile = Depends(require_staff),
        db: Session = Depends(get_db),
    ):
        return run_service.start_run(
            db,
            kind,
            payload.goal,
            planner=payload.planner,
            context=payload.context,
            idempotency_key=payload.idempotency_key,
            profile=profile,
        )

    @router.get("/runs/{run_id}")
    def api_get_run(run_id: int, profile: Profile = Depends(require_staff), db: Session = Depends(get_db)):
        run = run_service.get_run(db, kind, run_id, shop_id=profile.shop_id)
        return {
            "id": run.id,
            "goal": run.goal,
            "planner": run.planner,
            "status": run.status,
            "context": run.context,
        }

    @router.get("/runs/{run_id}/events")
    def api_stream_events(
        run_id: int,
        last_event_id: str | None = Header(default=None),
        profile: Profile = Depends(require_staff),
        db: Session = Depends(get_db),
        session_factory: Callable[[], Session] = Depends(get_session_factory),
    ):
        run_service.get_run(db, kind, run_id, shop_id=profile.shop_id)
        return StreamingResponse(
            run_service.stream_events(
                session_factory,
                kind,
                run_id,
                last_event_id=run_service.parse_last_event_id(last_event_id),
            ),
            media_type="text/event-stream",
            headers=run_service.SSE_HEADERS,
        )

    return router


router = build_run_router("agent", "/agent", "Agent")
