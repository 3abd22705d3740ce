"""Agent and planner runs with numbered event logs streamed over SSE."""

import json
import logging
import time
from collections.abc import Callable, Iterator
from typing import Any, Final

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.ai.adapter import PLANNER_KINDS, get_planner
from repair_desk.core.config import SSE_POLL_INTERVAL_SECONDS
from repair_desk.core.domain_exceptions import DomainException, bad_request, not_found
from repair_desk.db.models import AgentEvent, AgentRun, PlannerEvent, PlannerRun, Profile

logger = logging.getLogger(__name__)

# kind -> (run model, event model, default planner)
RUN_MODELS: Final[dict[str, tuple[type, type, str]]] = {
    "agent": (AgentRun, AgentEvent, "simple"),
    "planner": (PlannerRun, PlannerEvent, "openai"),
}
SSE_HEADERS: Final[dict[str, str]] = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


class EventEmitter:
    """Appends events with consecutive step numbers, committing each one."""

    def __init__(self, db: Session, event_model: type, run_id: int):
        self.db = db
        self.event_model = event_model
        self.run_id = run_id
        self.finalized = False
        self.step = db.scalar(
            select(func.coalesce(func.max(event_model.step), 0)).where(event_model.run_id == run_id)
        ) or 0

    def __call__(self, kind: str, payload: Any) -> None:
        self.step += 1
        self.finalized = self.finalized or kind == "final"
        content = {"kind": kind, **payload} if isinstance(payload, dict) else payload
        try:
            self.db.add(self.event_model(run_id=self.run_id, step=self.step, kind=kind, content=content))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to record %s event step=%s run_id=%s", kind, self.step, self.run_id)


def _find_by_key(db: Session, run_model: type, idempotency_key: str, shop_id: int):
    return db.scalar(
        select(run_model)
        .where(run_model.shop_id == shop_id)
        .where(run_model.idempotency_key == idempotency_key)
    )


def start_run(
    db: Session,
    kind: str,
    goal: str | None,
    planner: str | None = None,
    context: dict | None = None,
    idempotency_key: str | None = None,
    *,
    profile: Profile,
) -> dict:
    """Create a run, execute its planner inline and record the outcome."""
    run_model, event_model, default_planner = RUN_MODELS[kind]
    goal = (goal or "").strip()
    if not goal:
        raise bad_request("goal required")
    planner = planner or default_planner
    if planner not in PLANNER_KINDS:
        raise bad_request(f"Unknown planner: {planner}")
    if context is not None and not isinstance(context, dict):
        raise bad_request("context must be an object")
    context = context or {}
    idempotency_key = (idempotency_key or "").strip() or None
    shop_id = profile.shop_id

    if idempotency_key:
        existing = _find_by_key(db, run_model, idempotency_key, shop_id)
        if existing is not None:
            return {"run_id": existing.id, "already_exists": True}

    run = run_model(
        shop_id=shop_id,
        user_id=profile.id,
        goal=goal,
        planner=planner,
        context=context,
        idempotency_key=idempotency_key,
    )
    try:
        db.add(run)
        db.commit()
        db.refresh(run)
    except IntegrityError:
        db.rollback()
        existing = _find_by_key(db, run_model, idempotency_key, shop_id) if idempotency_key else None
        if existing is None:
            raise
        return {"run_id": existing.id, "already_exists": True}

    logger.info("Started %s run_id=%s planner=%s", kind, run.id, planner)
    emit = EventEmitter(db, event_model, run.id)
    emit("plan", {"text": f"Started {planner} planner"})

    try:
        get_planner(planner).run(db, goal, context, shop_id=shop_id, user_id=profile.id, emit=emit)
    except Exception as exc:
        db.rollback()
        message = exc.message if isinstance(exc, DomainException) else str(exc) or type(exc).__name__
        logger.exception("%s run_id=%s failed", kind, run.id)
        emit("final", {"text": f"Planner failed: {message}"})
        _finish(db, run, "failed")
        return {"run_id": run.id, "status": "failed", "error": message}

    if not emit.finalized:
        emit("final", {"text": "Planner finished."})
    _finish(db, run, "succeeded")
    return {"run_id": run.id, "status": "succeeded"}


def _finish(db: Session, run, status: str) -> None:
    try:
        run.status = status
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def get_run(db: Session, kind: str, run_id: int, *, shop_id: int):
    run_model = RUN_MODELS[kind][0]
    run = db.scalar(select(run_model).where(run_model.id == run_id).where(run_model.shop_id == shop_id))
    if run is None:
        raise not_found("Run not found")
    return run


def list_events(db: Session, kind: str, run_id: int, after_step: int = 0) -> list:
    event_model = RUN_MODELS[kind][1]
    return list(
        db.scalars(
            select(event_model)
            .where(event_model.run_id == run_id)
            .where(event_model.step > after_step)
            .order_by(event_model.step)
        )
    )


def parse_last_event_id(raw: str | None) -> int:
    try:
        return max(0, int((raw or "").strip()))
    except ValueError:
        return 0


def format_event(step: int, kind: str, content: Any) -> str:
    data = content if isinstance(content, dict) else {"kind": kind, "content": content}
    return f"id: {step}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def stream_events(
    session_factory: Callable[[], Session],
    kind: str,
    run_id: int,
    last_event_id: int = 0,
    poll_interval: float = SSE_POLL_INTERVAL_SECONDS,
) -> Iterator[str]:
    """Backfill events after `last_event_id`, then poll until the run leaves `running`."""
    run_model = RUN_MODELS[kind][0]
    last_step = last_event_id
    try:
        while True:
            db = session_factory()
            try:
                # Status first: a finished run has already committed its final event.
                status = db.scalar(select(run_model.status).where(run_model.id == run_id))
                events = list_events(db, kind, run_id, after_step=last_step)
            finally:
                db.close()

            for event in events:
                last_step = event.step
                yield format_event(event.step, event.kind, event.content)

            if status != "running":
                return
            time.sleep(poll_interval)
    except SQLAlchemyError as exc:
        logger.exception("Event stream failed for %s run_id=%s", kind, run_id)
        yield f"event: error\ndata: {json.dumps({'message': str(exc)})}\n\n"
