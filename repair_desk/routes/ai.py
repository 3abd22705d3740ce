"""AI assistant routes."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.ai import assistant
from repair_desk.core.auth import require_staff
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db

router = APIRouter(prefix="/ai", tags=["AI"])


class ChatRequest(BaseModel):
    vehicle: dict[str, Any] | None = None
    prompt: str | None = None
    dtc_code: str | None = None
    image_data: str | None = None
    context: str | None = None


class LineSuggestionRequest(BaseModel):
    line_id: int | None = None
    work_order_id: int | None = None


@router.post("/chat")
def api_chat(payload: ChatRequest, profile: Profile = Depends(require_staff)):
    return assistant.chat(
        payload.vehicle,
        prompt=payload.prompt,
        dtc_code=payload.dtc_code,
        image_data=payload.image_data,
        context=payload.context,
    )


@router.post("/lines/{line_id}/cause-correction")
def api_suggest_cause_correction(
    line_id: int,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return assistant.suggest_cause_correction(db, line_id, shop_id=profile.shop_id)


@router.post("/suggest-lines")
def api_suggest_lines(
    payload: LineSuggestionRequest,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    suggestions = assistant.suggest_lines(
        db,
        line_id=payload.line_id,
        work_order_id=payload.work_order_id,
        shop_id=profile.shop_id,
    )
    return {"suggestions": suggestions}


@router.post("/lines/{line_id}/apply-quote")
def api_apply_ai_quote(
    line_id: int,
    suggestion: dict[str, Any],
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return assistant.apply_ai_quote(db, line_id, suggestion, shop_id=profile.shop_id)


@router.get("/tech-summary")
def api_tech_summary(
    time_range: str = "monthly",
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return assistant.tech_summary(db, time_range=time_range, shop_id=profile.shop_id)
