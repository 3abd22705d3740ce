"""Inspection templates and sessions."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.core.auth import require_staff
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db
from repair_desk.schemas.common import ListResponse
from repair_desk.schemas.parts import InspectionSessionOut, InspectionTemplateOut
from repair_desk.services import inspection_service

router = APIRouter(prefix="/inspections", tags=["Inspections"])


class TemplateCreate(BaseModel):
    name: str
    sections: list[dict[str, Any]] = []


class SessionStart(BaseModel):
    work_order_id: int
    template_id: int | None = None


class ItemsSave(BaseModel):
    items: list[dict[str, Any]]


@router.post("/templates", response_model=InspectionTemplateOut, status_code=201)
def api_create_template(
    payload: TemplateCreate,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return inspection_service.create_template(db, payload.name, payload.sections, shop_id=profile.shop_id)


@router.get("/templates", response_model=ListResponse[InspectionTemplateOut])
def api_list_templates(profile: Profile = Depends(require_staff), db: Session = Depends(get_db)):
    return ListResponse(items=inspection_service.list_templates(db, shop_id=profile.shop_id))


@router.post("/sessions", response_model=InspectionSessionOut, status_code=201)
def api_start_session(
    payload: SessionStart,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return inspection_service.start_session(
        db,
        payload.work_order_id,
        template_id=payload.template_id,
        shop_id=profile.shop_id,
    )


@router.get("/sessions/{session_id}", response_model=InspectionSessionOut)
def api_get_session(session_id: int, profile: Profile = Depends(require_staff), db: Session = Depends(get_db)):
    return inspection_service.get_session(db, session_id, shop_id=profile.shop_id)


@router.put("/sessions/{session_id}/items", response_model=InspectionSessionOut)
def api_save_items(
    session_id: int,
    payload: ItemsSave,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return inspection_service.save_items(db, session_id, payload.items, shop_id=profile.shop_id)


@router.post("/sessions/{session_id}/complete")
def api_complete_session(session_id: int, profile: Profile = Depends(require_staff), db: Session = Depends(get_db)):
    return inspection_service.complete_session(db, session_id, shop_id=profile.shop_id)
