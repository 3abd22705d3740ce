"""Work order, job line and technician punch routes."""

from typing import Any, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.core.auth import require_staff
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db
from repair_desk.intelligence.maintenance_rules import compute_maintenance_suggestions, get_cached_suggestions
from repair_desk.schemas.common import ListResponse
from repair_desk.schemas.work_order import JobPunchOut, WorkOrderDetail, WorkOrderLineOut, WorkOrderOut
from repair_desk.services import work_order_service

router = APIRouter(prefix="/work-orders", tags=["Work Orders"])


class WorkOrderCreate(BaseModel):
    customer_id: int | None = None
    vehicle_id: int | None = None
    notes: str | None = None
    odometer_km: float | None = None


class LineCreate(BaseModel):
    description: str
    complaint: str | None = None
    job_type: str | None = None
    labor_hours: float | None = None
    labor_rate: float | None = None
    price: float | None = None
    parts: list[dict[str, Any]] | None = None
    section: str | None = None
    inspection_status: str | None = None
    title: str | None = None
    ai_summary: str | None = None
    service_code: str | None = None


class MenuLineCreate(BaseModel):
    work_order_id: int | None = None
    menu_item_id: int | None = None
    labor_hours: float | None = None


class AssignAllRequest(BaseModel):
    work_order_id: int | None = None
    tech_id: int | None = None
    only_unassigned: bool = True


class PunchRequest(BaseModel):
    technician_id: int | None = None


class VoidRequest(BaseModel):
    mode: Literal["delete", "void"] = "void"
    reason: str | None = None
    disposition: str | None = None
    note: str | None = None


class StoryUpdate(BaseModel):
    cause: str | None = None
    correction: str | None = None
    labor_time: float | None = None


@router.post("", response_model=WorkOrderOut, status_code=201)
def api_create_work_order(
    payload: WorkOrderCreate,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return work_order_service.create_work_order(
        db,
        customer_id=payload.customer_id,
        vehicle_id=payload.vehicle_id,
        notes=payload.notes,
        odometer_km=payload.odometer_km,
        shop_id=profile.shop_id,
        created_by=profile.id,
    )


@router.get("", response_model=ListResponse[WorkOrderOut])
def api_list_work_orders(
    status: str | None = None,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return ListResponse(items=work_order_service.list_work_orders(db, status=status, shop_id=profile.shop_id))


@router.post("/assign-all")
def api_assign_all(
    payload: AssignAllRequest,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return work_order_service.assign_all(
        db,
        payload.work_order_id,
        payload.tech_id,
        only_unassigned=payload.only_unassigned,
        caller=profile,
    )


@router.post("/lines/from-menu", response_model=WorkOrderLineOut, status_code=201)
def api_add_line_from_menu(
    payload: MenuLineCreate,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return work_order_service.add_line_from_menu(
        db,
        payload.work_order_id,
        payload.menu_item_id,
        labor_hours=payload.labor_hours,
        shop_id=profile.shop_id,
    )


@router.post("/lines/{line_id}/approve", response_model=WorkOrderLineOut)
def api_approve_line(line_id: int, profile: Profile = Depends(require_staff), db: Session = Depends(get_db)):
    return work_order_service.decide_line(db, line_id, "approve", shop_id=profile.shop_id)


@router.post("/lines/{line_id}/decline", response_model=WorkOrderLineOut)
def api_decline_line(line_id: int, profile: Profile = Depends(require_staff), db: Session = Depends(get_db)):
    return work_order_service.decide_line(db, line_id, "decline", shop_id=profile.shop_id)


@router.post("/lines/{line_id}/delete-or-void")
def api_delete_or_void_line(
    line_id: int,
    payload: VoidRequest,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return work_order_service.delete_or_void_line(
        db,
        line_id,
        payload.mode,
        payload.reason,
        disposition=payload.disposition,
        note=payload.note,
        caller=profile,
    )


@router.patch("/lines/{line_id}/story", response_model=WorkOrderLineOut)
def api_update_line_story(
    line_id: int,
    payload: StoryUpdate,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return work_order_service.update_line_story(
        db,
        line_id,
        cause=payload.cause,
        correction=payload.correction,
        labor_time=payload.labor_time,
        shop_id=profile.shop_id,
    )


@router.post("/lines/{line_id}/punch-in", response_model=JobPunchOut, status_code=201)
def api_punch_in(
    line_id: int,
    payload: PunchRequest | None = None,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    technician_id = payload.technician_id if payload else None
    return work_order_service.punch_in(db, line_id, technician_id=technician_id, caller=profile)


@router.post("/punch-out", response_model=JobPunchOut)
def api_punch_out(
    payload: PunchRequest | None = None,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    technician_id = payload.technician_id if payload else None
    return work_order_service.punch_out(db, technician_id=technician_id, caller=profile)


@router.get("/{work_order_id}", response_model=WorkOrderDetail)
def api_get_work_order(work_order_id: int, profile: Profile = Depends(require_staff), db: Session = Depends(get_db)):
    return work_order_service.get_work_order(db, work_order_id, shop_id=profile.shop_id)


@router.post("/{work_order_id}/lines", response_model=WorkOrderLineOut, status_code=201)
def api_add_line(
    work_order_id: int,
    payload: LineCreate,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return work_order_service.add_line(db, work_order_id, shop_id=profile.shop_id, **payload.model_dump())


@router.post("/{work_order_id}/invoice", response_model=WorkOrderOut)
def api_invoice_work_order(
    work_order_id: int,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return work_order_service.invoice_work_order(db, work_order_id, shop_id=profile.shop_id)


@router.post("/{work_order_id}/maintenance-suggestions")
def api_compute_maintenance_suggestions(
    work_order_id: int,
    mode: Literal["normal", "severe"] = "severe",
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    suggestions = compute_maintenance_suggestions(db, work_order_id, shop_id=profile.shop_id, mode=mode)
    return {"work_order_id": work_order_id, "suggestions": suggestions}


@router.get("/{work_order_id}/maintenance-suggestions")
def api_get_maintenance_suggestions(
    work_order_id: int,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return get_cached_suggestions(db, shop_id=profile.shop_id, work_order_id=work_order_id)
