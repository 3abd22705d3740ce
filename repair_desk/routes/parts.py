"""Parts inventory and part request routes."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.core.auth import require_staff
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db
from repair_desk.schemas.common import ListResponse
from repair_desk.schemas.parts import AllocationOut, PartOut, PartRequestItemOut, PartRequestOut
from repair_desk.services import parts_service

router = APIRouter(tags=["Parts"])


class PartCreate(BaseModel):
    name: str
    sku: str | None = None
    unit_cost: float | None = None
    unit_price: float | None = None
    quantity_on_hand: float = 0


class StockAdjustment(BaseModel):
    qty: float
    reason: str = "adjustment"


class AllocationRequest(BaseModel):
    line_id: int
    part_id: int
    qty: float


class ApproveWithParts(BaseModel):
    parts: list[dict[str, Any]]
    note: str | None = None
    create_request_when_missing: bool = True


class PartRequestCreate(BaseModel):
    work_order_id: int
    work_order_line_id: int | None = None
    notes: str | None = None
    items: list[dict[str, Any]]


class PartRequestStatusUpdate(BaseModel):
    status: str


class ItemQuote(BaseModel):
    quoted_price: float


@router.post("/parts", response_model=PartOut, status_code=201)
def api_create_part(payload: PartCreate, profile: Profile = Depends(require_staff), db: Session = Depends(get_db)):
    return parts_service.create_part(db, shop_id=profile.shop_id, **payload.model_dump())


@router.get("/parts", response_model=ListResponse[PartOut])
def api_list_parts(
    search: str | None = None,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return ListResponse(items=parts_service.list_parts(db, search=search, shop_id=profile.shop_id))


@router.post("/parts/{part_id}/adjust", response_model=PartOut)
def api_adjust_stock(
    part_id: int,
    payload: StockAdjustment,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return parts_service.adjust_stock(db, part_id, payload.qty, reason=payload.reason, shop_id=profile.shop_id)


@router.post("/parts/allocate", response_model=AllocationOut, status_code=201)
def api_allocate_part(
    payload: AllocationRequest,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return parts_service.allocate_part(db, payload.line_id, payload.part_id, payload.qty, shop_id=profile.shop_id)


@router.post("/work-orders/lines/{line_id}/approve-with-parts")
def api_approve_line_with_parts(
    line_id: int,
    payload: ApproveWithParts,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return parts_service.approve_line_with_parts(
        db,
        line_id,
        payload.parts,
        note=payload.note,
        create_request_when_missing=payload.create_request_when_missing,
        shop_id=profile.shop_id,
        requested_by=profile.id,
    )


@router.post("/part-requests", response_model=PartRequestOut, status_code=201)
def api_create_part_request(
    payload: PartRequestCreate,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return parts_service.create_part_request(
        db,
        payload.work_order_id,
        payload.items,
        work_order_line_id=payload.work_order_line_id,
        notes=payload.notes,
        shop_id=profile.shop_id,
        requested_by=profile.id,
    )


@router.get("/part-requests", response_model=ListResponse[PartRequestOut])
def api_list_part_requests(
    status: str | None = None,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return ListResponse(items=parts_service.list_part_requests(db, status=status, shop_id=profile.shop_id))


@router.patch("/part-requests/{request_id}/status", response_model=PartRequestOut)
def api_update_part_request_status(
    request_id: int,
    payload: PartRequestStatusUpdate,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return parts_service.update_part_request_status(db, request_id, payload.status, shop_id=profile.shop_id)


@router.post("/part-requests/{request_id}/items/{item_id}/quote", response_model=PartRequestItemOut)
def api_quote_part_request_item(
    request_id: int,
    item_id: int,
    payload: ItemQuote,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return parts_service.quote_part_request_item(
        db,
        request_id,
        item_id,
        payload.quoted_price,
        shop_id=profile.shop_id,
    )
