"""Customer portal: availability, bookings, requests and quote helpers."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.core.auth import get_current_profile, get_portal_customer
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db
from repair_desk.schemas.booking import BookingOut
from repair_desk.schemas.common import ListResponse
from repair_desk.schemas.work_order import QuoteLineOut, WorkOrderOut
from repair_desk.services import booking_service, portal_service

router = APIRouter(prefix="/portal", tags=["Portal"])


class BookingCreate(BaseModel):
    shop_slug: str | None = None
    starts_at: str | None = None
    ends_at: str | None = None
    notes: str | None = None
    vehicle_id: int | None = None


class BookingUpdate(BaseModel):
    status: str | None = None
    starts_at: str | None = None
    ends_at: str | None = None
    notes: str | None = None


class RequestStart(BaseModel):
    visit_type: str | None = None
    starts_at: str | None = None
    duration_minutes: int | None = None
    vehicle_id: int | None = None
    notes: str | None = None


class QuoteOnly(BaseModel):
    work_order_id: int | None = None
    description: str | None = None
    notes: str | None = None
    qty: float | None = None


class ComplaintQuery(BaseModel):
    work_order_id: int | None = None
    complaint: str | None = None


@router.get("/availability")
def api_availability(
    shop_slug: str = Query(...),
    start: str = Query(..., description="Y-M-D in the shop's timezone"),
    end: str = Query(..., description="Y-M-D in the shop's timezone"),
    slot_minutes: int | None = None,
    db: Session = Depends(get_db),
):
    return booking_service.compute_availability(db, shop_slug, start, end, slot_minutes)


@router.post("/bookings", response_model=BookingOut, status_code=201)
def api_create_booking(
    payload: BookingCreate,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    customer = get_portal_customer(db, profile)
    return booking_service.create_booking(
        db,
        payload.shop_slug,
        payload.starts_at,
        payload.ends_at,
        notes=payload.notes,
        vehicle_id=payload.vehicle_id,
        customer=customer,
    )


@router.get("/bookings", response_model=ListResponse[BookingOut])
def api_list_bookings(
    shop_slug: str,
    start: str,
    end: str,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return ListResponse(items=booking_service.list_bookings(db, shop_slug, start, end, profile=profile))


@router.patch("/bookings/{booking_id}", response_model=BookingOut)
def api_update_booking(
    booking_id: int,
    payload: BookingUpdate,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return booking_service.update_booking(
        db,
        booking_id,
        status=payload.status,
        starts_at_raw=payload.starts_at,
        ends_at_raw=payload.ends_at,
        notes=payload.notes,
        notes_set="notes" in payload.model_fields_set,
        profile=profile,
    )


@router.post("/requests", status_code=201)
def api_start_request(
    payload: RequestStart,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    customer = get_portal_customer(db, profile)
    result = portal_service.start_request(
        db,
        payload.visit_type,
        payload.starts_at,
        duration_minutes=payload.duration_minutes,
        vehicle_id=payload.vehicle_id,
        notes=payload.notes,
        customer=customer,
    )
    return {
        "work_order": WorkOrderOut.model_validate(result["work_order"]),
        "booking": BookingOut.model_validate(result["booking"]),
    }


@router.post("/quote-lines", response_model=QuoteLineOut, status_code=201)
def api_add_quote_only(
    payload: QuoteOnly,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    customer = get_portal_customer(db, profile)
    return portal_service.add_quote_only(
        db,
        payload.work_order_id,
        payload.description,
        notes=payload.notes,
        qty=payload.qty,
        customer=customer,
    )


@router.post("/similar-labor")
def api_similar_labor(
    payload: ComplaintQuery,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    customer = get_portal_customer(db, profile)
    return portal_service.similar_labor(db, payload.work_order_id, payload.complaint, customer=customer)


@router.post("/common-problems")
def api_common_problems(
    payload: ComplaintQuery,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    customer = get_portal_customer(db, profile)
    suggestions = portal_service.common_problems(db, payload.work_order_id, payload.complaint, customer=customer)
    return {"suggestions": suggestions, "source": "shop_history"}
