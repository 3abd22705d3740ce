"""Customer portal requests."""

import logging
from datetime import timedelta
from typing import Final

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.core.domain_exceptions import bad_request, conflict, forbidden, not_found
from repair_desk.core.error_codes import ErrorCode
from repair_desk.core.timeutils import parse_iso_datetime, utcnow
from repair_desk.db.models import Booking, Customer, WorkOrder, WorkOrderQuoteLine
from repair_desk.intelligence import common_problems_for_shop, similar_labor_for_shop
from repair_desk.services.booking_service import has_overlap

logger = logging.getLogger(__name__)

VISIT_TYPES: Final[tuple[str, ...]] = ("waiter", "drop_off")
DEFAULT_VISIT_MINUTES: Final[int] = 60
MIN_VISIT_MINUTES: Final[int] = 15
MAX_VISIT_MINUTES: Final[int] = 180
MAX_QUOTE_QTY: Final[int] = 99


def clamp_qty(raw: float | int | None) -> int:
    if raw is None:
        return 1
    try:
        qty = int(raw)
    except (TypeError, ValueError, OverflowError):
        return 1
    return max(1, min(MAX_QUOTE_QTY, qty))


def require_owned_work_order(db: Session, work_order_id: int | None, customer: Customer) -> WorkOrder:
    if not work_order_id:
        raise bad_request("Missing workOrderId")
    work_order = db.get(WorkOrder, work_order_id)
    if work_order is None:
        raise not_found("Work order not found")
    if work_order.customer_id != customer.id:
        raise forbidden("Work order does not belong to this customer")
    return work_order


def start_request(
    db: Session,
    visit_type: str | None,
    starts_at_raw: str | None,
    duration_minutes: int | None = None,
    vehicle_id: int | None = None,
    notes: str | None = None,
    *,
    customer: Customer,
) -> dict:
    """Open a portal work order and reserve its booking slot."""
    if visit_type not in VISIT_TYPES:
        raise bad_request("visitType must be 'waiter' or 'drop_off'")
    if not starts_at_raw or not starts_at_raw.strip():
        raise bad_request("Missing startsAt (ISO) from selected slot.")
    starts_at = parse_iso_datetime(starts_at_raw)
    if starts_at is None:
        raise bad_request("startsAt must be a valid ISO date string.")
    if starts_at < utcnow() - timedelta(minutes=1):
        raise bad_request("Selected time is in the past. Please choose another slot.")
    if customer.shop_id is None:
        raise bad_request("Customer is not linked to a shop")

    duration = (
        DEFAULT_VISIT_MINUTES
        if duration_minutes is None
        else max(MIN_VISIT_MINUTES, min(MAX_VISIT_MINUTES, int(duration_minutes)))
    )
    ends_at = starts_at + timedelta(minutes=duration)
    if has_overlap(db, customer.shop_id, starts_at, ends_at):
        raise conflict("This time overlaps an existing booking", code=ErrorCode.SLOT_CONFLICT)

    work_order = WorkOrder(
        shop_id=customer.shop_id,
        customer_id=customer.id,
        vehicle_id=vehicle_id,
        status="awaiting_approval",
        is_waiter=visit_type == "waiter",
        notes=(notes or "").strip() or None,
    )
    booking = Booking(
        shop_id=customer.shop_id,
        customer_id=customer.id,
        vehicle_id=vehicle_id,
        starts_at=starts_at,
        ends_at=ends_at,
        status="pending",
    )
    try:
        db.add_all([work_order, booking])
        db.commit()
        db.refresh(work_order)
        db.refresh(booking)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Portal request work_order_id=%s booking_id=%s", work_order.id, booking.id)
    return {"work_order": work_order, "booking": booking}


def add_quote_only(
    db: Session,
    work_order_id: int | None,
    description: str | None,
    notes: str | None = None,
    qty: float | None = None,
    *,
    customer: Customer,
) -> WorkOrderQuoteLine:
    """Customer-requested quote line on a work order that is not invoiced."""
    if not work_order_id:
        raise bad_request("Missing workOrderId")
    if not description or not description.strip():
        raise bad_request("Missing description")

    work_order = require_owned_work_order(db, work_order_id, customer)
    if (work_order.status or "").lower() == "invoiced":
        raise conflict("This work order has already been invoiced", code=ErrorCode.ALREADY_INVOICED)

    quote_line = WorkOrderQuoteLine(
        work_order_id=work_order.id,
        shop_id=work_order.shop_id,
        description=description.strip(),
        notes=(notes or "").strip() or None,
        qty=clamp_qty(qty),
        job_type="customer-requested",
        status="advisor_pending",
    )
    try:
        db.add(quote_line)
        db.commit()
        db.refresh(quote_line)
    except SQLAlchemyError:
        db.rollback()
        raise
    return quote_line


def similar_labor(db: Session, work_order_id: int | None, complaint: str | None, *, customer: Customer) -> dict:
    if not complaint or not complaint.strip():
        raise bad_request("Missing complaint")
    work_order = require_owned_work_order(db, work_order_id, customer)
    return similar_labor_for_shop(db, complaint, shop_id=work_order.shop_id)


def common_problems(db: Session, work_order_id: int | None, complaint: str | None, *, customer: Customer) -> list[dict]:
    if not complaint or not complaint.strip():
        raise bad_request("Missing complaint")
    work_order = require_owned_work_order(db, work_order_id, customer)
    return common_problems_for_shop(db, complaint, shop_id=work_order.shop_id)
