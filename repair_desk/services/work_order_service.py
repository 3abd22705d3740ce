"""Business logic for work orders and their job lines."""

import logging
from typing import Any, Final

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.core.auth import ASSIGNER_ROLES, PUNCH_ADMIN_ROLES
from repair_desk.core.domain_exceptions import bad_request, conflict, forbidden, not_found
from repair_desk.core.error_codes import ErrorCode
from repair_desk.core.timeutils import utcnow
from repair_desk.db.models import (
    Customer,
    JobPunch,
    MenuItem,
    Profile,
    Shop,
    StockMove,
    Vehicle,
    WorkOrder,
    WorkOrderLine,
    WorkOrderLineTechnician,
)

logger = logging.getLogger(__name__)

NOTE_SEPARATOR: Final[str] = " • "
DEFAULT_MENU_LABOR_HOURS: Final[float] = 0.5
LOCKED_LINE_STATUSES: Final[tuple[str, ...]] = ("completed", "ready_to_invoice", "invoiced")
DISPOSITIONS: Final[tuple[str, ...]] = ("return_to_stock", "keep_consumed", "scrap")

LINE_DECISIONS = {
    "approve": {"approval_state": "approved", "status": "queued", "punchable": True},
    "decline": {"approval_state": "declined", "status": "declined", "punchable": False},
}


def get_work_order(db: Session, work_order_id: int, *, shop_id: int) -> WorkOrder:
    work_order = db.scalar(
        select(WorkOrder)
        .where(WorkOrder.id == work_order_id)
        .where(WorkOrder.shop_id == shop_id)
    )
    if work_order is None:
        raise not_found("Work order not found")
    return work_order


def get_line(db: Session, line_id: int, *, shop_id: int) -> WorkOrderLine:
    line = db.scalar(
        select(WorkOrderLine)
        .where(WorkOrderLine.id == line_id)
        .where(WorkOrderLine.shop_id == shop_id)
    )
    if line is None:
        raise not_found("Line not found")
    return line


def create_work_order(
    db: Session,
    customer_id: int | None = None,
    vehicle_id: int | None = None,
    notes: str | None = None,
    odometer_km: float | None = None,
    *,
    shop_id: int,
    created_by: int | None = None,
) -> WorkOrder:
    """Open a work order for a customer and vehicle of the same shop."""
    if customer_id is not None:
        customer = db.get(Customer, customer_id)
        if customer is None or customer.shop_id != shop_id:
            raise not_found("Customer not found")

    if vehicle_id is not None:
        vehicle = db.get(Vehicle, vehicle_id)
        if vehicle is None or vehicle.shop_id != shop_id:
            raise not_found("Vehicle not found")
        if customer_id is not None and vehicle.customer_id not in (None, customer_id):
            raise bad_request("Vehicle does not belong to this customer")

    work_order = WorkOrder(
        shop_id=shop_id,
        customer_id=customer_id,
        vehicle_id=vehicle_id,
        notes=notes,
        odometer_km=odometer_km,
        created_by=created_by,
        status="open",
    )
    try:
        db.add(work_order)
        db.commit()
        db.refresh(work_order)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Created work_order_id=%s shop_id=%s", work_order.id, shop_id)
    return work_order


def list_work_orders(db: Session, status: str | None = None, *, shop_id: int) -> list[WorkOrder]:
    query = select(WorkOrder).where(WorkOrder.shop_id == shop_id)
    if status:
        query = query.where(WorkOrder.status == status)
    return list(db.scalars(query.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc())))


def build_line_notes(
    section: str | None = None,
    inspection_status: str | None = None,
    title: str | None = None,
    ai_summary: str | None = None,
) -> str | None:
    parts = []
    if section and section.strip():
        parts.append(f"Section: {section.strip()}")
    if inspection_status and inspection_status.strip():
        parts.append(f"From inspection: {inspection_status.strip().upper()}")
    if title and title.strip():
        parts.append(f"Title: {title.strip()}")
    if ai_summary and ai_summary.strip():
        parts.append(f"AI: {ai_summary.strip()}")
    return NOTE_SEPARATOR.join(parts) or None


def normalize_parts(parts: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Keep named parts, defaulting qty to 1 and dropping unusable costs."""
    normalized = []
    for part in parts or []:
        name = str(part.get("name") or "").strip()
        if not name:
            continue
        try:
            qty = float(part.get("qty") or 1)
        except (TypeError, ValueError):
            qty = 1.0
        cost = part.get("cost")
        try:
            cost = float(cost) if cost is not None else None
        except (TypeError, ValueError):
            cost = None
        normalized.append({"name": name, "qty": qty if qty > 0 else 1.0, "cost": cost})
    return normalized


def estimate_line_price(
    price: float | None,
    parts: list[dict[str, Any]],
    labor_hours: float | None,
    labor_rate: float | None,
) -> float | None:
    """Explicit price wins; otherwise parts plus labor when either is known."""
    if price is not None and price >= 0:
        return float(price)

    parts_total = sum((part["cost"] or 0) * part["qty"] for part in parts)
    total = 0.0
    known = False
    if parts_total > 0:
        total += parts_total
        known = True
    if labor_hours is not None and labor_rate is not None and labor_hours >= 0 and labor_rate >= 0:
        total += labor_hours * labor_rate
        known = True
    return round(total, 2) if known else None


def add_line(
    db: Session,
    work_order_id: int,
    description: str,
    complaint: str | None = None,
    job_type: str | None = None,
    labor_hours: float | None = None,
    labor_rate: float | None = None,
    price: float | None = None,
    parts: list[dict[str, Any]] | None = None,
    section: str | None = None,
    inspection_status: str | None = None,
    title: str | None = None,
    ai_summary: str | None = None,
    suggestion_notes: str | None = None,
    service_code: str | None = None,
    inspection_session_id: int | None = None,
    *,
    shop_id: int,
    commit: bool = True,
) -> WorkOrderLine:
    """Add a job line awaiting customer approval."""
    description = (description or "").strip()
    if not description:
        raise bad_request("Description is required")

    work_order = get_work_order(db, work_order_id, shop_id=shop_id)
    if work_order.status == "invoiced":
        raise conflict("Work order is already invoiced", code=ErrorCode.ALREADY_INVOICED)

    if labor_rate is None:
        shop = db.get(Shop, shop_id)
        labor_rate = shop.labor_rate if shop else None

    normalized_parts = normalize_parts(parts)
    line = WorkOrderLine(
        work_order_id=work_order.id,
        shop_id=shop_id,
        vehicle_id=work_order.vehicle_id,
        description=description,
        complaint=complaint if complaint is not None else suggestion_notes,
        job_type=job_type or "inspection",
        status="awaiting_approval",
        approval_state="pending",
        punchable=False,
        labor_time=labor_hours,
        price_estimate=estimate_line_price(price, normalized_parts, labor_hours, labor_rate),
        notes=build_line_notes(section, inspection_status, title, ai_summary),
        parts_needed=(
            {"source": "inspection_ai", "items": normalized_parts} if normalized_parts else None
        ),
        service_code=service_code,
        odometer_km=work_order.odometer_km,
        inspection_session_id=inspection_session_id,
    )
    db.add(line)
    if not commit:
        db.flush()
        return line

    try:
        db.commit()
        db.refresh(line)
    except SQLAlchemyError:
        db.rollback()
        raise
    return line


def add_line_from_menu(
    db: Session,
    work_order_id: int | None,
    menu_item_id: int | None,
    labor_hours: float | None = None,
    *,
    shop_id: int,
) -> WorkOrderLine:
    if work_order_id is None or menu_item_id is None:
        raise bad_request("Missing workOrderId or menuItemId")

    menu_item = db.scalar(
        select(MenuItem).where(MenuItem.id == menu_item_id).where(MenuItem.shop_id == shop_id)
    )
    if menu_item is None:
        raise not_found("Menu item not found")

    work_order = get_work_order(db, work_order_id, shop_id=shop_id)
    if labor_hours is None:
        labor_hours = menu_item.labor_time if menu_item.labor_time is not None else DEFAULT_MENU_LABOR_HOURS

    line = WorkOrderLine(
        work_order_id=work_order.id,
        shop_id=shop_id,
        vehicle_id=work_order.vehicle_id,
        description=menu_item.name or menu_item.description or "Menu repair",
        job_type="repair",
        status="awaiting_approval",
        approval_state="pending",
        punchable=False,
        labor_time=labor_hours,
        price_estimate=menu_item.total_price,
        menu_item_id=menu_item.id,
        odometer_km=work_order.odometer_km,
    )
    try:
        db.add(line)
        db.commit()
        db.refresh(line)
    except SQLAlchemyError:
        db.rollback()
        raise
    return line


def decide_line(db: Session, line_id: int, decision: str, *, shop_id: int) -> WorkOrderLine:
    """Apply a customer or advisor approval decision to a line."""
    changes = LINE_DECISIONS.get(decision)
    if changes is None:
        raise bad_request("Invalid decision")

    line = get_line(db, line_id, shop_id=shop_id)
    if line.voided_at is not None:
        raise conflict("This line is already voided.", code=ErrorCode.ALREADY_VOIDED)
    if line.approval_state not in (None, "pending"):
        raise conflict(
            f"Line is already {line.approval_state}",
            code=ErrorCode.INVALID_STATUS,
        )

    try:
        for field, value in changes.items():
            setattr(line, field, value)
        db.commit()
        db.refresh(line)
    except SQLAlchemyError:
        db.rollback()
        raise
    return line


def assign_all(
    db: Session,
    work_order_id: int | None,
    tech_id: int | None,
    only_unassigned: bool = True,
    *,
    caller: Profile,
) -> dict:
    """Assign a technician to every line of a work order."""
    if not work_order_id:
        raise bad_request("work_order_id is required")
    if not tech_id:
        raise bad_request("tech_id is required")
    if caller.shop_id is None:
        raise forbidden("Profile missing shop_id")
    if caller.role not in ASSIGNER_ROLES:
        raise forbidden("Forbidden: role cannot assign work")

    work_order = db.get(WorkOrder, work_order_id)
    if work_order is None:
        raise not_found("Work order not found")
    if work_order.shop_id != caller.shop_id:
        raise forbidden("Forbidden: cross-shop assignment")

    tech = db.get(Profile, tech_id)
    if tech is None:
        raise not_found("Tech profile not found for that id.")
    if tech.shop_id != caller.shop_id:
        raise forbidden("Tech is not in the same shop.")

    query = select(WorkOrderLine).where(WorkOrderLine.work_order_id == work_order.id)
    if only_unassigned:
        query = query.where(WorkOrderLine.assigned_tech_id.is_(None))
    lines = list(db.scalars(query))

    try:
        for line in lines:
            line.assigned_tech_id = tech.id
            link = db.scalar(
                select(WorkOrderLineTechnician)
                .where(WorkOrderLineTechnician.work_order_line_id == line.id)
                .where(WorkOrderLineTechnician.technician_id == tech.id)
            )
            if link is None:
                db.add(
                    WorkOrderLineTechnician(
                        work_order_line_id=line.id,
                        technician_id=tech.id,
                        assigned_by=caller.id,
                    )
                )
            else:
                link.assigned_by = caller.id
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Assigned tech_id=%s to %d lines on work_order_id=%s",
        tech.id,
        len(lines),
        work_order.id,
    )
    return {
        "ok": True,
        "updated_count": len(lines),
        "tech": {"id": tech.id, "role": tech.role, "full_name": tech.full_name},
    }


def _resolve_technician(db: Session, caller: Profile, technician_id: int | None) -> int:
    if technician_id is None or technician_id == caller.id:
        return caller.id
    if caller.role not in PUNCH_ADMIN_ROLES:
        raise forbidden()
    tech = db.get(Profile, technician_id)
    if tech is None or tech.shop_id != caller.shop_id:
        raise not_found("Technician not found")
    return tech.id


def punch_in(
    db: Session,
    line_id: int,
    technician_id: int | None = None,
    *,
    caller: Profile,
) -> JobPunch:
    """Start the clock for a technician on a line."""
    shop_id = caller.shop_id
    line = get_line(db, line_id, shop_id=shop_id)
    if line.voided_at is not None or not line.punchable:
        raise conflict("Line is not ready for work", code=ErrorCode.INVALID_STATUS)

    tech_id = _resolve_technician(db, caller, technician_id)
    punch = JobPunch(
        shop_id=shop_id,
        work_order_line_id=line.id,
        technician_id=tech_id,
        started_at=utcnow(),
    )
    try:
        db.add(punch)
        if line.status == "queued":
            line.status = "in_progress"
        db.commit()
        db.refresh(punch)
    except IntegrityError:
        db.rollback()
        raise conflict(
            "Technician is already punched in to another job",
            code=ErrorCode.TECH_ALREADY_PUNCHED_IN,
        )
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Punch in tech_id=%s line_id=%s", tech_id, line.id)
    return punch


def punch_out(db: Session, technician_id: int | None = None, *, caller: Profile) -> JobPunch:
    tech_id = _resolve_technician(db, caller, technician_id)
    punch = db.scalar(
        select(JobPunch)
        .where(JobPunch.technician_id == tech_id)
        .where(JobPunch.shop_id == caller.shop_id)
        .where(JobPunch.ended_at.is_(None))
    )
    if punch is None:
        raise not_found("No open punch for this technician")

    try:
        punch.ended_at = utcnow()
        db.commit()
        db.refresh(punch)
    except SQLAlchemyError:
        db.rollback()
        raise
    return punch


def delete_or_void_line(
    db: Session,
    line_id: int,
    mode: str,
    reason: str | None,
    disposition: str | None = None,
    note: str | None = None,
    *,
    caller: Profile,
) -> dict:
    """Hard-delete a line when nothing depends on it, otherwise void it."""
    if mode not in ("delete", "void"):
        raise bad_request("Invalid mode")
    reason = (reason or "").strip()
    if not reason:
        raise bad_request("Reason is required")

    line = get_line(db, line_id, shop_id=caller.shop_id)
    if line.voided_at is not None:
        raise conflict("This line is already voided.", code=ErrorCode.ALREADY_VOIDED)

    line_status = (line.status or "").lower()
    if line.work_order.status == "invoiced" or line_status == "invoiced":
        raise conflict("Cannot delete/void an invoiced line.", code=ErrorCode.ALREADY_INVOICED)

    allocations = list(line.allocations)
    has_allocations = bool(allocations)
    if has_allocations and disposition not in DISPOSITIONS:
        raise bad_request("Disposition is required when parts are on the line.")

    try:
        if mode == "delete" and not has_allocations and line_status not in LOCKED_LINE_STATUSES:
            for link in db.scalars(
                select(WorkOrderLineTechnician).where(
                    WorkOrderLineTechnician.work_order_line_id == line.id
                )
            ):
                db.delete(link)
            db.delete(line)
            db.commit()
            logger.info("Deleted line_id=%s", line_id)
            return {"ok": True, "mode": "deleted"}

        if has_allocations and disposition == "return_to_stock":
            for allocation in allocations:
                if allocation.qty <= 0:
                    continue
                allocation.part.quantity_on_hand += allocation.qty
                db.add(
                    StockMove(
                        shop_id=line.shop_id,
                        part_id=allocation.part_id,
                        qty=allocation.qty,
                        reason="return_in",
                        reference_kind="work_order_line_void",
                        reference_id=line.id,
                    )
                )
        # Voided lines must stop counting toward totals.
        line.allocations.clear()

        line.voided_at = utcnow()
        line.voided_by = caller.id
        line.void_reason = reason
        line.void_note = note
        line.punchable = False
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Voided line_id=%s disposition=%s", line_id, disposition)
    return {"ok": True, "mode": "voided", "disposition": disposition if has_allocations else None}


def update_line_story(
    db: Session,
    line_id: int,
    cause: str | None = None,
    correction: str | None = None,
    labor_time: float | None = None,
    *,
    shop_id: int,
) -> WorkOrderLine:
    """Update the cause/correction story a technician writes for a line."""
    line = get_line(db, line_id, shop_id=shop_id)
    if line.voided_at is not None:
        raise conflict("This line is already voided.", code=ErrorCode.ALREADY_VOIDED)
    if labor_time is not None and labor_time < 0:
        raise bad_request("Labor time must be zero or more")

    try:
        if cause is not None:
            line.cause = cause.strip() or None
        if correction is not None:
            line.correction = correction.strip() or None
        if labor_time is not None:
            line.labor_time = labor_time
        db.commit()
        db.refresh(line)
    except SQLAlchemyError:
        db.rollback()
        raise
    return line


def work_order_total(work_order: WorkOrder) -> float:
    total = 0.0
    for line in work_order.lines:
        if line.voided_at is not None or line.approval_state == "declined":
            continue
        total += line.price_estimate or 0
    return round(total, 2)


def invoice_work_order(db: Session, work_order_id: int, *, shop_id: int) -> WorkOrder:
    work_order = get_work_order(db, work_order_id, shop_id=shop_id)
    if work_order.status == "invoiced" or work_order.invoiced_at is not None:
        raise conflict("Work order is already invoiced", code=ErrorCode.ALREADY_INVOICED)

    try:
        work_order.invoice_total = work_order_total(work_order)
        work_order.invoiced_at = utcnow()
        work_order.status = "invoiced"
        db.commit()
        db.refresh(work_order)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Invoiced work_order_id=%s total=%.2f",
        work_order.id,
        work_order.invoice_total,
    )
    return work_order
