"""Parts, stock allocation and part requests."""

import logging
import math
from typing import Any, Final

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.core.domain_exceptions import bad_request, conflict, not_found
from repair_desk.core.error_codes import ErrorCode
from repair_desk.db.models import (
    Part,
    PartRequest,
    PartRequestItem,
    StockMove,
    WorkOrder,
    WorkOrderLine,
    WorkOrderPartAllocation,
)
from repair_desk.services.work_order_service import get_line

logger = logging.getLogger(__name__)

PART_REQUEST_TRANSITIONS: Final[dict[str, set[str]]] = {
    "requested": {"quoted", "cancelled"},
    "quoted": {"approved", "cancelled"},
    "approved": {"ordered", "fulfilled", "cancelled"},
    "ordered": {"fulfilled", "cancelled"},
    "fulfilled": set(),
    "cancelled": set(),
}


def create_part(
    db: Session,
    name: str,
    sku: str | None = None,
    unit_cost: float | None = None,
    unit_price: float | None = None,
    quantity_on_hand: float = 0,
    *,
    shop_id: int,
) -> Part:
    name = (name or "").strip()
    if not name:
        raise bad_request("Part name is required")
    if quantity_on_hand < 0:
        raise bad_request("Quantity on hand cannot be negative")

    part = Part(
        shop_id=shop_id,
        name=name,
        sku=sku,
        unit_cost=unit_cost,
        unit_price=unit_price,
        quantity_on_hand=quantity_on_hand,
    )
    try:
        db.add(part)
        db.flush()
        if quantity_on_hand:
            db.add(
                StockMove(
                    shop_id=shop_id,
                    part_id=part.id,
                    qty=quantity_on_hand,
                    reason="initial",
                )
            )
        db.commit()
        db.refresh(part)
    except SQLAlchemyError:
        db.rollback()
        raise
    return part


def list_parts(db: Session, search: str | None = None, *, shop_id: int) -> list[Part]:
    query = select(Part).where(Part.shop_id == shop_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(Part.name.ilike(pattern) | Part.sku.ilike(pattern))
    return list(db.scalars(query.order_by(Part.name)))


def _get_part(db: Session, part_id: int, *, shop_id: int) -> Part:
    part = db.scalar(select(Part).where(Part.id == part_id).where(Part.shop_id == shop_id))
    if part is None:
        raise not_found("Part not found")
    return part


def adjust_stock(
    db: Session,
    part_id: int,
    qty: float,
    reason: str = "adjustment",
    *,
    shop_id: int,
) -> Part:
    """Apply a signed stock move; stock never goes below zero."""
    if not qty:
        raise bad_request("qty must be non-zero")
    part = _get_part(db, part_id, shop_id=shop_id)
    if part.quantity_on_hand + qty < 0:
        raise conflict("Not enough stock on hand", code=ErrorCode.CONFLICT)

    try:
        part.quantity_on_hand += qty
        db.add(StockMove(shop_id=shop_id, part_id=part.id, qty=qty, reason=reason))
        db.commit()
        db.refresh(part)
    except SQLAlchemyError:
        db.rollback()
        raise
    return part


def allocate_stock(db: Session, line: WorkOrderLine, part: Part, qty: float) -> WorkOrderPartAllocation:
    part.quantity_on_hand -= qty
    allocation = WorkOrderPartAllocation(work_order_line_id=line.id, part_id=part.id, qty=qty)
    db.add(allocation)
    db.add(
        StockMove(
            shop_id=line.shop_id,
            part_id=part.id,
            qty=-qty,
            reason="consume",
            reference_kind="work_order_line",
            reference_id=line.id,
        )
    )
    return allocation


def allocate_part(db: Session, line_id: int, part_id: int, qty: float, *, shop_id: int) -> WorkOrderPartAllocation:
    """Take stock off the shelf for a line."""
    if qty is None or qty <= 0:
        raise bad_request("qty must be greater than zero")

    line = get_line(db, line_id, shop_id=shop_id)
    if line.voided_at is not None:
        raise conflict("This line is already voided.", code=ErrorCode.ALREADY_VOIDED)
    part = _get_part(db, part_id, shop_id=shop_id)
    if part.quantity_on_hand < qty:
        raise conflict("Not enough stock on hand", code=ErrorCode.CONFLICT)

    try:
        allocation = allocate_stock(db, line, part, qty)
        db.commit()
        db.refresh(allocation)
    except SQLAlchemyError:
        db.rollback()
        raise
    return allocation


def approve_line_with_parts(
    db: Session,
    line_id: int,
    parts: list[dict[str, Any]],
    note: str | None = None,
    create_request_when_missing: bool = True,
    *,
    shop_id: int,
    requested_by: int | None = None,
) -> dict:
    """Approve a line, allocate what is in stock and request the rest."""
    if not parts:
        raise bad_request("Missing parts[] (must include at least 1 part)")

    needs: list[tuple[int, float]] = []
    for item in parts:
        try:
            part_id = int(item["part_id"])
            qty = float(item["qty"])
        except (KeyError, TypeError, ValueError, OverflowError):
            raise bad_request("Each part must include { partId, qty > 0 }") from None
        if part_id <= 0 or not math.isfinite(qty) or qty <= 0:
            raise bad_request("Each part must include { partId, qty > 0 }")
        needs.append((part_id, qty))

    line = get_line(db, line_id, shop_id=shop_id)
    if line.voided_at is not None:
        raise conflict("This line is already voided.", code=ErrorCode.ALREADY_VOIDED)

    allocated: list[dict] = []
    missing: list[dict] = []
    part_request = None
    try:
        for part_id, qty in needs:
            part = _get_part(db, part_id, shop_id=shop_id)
            available = max(0.0, part.quantity_on_hand)
            take = min(available, qty)
            if take > 0:
                allocate_stock(db, line, part, take)
                allocated.append({"part_id": part.id, "qty": take})
            if take < qty:
                missing.append({"part": part, "qty": qty - take})

        if missing and create_request_when_missing:
            part_request = PartRequest(
                shop_id=shop_id,
                work_order_id=line.work_order_id,
                work_order_line_id=line.id,
                requested_by=requested_by,
                notes=" ".join(
                    text
                    for text in (
                        "Auto-created for missing stock on approved line.",
                        f"Note: {note}" if note else None,
                    )
                    if text
                ),
            )
            part_request.items = [
                PartRequestItem(
                    description=entry["part"].name,
                    qty=entry["qty"],
                    part_id=entry["part"].id,
                )
                for entry in missing
            ]
            db.add(part_request)

        line.approval_state = "approved"
        line.status = "queued"
        line.punchable = True
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Approved line_id=%s allocated=%d missing=%d",
        line.id,
        len(allocated),
        len(missing),
    )
    return {
        "ok": True,
        "line_id": line.id,
        "allocated": allocated,
        "missing": [{"part_id": entry["part"].id, "qty": entry["qty"]} for entry in missing],
        "part_request_id": part_request.id if part_request else None,
    }


def create_part_request(
    db: Session,
    work_order_id: int,
    items: list[dict[str, Any]],
    work_order_line_id: int | None = None,
    notes: str | None = None,
    *,
    shop_id: int,
    requested_by: int | None = None,
) -> PartRequest:
    work_order = db.scalar(
        select(WorkOrder).where(WorkOrder.id == work_order_id).where(WorkOrder.shop_id == shop_id)
    )
    if work_order is None:
        raise not_found("Work order not found")
    if work_order_line_id is not None:
        line = get_line(db, work_order_line_id, shop_id=shop_id)
        if line.work_order_id != work_order.id:
            raise bad_request("Line does not belong to this work order")

    request_items = []
    for item in items or []:
        description = str(item.get("description") or "").strip()
        if not description:
            continue
        qty = item.get("qty") or 1
        if qty <= 0:
            raise bad_request("qty must be greater than zero")
        request_items.append(
            PartRequestItem(description=description, qty=qty, part_id=item.get("part_id"))
        )
    if not request_items:
        raise bad_request("At least one item with a description is required")

    part_request = PartRequest(
        shop_id=shop_id,
        work_order_id=work_order.id,
        work_order_line_id=work_order_line_id,
        requested_by=requested_by,
        notes=notes,
        items=request_items,
    )
    try:
        db.add(part_request)
        db.commit()
        db.refresh(part_request)
    except SQLAlchemyError:
        db.rollback()
        raise
    return part_request


def list_part_requests(db: Session, status: str | None = None, *, shop_id: int) -> list[PartRequest]:
    query = select(PartRequest).where(PartRequest.shop_id == shop_id)
    if status:
        query = query.where(PartRequest.status == status)
    return list(db.scalars(query.order_by(PartRequest.created_at.desc(), PartRequest.id.desc())))


def update_part_request_status(db: Session, request_id: int, new_status: str, *, shop_id: int) -> PartRequest:
    part_request = db.scalar(
        select(PartRequest).where(PartRequest.id == request_id).where(PartRequest.shop_id == shop_id)
    )
    if part_request is None:
        raise not_found("Part request not found")

    allowed_next_statuses = PART_REQUEST_TRANSITIONS.get(part_request.status, set())
    if new_status not in allowed_next_statuses:
        raise conflict("Invalid status transition.", code=ErrorCode.INVALID_STATUS)

    try:
        part_request.status = new_status
        db.commit()
        db.refresh(part_request)
    except SQLAlchemyError:
        db.rollback()
        raise
    return part_request


def quote_part_request_item(
    db: Session,
    request_id: int,
    item_id: int,
    quoted_price: float,
    *,
    shop_id: int,
) -> PartRequestItem:
    if quoted_price is None or quoted_price < 0:
        raise bad_request("quoted_price must be zero or more")
    item = db.scalar(
        select(PartRequestItem)
        .join(PartRequest, PartRequest.id == PartRequestItem.request_id)
        .where(PartRequestItem.id == item_id)
        .where(PartRequest.id == request_id)
        .where(PartRequest.shop_id == shop_id)
    )
    if item is None:
        raise not_found("Part request item not found")

    try:
        item.quoted_price = quoted_price
        db.commit()
        db.refresh(item)
    except SQLAlchemyError:
        db.rollback()
        raise
    return item
