"""Inspection templates and sessions."""

import logging
import math
from typing import Any, Final

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.core.domain_exceptions import bad_request, conflict, not_found
from repair_desk.core.error_codes import ErrorCode
from repair_desk.core.timeutils import utcnow
from repair_desk.db.models import InspectionSession, InspectionTemplate, WorkOrderLine
from repair_desk.services.work_order_service import add_line, get_work_order

logger = logging.getLogger(__name__)

ITEM_STATUSES: Final[tuple[str, ...]] = ("ok", "fail", "recommend", "na")
# Fails become lines before recommendations.
ACTIONABLE_ORDER: Final[dict[str, int]] = {"fail": 0, "recommend": 1}


def _number_or_none(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def _clean_sections(sections: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    cleaned = []
    for section in sections or []:
        title = str(section.get("title") or "").strip()
        items = [
            str(entry.get("item") if isinstance(entry, dict) else entry).strip()
            for entry in section.get("items") or []
        ]
        items = [item for item in items if item and item != "None"]
        if title and items:
            cleaned.append({"title": title, "items": [{"item": item} for item in items]})
    return cleaned


def create_template(db: Session, name: str, sections: list[dict[str, Any]], *, shop_id: int) -> InspectionTemplate:
    name = (name or "").strip()
    if not name:
        raise bad_request("Template name is required")
    cleaned = _clean_sections(sections)
    if not cleaned:
        raise bad_request("Template needs at least one section with items")

    template = InspectionTemplate(shop_id=shop_id, name=name, sections=cleaned)
    try:
        db.add(template)
        db.commit()
        db.refresh(template)
    except SQLAlchemyError:
        db.rollback()
        raise
    return template


def list_templates(db: Session, *, shop_id: int) -> list[InspectionTemplate]:
    return list(
        db.scalars(
            select(InspectionTemplate)
            .where(InspectionTemplate.shop_id == shop_id)
            .order_by(InspectionTemplate.name)
        )
    )


def get_session(db: Session, session_id: int, *, shop_id: int) -> InspectionSession:
    session = db.scalar(
        select(InspectionSession)
        .where(InspectionSession.id == session_id)
        .where(InspectionSession.shop_id == shop_id)
    )
    if session is None:
        raise not_found("Inspection session not found")
    return session


def start_session(db: Session, work_order_id: int, template_id: int | None = None, *, shop_id: int) -> InspectionSession:
    """Open an inspection for a work order, seeded from a template."""
    work_order = get_work_order(db, work_order_id, shop_id=shop_id)

    items: list[dict[str, Any]] = []
    if template_id is not None:
        template = db.scalar(
            select(InspectionTemplate)
            .where(InspectionTemplate.id == template_id)
            .where(InspectionTemplate.shop_id == shop_id)
        )
        if template is None:
            raise not_found("Inspection template not found")
        for section in template.sections:
            for entry in section.get("items", []):
                items.append(
                    {"section": section["title"], "item": entry["item"], "status": None, "notes": None}
                )

    session = InspectionSession(
        shop_id=shop_id,
        work_order_id=work_order.id,
        template_id=template_id,
        items=items,
    )
    try:
        db.add(session)
        db.commit()
        db.refresh(session)
    except SQLAlchemyError:
        db.rollback()
        raise
    return session


def save_items(db: Session, session_id: int, items: list[dict[str, Any]], *, shop_id: int) -> InspectionSession:
    session = get_session(db, session_id, shop_id=shop_id)
    if session.status != "in_progress":
        raise conflict("Inspection is already completed", code=ErrorCode.INVALID_STATUS)

    saved = []
    for entry in items or []:
        item = str(entry.get("item") or "").strip()
        if not item:
            raise bad_request("Each inspection item needs a name")
        status = entry.get("status")
        if status is not None:
            status = str(status).strip().lower()
            if status not in ITEM_STATUSES:
                raise bad_request(f"Invalid inspection status: {status}")
        parts = entry.get("parts")
        saved.append(
            {
                **entry,
                "item": item,
                "status": status,
                "price": _number_or_none(entry.get("price")),
                "labor_hours": _number_or_none(entry.get("labor_hours")),
                "parts": [part for part in parts if isinstance(part, dict)] if isinstance(parts, list) else None,
            }
        )

    try:
        # JSON columns are only flushed when reassigned.
        session.items = saved
        db.commit()
        db.refresh(session)
    except SQLAlchemyError:
        db.rollback()
        raise
    return session


def complete_session(db: Session, session_id: int, *, shop_id: int) -> dict:
    """Close an inspection and turn failed/recommended items into lines."""
    session = get_session(db, session_id, shop_id=shop_id)
    if session.status != "in_progress":
        raise conflict("Inspection is already completed", code=ErrorCode.INVALID_STATUS)

    actionable = [item for item in session.items or [] if item.get("status") in ACTIONABLE_ORDER]
    actionable.sort(key=lambda item: ACTIONABLE_ORDER[item["status"]])

    lines: list[WorkOrderLine] = []
    try:
        for item in actionable:
            lines.append(
                add_line(
                    db,
                    session.work_order_id,
                    description=item["item"],
                    complaint=item.get("notes"),
                    job_type="inspection",
                    labor_hours=item.get("labor_hours"),
                    price=item.get("price"),
                    parts=item.get("parts"),
                    section=item.get("section"),
                    inspection_status=item["status"],
                    inspection_session_id=session.id,
                    shop_id=shop_id,
                    commit=False,
                )
            )
        session.status = "completed"
        session.completed_at = utcnow()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    failed = sum(1 for item in actionable if item["status"] == "fail")
    recommended = len(actionable) - failed
    logger.info(
        "Completed inspection session_id=%s failed=%d recommended=%d",
        session.id,
        failed,
        recommended,
    )
    return {
        "ok": True,
        "session_id": session.id,
        "inserted": len(lines),
        "line_ids": [line.id for line in lines],
        "summary": f"{failed} failed, {recommended} recommended",
    }
