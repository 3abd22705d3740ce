"""
Technician and advisor AI helpers.

Every call goes through `_complete`, which turns a missing client into a
configuration error and upstream failures into 502s.
"""

import json
import logging
from typing import Any, Final

from openai import OpenAIError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.ai import client as ai_client
from repair_desk.core.config import OPENAI_CHAT_MODEL, OPENAI_MODEL
from repair_desk.core.domain_exceptions import DomainException, bad_request, conflict
from repair_desk.core.error_codes import ErrorCode
from repair_desk.db.models import Part, Vehicle, WorkOrder, WorkOrderLine, WorkOrderQuoteLine
from repair_desk.services.parts_service import allocate_stock
from repair_desk.services.report_service import get_tech_stats
from repair_desk.services.work_order_service import get_line, get_work_order

logger = logging.getLogger(__name__)

SUGGESTION_JOB_TYPES: Final[tuple[str, ...]] = ("diagnosis", "repair", "maintenance", "tech-suggested")
MAX_LINE_SUGGESTIONS: Final[int] = 6
MAX_SUGGESTED_HOURS: Final[float] = 8.0
NO_COMPLAINT: Final[str] = "No explicit complaint recorded – infer from job description and DTC context."


def _upstream_error(message: str) -> DomainException:
    return DomainException(code=ErrorCode.UPSTREAM_ERROR, message=message)


def _complete(**kwargs) -> str:
    client = ai_client.get_openai_client()
    if client is None:
        raise DomainException(code=ErrorCode.NOT_CONFIGURED, message="OpenAI is not configured")
    try:
        completion = client.chat.completions.create(**kwargs)
        return ai_client.extract_message_text(completion.choices[0].message)
    except OpenAIError as exc:
        logger.exception("OpenAI request failed")
        raise _upstream_error("AI request failed.") from exc


def _describe_vehicle(vehicle: dict | None) -> str | None:
    if not vehicle:
        return None
    parts = [str(vehicle.get(key) or "").strip() for key in ("year", "make", "model")]
    if not all(parts):
        return None
    return " ".join(parts)


def chat(
    vehicle: dict | None,
    prompt: str | None = None,
    dtc_code: str | None = None,
    image_data: str | None = None,
    context: str | None = None,
) -> dict:
    """Photo, DTC or free-form diagnostic help for a year/make/model."""
    vdesc = _describe_vehicle(vehicle)
    if vdesc is None:
        raise bad_request("Missing vehicle info (year/make/model).")
    context = (context or "").strip()

    if image_data:
        system = (
            f"You are an automotive repair expert. A technician uploaded a photo from a {vdesc}. "
            "Analyze the image and return a concise, helpful markdown answer with sections: "
            "**Issue**, **Likely Cause**, **Recommended Fix**, **Estimated Labor Time**."
        )
        content: list[dict[str, Any]] = [{"type": "image_url", "image_url": {"url": image_data}}]
        if context:
            content.insert(0, {"type": "text", "text": context})
        result = _complete(
            model=OPENAI_CHAT_MODEL,
            temperature=0.4,
            messages=[{"role": "system", "content": system}, {"role": "user", "content": content}],
        )
        return {"mode": "photo", "result": result or "No analysis."}

    if dtc_code and dtc_code.strip():
        code = dtc_code.strip().upper()
        system = (
            f"You are a master diagnostic technician. Analyze DTC {code} for a {vdesc}. "
            "Reply in markdown with **DTC Summary**, **Likely Causes**, **Troubleshooting Steps**, "
            "**Recommended Fix**, and **Estimated Labor Time**. Keep it practical."
        )
        result = _complete(
            model=OPENAI_CHAT_MODEL,
            temperature=0.5,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": context or f"Code: {code}"},
            ],
        )
        return {"mode": "dtc", "result": result or "No result."}

    user_prompt = (prompt or "").strip()
    if not user_prompt:
        raise bad_request("Provide a prompt, DTC, or image.")

    system = (
        f"You are a top-level automotive diagnostic expert helping on a {vdesc}. "
        "Reply in clear markdown with **Complaint**, **Likely Causes**, **Recommended Fix**, "
        "and **Estimated Labor Time**. Prefer concise, actionable guidance."
    )
    messages = [{"role": "system", "content": system}]
    if context:
        messages.append({"role": "user", "content": context})
    messages.append({"role": "user", "content": user_prompt})
    result = _complete(model=OPENAI_CHAT_MODEL, temperature=0.6, messages=messages)
    return {"mode": "chat", "result": result or "No response."}


def _vehicle_summary(db: Session, vehicle_id: int | None) -> dict | None:
    if vehicle_id is None:
        return None
    vehicle = db.get(Vehicle, vehicle_id)
    if vehicle is None:
        return None
    return {"year": vehicle.year, "make": vehicle.make, "model": vehicle.model}


def suggest_cause_correction(db: Session, line_id: int, *, shop_id: int) -> dict:
    """Draft cause/correction/labor for a line from its complaint."""
    line = get_line(db, line_id, shop_id=shop_id)
    work_order = db.get(WorkOrder, line.work_order_id)
    vehicle = _vehicle_summary(db, work_order.vehicle_id if work_order else None)

    system = " ".join(
        [
            "You are an expert automotive diagnostician writing clear, shop-friendly job notes.",
            "Given a vehicle and complaint, generate:",
            "- cause: 1–3 sentences describing root cause using DTC-style language when appropriate.",
            "- correction: 2–6 sentences describing what was/will be done, including key checks "
            "and specs (but no torque numbers).",
            "- laborTime: a reasonable flat-rate style estimate in hours.",
            "Respond ONLY as JSON with keys: cause, correction, laborTime.",
        ]
    )
    raw = _complete(
        model=OPENAI_MODEL,
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": system},
            {
                "role": "user",
                "content": json.dumps(
                    {
                        "vehicle": vehicle,
                        "complaint": line.complaint or NO_COMPLAINT,
                        "existingCause": line.cause,
                        "existingCorrection": line.correction,
                        "existingLaborTime": line.labor_time,
                    }
                ),
            },
        ],
    )

    try:
        parsed = json.loads(raw or "{}")
    except json.JSONDecodeError:
        parsed = {}
    if not isinstance(parsed, dict) or not parsed.get("cause") or not parsed.get("correction"):
        logger.warning("Unusable DTC suggestion for line_id=%s: %r", line.id, raw)
        raise _upstream_error("Model did not return a valid suggestion.")

    return {
        "cause": str(parsed["cause"]),
        "correction": str(parsed["correction"]),
        "labor_time": _number_or_none(parsed.get("laborTime")),
    }


def _coerce_line_suggestion(raw: Any) -> dict | None:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    hours = raw.get("laborHours")
    job_type = raw.get("jobType")
    if not isinstance(name, str) or not name.strip():
        return None
    if not isinstance(hours, (int, float)) or isinstance(hours, bool) or hours < 0:
        return None
    if job_type not in SUGGESTION_JOB_TYPES:
        return None

    suggestion = {
        "name": name.strip(),
        "labor_hours": min(float(hours), MAX_SUGGESTED_HOURS),
        "job_type": job_type,
        "notes": raw.get("notes") if isinstance(raw.get("notes"), str) else "",
    }
    for source, target in (
        ("aiComplaint", "ai_complaint"),
        ("aiCause", "ai_cause"),
        ("aiCorrection", "ai_correction"),
    ):
        if isinstance(raw.get(source), str):
            suggestion[target] = raw[source]
    return suggestion


def suggest_lines(
    db: Session,
    line_id: int | None = None,
    work_order_id: int | None = None,
    *,
    shop_id: int,
) -> list[dict]:
    """Three to six related jobs for a line's or work order's complaint."""
    if line_id is None and work_order_id is None:
        raise bad_request("Provide line_id or work_order_id")

    if line_id is not None:
        line = get_line(db, line_id, shop_id=shop_id)
        complaint = line.complaint
        vehicle_id = line.vehicle_id
    else:
        work_order = get_work_order(db, work_order_id, shop_id=shop_id)
        first_line = db.scalar(
            select(WorkOrderLine)
            .where(WorkOrderLine.work_order_id == work_order.id)
            .order_by(WorkOrderLine.created_at, WorkOrderLine.id)
            .limit(1)
        )
        complaint = first_line.complaint if first_line else None
        vehicle_id = work_order.vehicle_id

    vdesc = _describe_vehicle(_vehicle_summary(db, vehicle_id))
    user_context = "\n".join(
        text
        for text in (
            f"Complaint: {complaint}" if complaint else None,
            f"Vehicle: {vdesc}" if vdesc else None,
        )
        if text
    ) or "No complaint provided. Vehicle unknown."

    system = " ".join(
        [
            "You are a service advisor assistant for an auto shop.",
            "Return a JSON array of 3-6 suggested jobs related to the complaint and vehicle.",
            "Each item must have fields: name (string), laborHours (number), "
            "jobType ('diagnosis'|'repair'|'maintenance'|'tech-suggested'), notes (string).",
            "When helpful, include aiComplaint, aiCause, aiCorrection to pre-fill story text.",
            "Keep laborHours realistic; do not exceed 8 hours for a single item.",
            "Only output raw JSON (no markdown).",
        ]
    )
    raw = _complete(
        model=OPENAI_MODEL,
        temperature=0.4,
        max_tokens=500,
        messages=[{"role": "system", "content": system}, {"role": "user", "content": user_context}],
    )

    try:
        parsed = json.loads(raw or "[]")
    except json.JSONDecodeError:
        logger.warning("Line suggestions were not valid JSON")
        parsed = []
    if not isinstance(parsed, list):
        return []

    suggestions = [item for item in map(_coerce_line_suggestion, parsed) if item is not None]
    return suggestions[:MAX_LINE_SUGGESTIONS]


def _safe_qty(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return 1.0


def _number_or_none(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def apply_ai_quote(db: Session, line_id: int, suggestion: dict, *, shop_id: int) -> dict:
    """Record an AI quote for a line and allocate the parts found in stock."""
    if not isinstance(suggestion, dict) or not isinstance(suggestion.get("parts"), list):
        raise bad_request("Invalid JSON body")

    line = get_line(db, line_id, shop_id=shop_id)
    if line.voided_at is not None:
        raise conflict("This line is already voided.", code=ErrorCode.ALREADY_VOIDED)
    if get_work_order(db, line.work_order_id, shop_id=shop_id).status == "invoiced":
        raise conflict("Work order is already invoiced", code=ErrorCode.ALREADY_INVOICED)

    unmatched: list[dict] = []
    allocated: list[dict] = []

    try:
        for entry in suggestion["parts"]:
            name = str(entry.get("name") or "").strip() if isinstance(entry, dict) else ""
            qty = _safe_qty(entry.get("qty") if isinstance(entry, dict) else None)
            if not name:
                unmatched.append({"name": "(missing name)", "qty": qty})
                continue
            part = db.scalar(
                select(Part)
                .where(Part.shop_id == shop_id)
                .where(Part.name.ilike(f"%{name}%"))
                .order_by(Part.id)
                .limit(1)
            )
            if part is None or part.quantity_on_hand < qty:
                unmatched.append({"name": name, "qty": qty})
                continue
            allocate_stock(db, line, part, qty)
            allocated.append({"part_id": part.id, "name": part.name, "qty": qty})

        quote_line = WorkOrderQuoteLine(
            work_order_id=line.work_order_id,
            shop_id=shop_id,
            description=str(suggestion.get("title") or line.description or "AI quote"),
            job_type=line.job_type,
            labor_hours=_number_or_none(suggestion.get("laborHours")),
            price_estimate=_number_or_none(suggestion.get("price")),
            notes=suggestion.get("summary") or suggestion.get("notes"),
            ai_complaint=line.complaint,
            status="draft",
        )
        db.add(quote_line)
        if line.approval_state is None:
            line.approval_state = "pending"
        db.commit()
        db.refresh(quote_line)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Applied AI quote to line_id=%s allocated=%d unmatched=%d",
        line.id,
        len(allocated),
        len(unmatched),
    )
    return {"ok": True, "quote_line_id": quote_line.id, "allocated": allocated, "unmatched": unmatched}


def tech_summary(db: Session, time_range: str = "monthly", *, shop_id: int) -> dict:
    """Leaderboard stats plus a short narrative for the shop owner."""
    stats = get_tech_stats(db, time_range=time_range, shop_id=shop_id)
    if not stats["rows"]:
        return {"stats": stats, "summary": "No technician activity in this period."}

    summary = _complete(
        model=OPENAI_MODEL,
        temperature=0.3,
        messages=[
            {
                "role": "system",
                "content": (
                    "You summarize technician performance for a repair shop owner. "
                    "Write 3-5 plain sentences: who led on billed hours and efficiency, "
                    "who may need support, and one practical suggestion. No markdown."
                ),
            },
            {"role": "user", "content": json.dumps(stats)},
        ],
    )
    return {"stats": stats, "summary": summary or "No summary."}
