"""Generate maintenance services and interval rules for a year/make/model with OpenAI."""

import json
import logging
from typing import Any, Final

from openai import OpenAIError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.ai import client as ai_client
from repair_desk.core.config import OPENAI_MODEL
from repair_desk.core.domain_exceptions import DomainException, bad_request
from repair_desk.core.error_codes import ErrorCode
from repair_desk.db.models import MaintenanceRule, MaintenanceService
from repair_desk.intelligence.maintenance_rules import VALID_JOB_TYPES

logger = logging.getLogger(__name__)

RULE_NUMBER_FIELDS: Final[dict[str, str]] = {
    "distanceKmNormal": "distance_km_normal",
    "distanceKmSevere": "distance_km_severe",
    "timeMonthsNormal": "time_months_normal",
    "timeMonthsSevere": "time_months_severe",
    "firstDueKm": "first_due_km",
    "firstDueMonths": "first_due_months",
}

SYSTEM_PROMPT: Final[str] = " ".join(
    [
        "You are an auto maintenance data assistant for a repair shop.",
        "Given a specific year, make, model, and engine family,",
        "you will produce a structured JSON object describing maintenance services and their intervals.",
        "Output JSON only, no markdown.",
        'Shape: {"services": [{"code": "OIL_CHANGE", "label": "Engine oil & filter change",',
        '"jobType": "maintenance", "typicalHours": 0.8, "notes": "Short description for the technician."}],',
        '"rules": [{"serviceCode": "OIL_CHANGE", "distanceKmNormal": 8000, "distanceKmSevere": 6000,',
        '"timeMonthsNormal": 6, "timeMonthsSevere": 3, "firstDueKm": 8000, "firstDueMonths": 6,',
        '"isCritical": true}]}',
        "Be realistic and conservative.",
        "Prefer kilometers, not miles.",
        "If you are not sure of exact manufacturer values, use reasonable averages.",
    ]
)


def _number_or_none(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def parse_service(raw: Any) -> dict | None:
    if not isinstance(raw, dict):
        return None
    code = raw.get("code").strip().upper() if isinstance(raw.get("code"), str) else ""
    label = raw.get("label").strip() if isinstance(raw.get("label"), str) else ""
    if not code or not label:
        return None

    job_type = raw.get("jobType").strip().lower() if isinstance(raw.get("jobType"), str) else ""
    hours = _number_or_none(raw.get("typicalHours"))
    return {
        "code": code,
        "label": label,
        "default_job_type": job_type if job_type in VALID_JOB_TYPES else "maintenance",
        "default_labor_hours": hours if hours is not None else 1,
        "default_notes": raw["notes"].strip() if isinstance(raw.get("notes"), str) else "Routine maintenance.",
    }


def parse_rule(raw: Any, *, year: int, make: str, model: str, engine_family: str | None) -> dict | None:
    if not isinstance(raw, dict):
        return None
    service_code = raw.get("serviceCode")
    if not isinstance(service_code, str) or not service_code.strip():
        return None

    rule = {
        "service_code": service_code.strip().upper(),
        "make": make,
        "model": model,
        "year_from": year,
        "year_to": year,
        "engine_family": engine_family,
        "is_critical": raw.get("isCritical") is True,
    }
    for source, target in RULE_NUMBER_FIELDS.items():
        rule[target] = _number_or_none(raw.get(source))
    return rule


def generate_rules_for_vehicle(
    db: Session,
    year: int | None,
    make: str | None,
    model: str | None,
    engine_family: str | None = None,
    force_refresh: bool = False,
) -> dict:
    """Insert AI-generated rules; existing rules for the vehicle short-circuit unless forced."""
    make = (make or "").strip()
    model = (model or "").strip()
    engine_family = (engine_family or "").strip() or None
    if not make or not model or not isinstance(year, int):
        raise bad_request("Missing or invalid year/make/model")

    if not force_refresh:
        existing = db.scalar(
            select(MaintenanceRule.id)
            .where(MaintenanceRule.make == make)
            .where(MaintenanceRule.model == model)
            .where(MaintenanceRule.year_from == year)
            .where(MaintenanceRule.year_to == year)
            .limit(1)
        )
        if existing is not None:
            return {"services_inserted": 0, "rules_inserted": 0, "skipped": True}

    client = ai_client.get_openai_client()
    if client is None:
        raise DomainException(code=ErrorCode.NOT_CONFIGURED, message="OpenAI is not configured")

    user_prompt = "\n".join(
        [
            "Generate maintenance services and rules for this vehicle:",
            f"Year: {year}",
            f"Make: {make}",
            f"Model: {model}",
            f"Engine family: {engine_family or 'unknown'}",
            "Return JSON only.",
        ]
    )
    try:
        completion = client.chat.completions.create(
            model=OPENAI_MODEL,
            temperature=0.4,
            max_tokens=900,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
        )
    except OpenAIError as exc:
        logger.exception("Maintenance rule generation failed for %s %s %s", year, make, model)
        raise DomainException(code=ErrorCode.UPSTREAM_ERROR, message="AI request failed.") from exc
    raw_content = ai_client.extract_message_text(completion.choices[0].message) or "{}"

    try:
        payload = json.loads(raw_content)
    except json.JSONDecodeError as exc:
        raise DomainException(
            code=ErrorCode.UPSTREAM_ERROR,
            message="AI did not return valid JSON for maintenance rules.",
        ) from exc
    if not isinstance(payload, dict):
        payload = {}

    services: dict[str, dict] = {}
    for item in _as_list(payload.get("services")):
        service = parse_service(item)
        if service and service["code"] not in services:
            services[service["code"]] = service

    rules = [
        rule
        for rule in (
            parse_rule(item, year=year, make=make, model=model, engine_family=engine_family)
            for item in _as_list(payload.get("rules"))
        )
        if rule is not None
    ]
    if not services or not rules:
        raise DomainException(
            code=ErrorCode.UPSTREAM_ERROR,
            message="AI did not return any usable maintenance services or rules.",
        )

    existing_codes = set(db.scalars(select(MaintenanceService.code)))
    new_services = [service for service in services.values() if service["code"] not in existing_codes]
    known_codes = existing_codes | set(services)
    usable_rules = [rule for rule in rules if rule["service_code"] in known_codes]

    try:
        db.add_all(MaintenanceService(**service) for service in new_services)
        db.flush()
        db.add_all(MaintenanceRule(**rule) for rule in usable_rules)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Generated maintenance data for %s %s %s: services=%d rules=%d",
        year,
        make,
        model,
        len(new_services),
        len(usable_rules),
    )
    return {
        "services_inserted": len(new_services),
        "rules_inserted": len(usable_rules),
        "skipped": False,
    }
