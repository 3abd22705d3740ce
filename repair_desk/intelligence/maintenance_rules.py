"""Rule-driven maintenance suggestions for a work order.

Rules come from `maintenance_rules` (manually curated or AI-generated) and
are matched against the vehicle, then checked against the vehicle's own
service history (`work_order_lines.service_code`).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Final, Literal

from sqlalchemy import select
from sqlalchemy.orm import Session

from repair_desk.core.domain_exceptions import bad_request, not_found
from repair_desk.core.timeutils import as_utc, utcnow
from repair_desk.db.models import (
    MaintenanceRule,
    MaintenanceService,
    MaintenanceSuggestion,
    Vehicle,
    WorkOrder,
    WorkOrderLine,
)

logger = logging.getLogger(__name__)

Mode = Literal["normal", "severe"]

VALID_JOB_TYPES: Final[tuple[str, ...]] = ("diagnosis", "repair", "maintenance", "tech-suggested")
DEFAULT_MODE: Final[Mode] = "severe"
NOTE_DUE_NOW: Final[str] = "Due now based on mileage/age."
NOTE_NEVER_DONE: Final[str] = "Recommended in schedule; no previous service recorded for this vehicle."
NOTE_DONE_BEFORE: Final[str] = "Previously performed; verify interval vs current mileage/age."


@dataclass(frozen=True)
class ServiceHistory:
    last_mileage: float | None
    last_date: datetime | None


def _lower(value: str | None) -> str:
    return (value or "").strip().lower()


def rule_applies_to_vehicle(rule: MaintenanceRule, vehicle: Vehicle) -> bool:
    """Blank fields on either side act as wildcards."""
    make = _lower(vehicle.make)
    model = _lower(vehicle.model)
    engine_family = _lower(vehicle.engine_family)

    if rule.make and make and rule.make.lower() != make:
        return False
    if rule.model and model and rule.model.lower() != model:
        return False

    if vehicle.year is not None:
        if rule.year_from is not None and vehicle.year < rule.year_from:
            return False
        if rule.year_to is not None and vehicle.year > rule.year_to:
            return False

    if rule.engine_family and engine_family and rule.engine_family.lower() != engine_family:
        return False

    return True


def _months_between(earlier: datetime, later: datetime) -> int:
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def is_ever_recommended(
    rule: MaintenanceRule,
    current_mileage_km: float | None,
    current_age_months: int | None,
) -> bool:
    """Whether the service should have shown up on the schedule at least once."""
    first_km = next(
        (v for v in (rule.first_due_km, rule.distance_km_normal, rule.distance_km_severe) if v is not None),
        None,
    )
    first_months = next(
        (v for v in (rule.first_due_months, rule.time_months_normal, rule.time_months_severe) if v is not None),
        None,
    )

    if first_km is None and first_months is None:
        return current_mileage_km is not None or current_age_months is not None

    mileage_trigger = (
        first_km is not None and current_mileage_km is not None and current_mileage_km >= first_km
    )
    time_trigger = (
        first_months is not None
        and current_age_months is not None
        and current_age_months >= first_months
    )
    return mileage_trigger or time_trigger


def is_service_due(
    rule: MaintenanceRule,
    *,
    mode: Mode,
    current_mileage_km: float | None,
    current_age_months: int | None,
    history: ServiceHistory | None,
    now: datetime,
) -> bool:
    if mode == "severe":
        distance_interval = (
            rule.distance_km_severe if rule.distance_km_severe is not None else rule.distance_km_normal
        )
        time_interval = (
            rule.time_months_severe if rule.time_months_severe is not None else rule.time_months_normal
        )
    else:
        distance_interval = rule.distance_km_normal
        time_interval = rule.time_months_normal

    if distance_interval is None and time_interval is None:
        return False

    last_mileage = history.last_mileage if history else None
    last_date = history.last_date if history else None

    km_since: float | None = None
    if current_mileage_km is not None:
        km_since = current_mileage_km - last_mileage if last_mileage is not None else current_mileage_km

    if last_date is not None:
        months_since: int | None = _months_between(last_date, now)
    else:
        months_since = current_age_months

    distance_due = distance_interval is not None and km_since is not None and km_since >= distance_interval
    time_due = time_interval is not None and months_since is not None and months_since >= time_interval
    return distance_due or time_due


def _load_history(db: Session, vehicle_id: int) -> dict[str, ServiceHistory]:
    rows = db.execute(
        select(WorkOrderLine.service_code, WorkOrderLine.odometer_km, WorkOrderLine.created_at)
        .where(WorkOrderLine.vehicle_id == vehicle_id)
        .where(WorkOrderLine.service_code.is_not(None))
        .where(WorkOrderLine.voided_at.is_(None))
    ).all()

    history: dict[str, ServiceHistory] = {}
    for code, odometer_km, created_at in rows:
        created = as_utc(created_at)
        if not code or created is None:
            continue
        previous = history.get(code, ServiceHistory(last_mileage=None, last_date=None))
        newer = previous.last_date is None or created > previous.last_date
        history[code] = ServiceHistory(
            last_mileage=odometer_km if newer and odometer_km is not None else previous.last_mileage,
            last_date=created if newer else previous.last_date,
        )
    return history


def _build_notes(service: MaintenanceService, due_now: bool, history: ServiceHistory | None) -> str:
    parts = [service.default_notes or ""]
    if due_now:
        parts.append(NOTE_DUE_NOW)
    elif history is None:
        parts.append(NOTE_NEVER_DONE)
    else:
        parts.append(NOTE_DONE_BEFORE)
        if history.last_mileage is not None:
            parts.append(f"Last recorded at ~{history.last_mileage:g} km.")
        if history.last_date is not None:
            parts.append(f"Last recorded date: {history.last_date.date().isoformat()}.")
    return " ".join(part.strip() for part in parts if part and part.strip())


def compute_maintenance_suggestions(
    db: Session,
    work_order_id: int,
    *,
    shop_id: int,
    mode: Mode = DEFAULT_MODE,
    now: datetime | None = None,
) -> list[dict]:
    """Evaluate rules for the work order's vehicle and cache the result."""
    now = now or utcnow()

    work_order = db.scalar(
        select(WorkOrder).where(WorkOrder.id == work_order_id).where(WorkOrder.shop_id == shop_id)
    )
    if work_order is None:
        raise not_found("Work order not found")
    if work_order.vehicle_id is None:
        raise bad_request("Work order has no vehicle linked")

    vehicle = db.get(Vehicle, work_order.vehicle_id)
    if vehicle is None:
        raise not_found("Vehicle not found")

    current_mileage_km = (
        work_order.odometer_km if work_order.odometer_km is not None else vehicle.mileage
    )
    current_age_months = (
        (now.year - vehicle.year) * 12 + now.month if vehicle.year is not None else None
    )

    services = {service.code: service for service in db.scalars(select(MaintenanceService))}
    history_by_code = _load_history(db, vehicle.id)

    suggestions: list[dict] = []
    for rule in db.scalars(select(MaintenanceRule).order_by(MaintenanceRule.id)):
        if not rule_applies_to_vehicle(rule, vehicle):
            continue
        service = services.get(rule.service_code)
        if service is None:
            continue
        if not is_ever_recommended(rule, current_mileage_km, current_age_months):
            continue

        history = history_by_code.get(rule.service_code)
        due_now = is_service_due(
            rule,
            mode=mode,
            current_mileage_km=current_mileage_km,
            current_age_months=current_age_months,
            history=history,
            now=now,
        )
        job_type = service.default_job_type if service.default_job_type in VALID_JOB_TYPES else "maintenance"

        suggestions.append(
            {
                "name": service.label,
                "service_code": service.code,
                "labor_hours": service.default_labor_hours if service.default_labor_hours is not None else 1,
                "job_type": job_type,
                "notes": _build_notes(service, due_now, history),
                "due_now": due_now,
                "is_critical": rule.is_critical,
            }
        )

    cached = db.scalar(
        select(MaintenanceSuggestion).where(MaintenanceSuggestion.work_order_id == work_order.id)
    )
    if cached is None:
        cached = MaintenanceSuggestion(work_order_id=work_order.id)
        db.add(cached)
    cached.vehicle_id = vehicle.id
    cached.mileage_km = current_mileage_km
    cached.status = "ready"
    cached.suggestions = suggestions
    cached.error_message = None
    db.commit()

    logger.info(
        "Computed %d maintenance suggestions for work_order_id=%s",
        len(suggestions),
        work_order.id,
    )
    return suggestions


def get_cached_suggestions(
    db: Session,
    *,
    shop_id: int,
    work_order_id: int | None = None,
    vehicle_id: int | None = None,
) -> dict:
    """Most recent cached suggestions by work order or vehicle."""
    if work_order_id is None and vehicle_id is None:
        raise bad_request("Missing workOrderId or vehicleId")

    query = (
        select(MaintenanceSuggestion)
        .join(WorkOrder, WorkOrder.id == MaintenanceSuggestion.work_order_id)
        .where(WorkOrder.shop_id == shop_id)
    )
    if work_order_id is not None:
        query = query.where(MaintenanceSuggestion.work_order_id == work_order_id)
    else:
        query = query.where(MaintenanceSuggestion.vehicle_id == vehicle_id)

    cached = db.scalar(query.order_by(MaintenanceSuggestion.updated_at.desc(), MaintenanceSuggestion.id.desc()))
    if cached is None:
        return {"status": "empty", "suggestions": [], "work_order_id": work_order_id}

    return {
        "status": cached.status,
        "suggestions": cached.suggestions or [],
        "work_order_id": cached.work_order_id,
        "mileage_km": cached.mileage_km,
        "error_message": cached.error_message,
    }
