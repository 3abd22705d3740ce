"""Fleet pre-trip inspections and service requests."""

import logging
from typing import Any, Final

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.core.auth import FLEET_ROLES
from repair_desk.core.domain_exceptions import bad_request, forbidden, not_found
from repair_desk.db.models import FleetPretripReport, FleetServiceRequest, Profile, Vehicle, WorkOrder

logger = logging.getLogger(__name__)

CHECKLIST_VALUES: Final[tuple[str, ...]] = ("ok", "defect", "na")
CRITICAL_ITEMS: Final[tuple[str, ...]] = ("brakes", "steering", "suspension", "tires")
SEVERITIES: Final[tuple[str, ...]] = ("safety", "compliance", "recommend")
REQUEST_STATUSES: Final[tuple[str, ...]] = ("open", "scheduled", "in_shop", "completed", "cancelled")
LIST_LIMIT: Final[int] = 200


def _get_vehicle(db: Session, vehicle_id: int, shop_id: int) -> Vehicle:
    vehicle = db.scalar(select(Vehicle).where(Vehicle.id == vehicle_id).where(Vehicle.shop_id == shop_id))
    if vehicle is None:
        raise not_found("Vehicle not found")
    return vehicle


def unit_label(vehicle: Vehicle | None) -> str | None:
    if vehicle is None:
        return None
    if vehicle.unit_number and vehicle.unit_number.strip():
        return vehicle.unit_number
    return vehicle.license_plate or vehicle.vin


def _clean_checklist(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        raise bad_request("checklist must be an object")
    checklist = {}
    for key, value in raw.items():
        name = str(key).strip().lower()
        status = str(value or "").strip().lower()
        if not name:
            continue
        if status not in CHECKLIST_VALUES:
            raise bad_request(f"Invalid checklist value for {name}: {value}")
        checklist[name] = status
    return checklist


def defect_items(checklist: dict[str, str] | None) -> list[str]:
    return [name for name, status in (checklist or {}).items() if status == "defect"]


def submit_pretrip(
    db: Session,
    vehicle_id: int,
    checklist: dict[str, Any],
    notes: str | None = None,
    odometer_km: float | None = None,
    *,
    shop_id: int,
    driver_id: int | None = None,
) -> FleetPretripReport:
    _get_vehicle(db, vehicle_id, shop_id)
    cleaned = _clean_checklist(checklist)
    report = FleetPretripReport(
        shop_id=shop_id,
        vehicle_id=vehicle_id,
        driver_id=driver_id,
        checklist=cleaned,
        notes=(notes or "").strip() or None,
        odometer_km=odometer_km,
        has_defects=bool(defect_items(cleaned)),
    )
    try:
        db.add(report)
        db.commit()
        db.refresh(report)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Pre-trip %s submitted for vehicle_id=%s defects=%s",
        report.id,
        vehicle_id,
        report.has_defects,
    )
    return report


def list_pretrips(
    db: Session,
    vehicle_id: int | None = None,
    defects_only: bool = False,
    *,
    shop_id: int,
) -> list[FleetPretripReport]:
    query = select(FleetPretripReport).where(FleetPretripReport.shop_id == shop_id)
    if vehicle_id is not None:
        query = query.where(FleetPretripReport.vehicle_id == vehicle_id)
    if defects_only:
        query = query.where(FleetPretripReport.has_defects.is_(True))
    query = query.order_by(FleetPretripReport.created_at.desc(), FleetPretripReport.id.desc())
    return list(db.scalars(query.limit(LIST_LIMIT)))


def _request_for_pretrip(db: Session, pretrip_id: int) -> FleetServiceRequest | None:
    return db.scalar(select(FleetServiceRequest).where(FleetServiceRequest.source_pretrip_id == pretrip_id))


def convert_pretrip_to_service_request(db: Session, pretrip_id: int | None, *, shop_id: int) -> dict:
    """Open a service request from a pre-trip; a second call returns the existing one."""
    if not pretrip_id:
        raise bad_request("pretrip_id is required.")
    pretrip = db.scalar(
        select(FleetPretripReport)
        .where(FleetPretripReport.id == pretrip_id)
        .where(FleetPretripReport.shop_id == shop_id)
    )
    if pretrip is None:
        raise not_found("Pre-trip not found.")

    existing = _request_for_pretrip(db, pretrip.id)
    if existing is not None:
        return {"status": "already_linked", "service_request_id": existing.id}

    defects = defect_items(pretrip.checklist)
    severity = "safety" if any(item in CRITICAL_ITEMS for item in defects) else "compliance"

    summary_parts = []
    if defects:
        summary_parts.append("Defects:\n" + "\n".join(f"• {item}" for item in defects))
    if pretrip.notes:
        summary_parts.append(f"Notes:\n{pretrip.notes}")

    request = FleetServiceRequest(
        shop_id=pretrip.shop_id,
        vehicle_id=pretrip.vehicle_id,
        source_pretrip_id=pretrip.id,
        title="Pre-trip defects reported" if defects else "Pre-trip concern",
        summary="\n\n".join(summary_parts) or "Defects / concerns from pre-trip.",
        severity=severity,
        status="open",
        created_by=pretrip.driver_id,
    )
    try:
        db.add(request)
        db.commit()
        db.refresh(request)
    except IntegrityError:
        # Concurrent conversion of the same pre-trip
        db.rollback()
        existing = _request_for_pretrip(db, pretrip.id)
        if existing is None:
            raise
        return {"status": "already_linked", "service_request_id": existing.id}
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Pre-trip %s converted to service request %s (%s)", pretrip.id, request.id, severity)
    return {"status": "created", "service_request_id": request.id}


def create_service_request(
    db: Session,
    vehicle_id: int,
    title: str,
    summary: str | None = None,
    severity: str = "recommend",
    *,
    shop_id: int,
    created_by: int | None = None,
) -> FleetServiceRequest:
    _get_vehicle(db, vehicle_id, shop_id)
    title = (title or "").strip()
    if not title:
        raise bad_request("title is required")
    if severity not in SEVERITIES:
        raise bad_request(f"severity must be one of {', '.join(SEVERITIES)}")

    request = FleetServiceRequest(
        shop_id=shop_id,
        vehicle_id=vehicle_id,
        title=title,
        summary=(summary or "").strip() or None,
        severity=severity,
        status="open",
        created_by=created_by,
    )
    try:
        db.add(request)
        db.commit()
        db.refresh(request)
    except SQLAlchemyError:
        db.rollback()
        raise
    return request


def list_service_requests(db: Session, status: str | None = None, *, shop_id: int) -> list[dict]:
    query = select(FleetServiceRequest).where(FleetServiceRequest.shop_id == shop_id)
    if status:
        if status not in REQUEST_STATUSES:
            raise bad_request(f"status must be one of {', '.join(REQUEST_STATUSES)}")
        query = query.where(FleetServiceRequest.status == status)
    requests = list(
        db.scalars(query.order_by(FleetServiceRequest.created_at.desc(), FleetServiceRequest.id.desc()).limit(LIST_LIMIT))
    )

    vehicle_ids = {request.vehicle_id for request in requests}
    vehicles = (
        {vehicle.id: vehicle for vehicle in db.scalars(select(Vehicle).where(Vehicle.id.in_(vehicle_ids)))}
        if vehicle_ids
        else {}
    )

    return [
        {
            "id": request.id,
            "vehicle_id": request.vehicle_id,
            "unit_label": unit_label(vehicles.get(request.vehicle_id)),
            "plate": getattr(vehicles.get(request.vehicle_id), "license_plate", None),
            "title": request.title,
            "summary": request.summary,
            "severity": request.severity,
            "status": request.status,
            "work_order_id": request.work_order_id,
            "source_pretrip_id": request.source_pretrip_id,
            "created_at": request.created_at.isoformat() if request.created_at else None,
        }
        for request in requests
    ]


def convert_service_request_to_work_order(db: Session, service_request_id: int | None, *, profile: Profile) -> dict:
    """Create (or return the linked) work order and mark the request `in_shop`."""
    if not service_request_id:
        raise bad_request("service_request_id is required")
    if profile.role not in FLEET_ROLES:
        raise forbidden("Not authorized to convert service requests")

    request = db.scalar(
        select(FleetServiceRequest)
        .where(FleetServiceRequest.id == service_request_id)
        .where(FleetServiceRequest.shop_id == profile.shop_id)
    )
    if request is None:
        raise not_found("Service request not found for this shop")

    try:
        if request.work_order_id is not None:
            if request.status != "in_shop":
                request.status = "in_shop"
                db.commit()
            return {"work_order_id": request.work_order_id, "status": "already_linked"}

        vehicle = db.get(Vehicle, request.vehicle_id)
        notes = request.title if not request.summary else f"{request.title}\n\n{request.summary}"
        work_order = WorkOrder(
            shop_id=request.shop_id,
            vehicle_id=request.vehicle_id,
            customer_id=vehicle.customer_id if vehicle is not None else None,
            status="in_progress",
            notes=notes,
            created_by=profile.id,
        )
        db.add(work_order)
        db.flush()
        request.work_order_id = work_order.id
        request.status = "in_shop"
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Service request %s converted to work order %s", request.id, work_order.id)
    return {"work_order_id": work_order.id, "status": "converted"}
