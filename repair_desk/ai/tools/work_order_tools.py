"""
Work order tools exposed to the planners.

Each tool receives the caller's shop and wraps a service call.
"""

from datetime import date
from typing import Final

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from repair_desk.db.models import Customer, Vehicle
from repair_desk.services.report_service import get_daily_summary
from repair_desk.services.work_order_service import add_line, create_work_order

JOB_TYPES: Final[tuple[str, ...]] = ("maintenance", "repair", "diagnosis", "inspection")
MAX_QUERY_LENGTH: Final[int] = 64
MAX_MATCHES: Final[int] = 10


def coerce_job_type(value) -> str:
    return value if isinstance(value, str) and value in JOB_TYPES else "repair"


def _match_row(customer: Customer | None, vehicle: Vehicle) -> dict:
    return {
        "customer_id": vehicle.customer_id,
        "customer_name": customer.name if customer else None,
        "vehicle_id": vehicle.id,
        "year": vehicle.year,
        "make": vehicle.make,
        "model": vehicle.model,
        "vin": vehicle.vin,
        "license_plate": vehicle.license_plate,
    }


def tool_find_customer_vehicle(
    db: Session,
    shop_id: int,
    customer_query: str | None = None,
    plate_or_vin: str | None = None,
):
    """Fuzzy search customers and vehicles by name, plate, or VIN."""
    plate_or_vin = (plate_or_vin or "").strip()[:MAX_QUERY_LENGTH]
    customer_query = (customer_query or "").strip()[:MAX_QUERY_LENGTH]

    matches: list[dict] = []
    if plate_or_vin:
        pattern = f"%{plate_or_vin}%"
        rows = db.execute(
            select(Vehicle, Customer)
            .outerjoin(Customer, Customer.id == Vehicle.customer_id)
            .where(Vehicle.shop_id == shop_id)
            .where(or_(Vehicle.license_plate.ilike(pattern), Vehicle.vin.ilike(pattern)))
            .limit(MAX_MATCHES)
        ).all()
        matches = [_match_row(customer, vehicle) for vehicle, customer in rows]

    if not matches and customer_query:
        pattern = f"%{customer_query}%"
        rows = db.execute(
            select(Vehicle, Customer)
            .join(Customer, Customer.id == Vehicle.customer_id)
            .where(Customer.shop_id == shop_id)
            .where(
                or_(
                    Customer.name.ilike(pattern),
                    Customer.phone.ilike(pattern),
                    Customer.email.ilike(pattern),
                )
            )
            .limit(MAX_MATCHES)
        ).all()
        matches = [_match_row(customer, vehicle) for vehicle, customer in rows]

    if not matches:
        reason = (
            "Provide a customer name, plate or VIN."
            if not plate_or_vin and not customer_query
            else "No matching customer vehicle in this shop."
        )
        return {"found": False, "matches": [], "reason": reason}

    return {
        "found": True,
        "customer_id": matches[0]["customer_id"],
        "vehicle_id": matches[0]["vehicle_id"],
        "matches": matches,
    }


def tool_create_work_order(
    db: Session,
    shop_id: int,
    customer_id: int,
    vehicle_id: int,
    notes: str | None = None,
    created_by: int | None = None,
):
    """Create a work order for a customer's vehicle."""
    work_order = create_work_order(
        db,
        customer_id=customer_id,
        vehicle_id=vehicle_id,
        notes=notes,
        shop_id=shop_id,
        created_by=created_by,
    )
    return {"work_order_id": work_order.id, "status": work_order.status}


def tool_add_work_order_line(
    db: Session,
    shop_id: int,
    work_order_id: int,
    description: str,
    job_type: str | None = None,
    labor_hours: float | None = None,
    notes: str | None = None,
):
    """Add a job line to an existing work order."""
    line = add_line(
        db,
        work_order_id,
        description=description,
        job_type=coerce_job_type(job_type),
        labor_hours=labor_hours if labor_hours is not None else 1,
        suggestion_notes=notes,
        shop_id=shop_id,
    )
    return {"line_id": line.id, "work_order_id": line.work_order_id, "status": line.status}


def tool_get_daily_summary(
    db: Session,
    shop_id: int,
    target_date: date | None = None,
):
    """
    Returns work order and revenue summary for a given date.
    If no date provided → defaults to today.
    """
    return get_daily_summary(db, target_date=target_date or date.today(), shop_id=shop_id)
