"""Customer and vehicle records for the caller's shop."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.core.auth import require_staff
from repair_desk.core.domain_exceptions import bad_request, not_found
from repair_desk.db.models import Customer, Profile, Vehicle
from repair_desk.db.session import get_db
from repair_desk.schemas.common import ListResponse
from repair_desk.schemas.records import CustomerOut, VehicleOut

router = APIRouter(tags=["Customers"])


class CustomerCreate(BaseModel):
    name: str
    phone: str | None = None
    email: str | None = None


class VehicleCreate(BaseModel):
    customer_id: int | None = None
    year: int | None = None
    make: str | None = None
    model: str | None = None
    vin: str | None = None
    license_plate: str | None = None
    unit_number: str | None = None
    engine_family: str | None = None
    mileage: float | None = None
    is_diesel: bool = False
    is_heavy_duty: bool = False
    is_4x4: bool = False


def _save(db: Session, record):
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
    except SQLAlchemyError:
        db.rollback()
        raise
    return record


@router.post("/customers", response_model=CustomerOut, status_code=201)
def api_create_customer(
    payload: CustomerCreate,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    name = payload.name.strip()
    if not name:
        raise bad_request("name is required")
    return _save(
        db,
        Customer(
            shop_id=profile.shop_id,
            name=name,
            phone=(payload.phone or "").strip() or None,
            email=(payload.email or "").strip() or None,
        ),
    )


@router.get("/customers", response_model=ListResponse[CustomerOut])
def api_list_customers(
    q: str | None = None,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    query = select(Customer).where(Customer.shop_id == profile.shop_id)
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        query = query.where(
            or_(Customer.name.ilike(pattern), Customer.phone.ilike(pattern), Customer.email.ilike(pattern))
        )
    return ListResponse(items=list(db.scalars(query.order_by(Customer.name, Customer.id))))


@router.post("/vehicles", response_model=VehicleOut, status_code=201)
def api_create_vehicle(
    payload: VehicleCreate,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    if payload.customer_id is not None:
        customer = db.get(Customer, payload.customer_id)
        if customer is None or customer.shop_id != profile.shop_id:
            raise not_found("Customer not found")
    values = payload.model_dump()
    if values["vin"]:
        values["vin"] = values["vin"].strip().upper()
    return _save(db, Vehicle(shop_id=profile.shop_id, **values))


@router.get("/vehicles", response_model=ListResponse[VehicleOut])
def api_list_vehicles(
    customer_id: int | None = None,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    query = select(Vehicle).where(Vehicle.shop_id == profile.shop_id)
    if customer_id is not None:
        query = query.where(Vehicle.customer_id == customer_id)
    return ListResponse(items=list(db.scalars(query.order_by(Vehicle.id))))
