from datetime import datetime

from repair_desk.schemas.common import ORMModel


class CustomerOut(ORMModel):
    id: int
    shop_id: int | None
    name: str | None
    phone: str | None
    email: str | None
    created_at: datetime | None = None


class VehicleOut(ORMModel):
    id: int
    shop_id: int | None
    customer_id: int | None
    year: int | None
    make: str | None
    model: str | None
    vin: str | None
    license_plate: str | None
    unit_number: str | None
    engine_family: str | None
    mileage: float | None
    is_diesel: bool
    is_heavy_duty: bool
    is_4x4: bool
