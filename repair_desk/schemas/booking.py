from datetime import datetime

from repair_desk.schemas.common import ORMModel


class BookingOut(ORMModel):
    id: int
    shop_id: int
    customer_id: int | None
    vehicle_id: int | None
    starts_at: datetime
    ends_at: datetime
    status: str
    notes: str | None
