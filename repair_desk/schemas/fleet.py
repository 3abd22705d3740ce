from datetime import datetime

from repair_desk.schemas.common import ORMModel


class PretripOut(ORMModel):
    id: int
    vehicle_id: int
    driver_id: int | None
    checklist: dict[str, str]
    notes: str | None
    odometer_km: float | None
    has_defects: bool
    created_at: datetime | None = None


class ServiceRequestOut(ORMModel):
    id: int
    vehicle_id: int
    source_pretrip_id: int | None
    title: str
    summary: str | None
    severity: str
    status: str
    work_order_id: int | None
