from datetime import datetime
from typing import Any

from repair_desk.schemas.common import ORMModel


class WorkOrderLineOut(ORMModel):
    id: int
    work_order_id: int
    description: str | None
    job_type: str | None
    status: str
    approval_state: str | None
    complaint: str | None
    cause: str | None
    correction: str | None
    notes: str | None
    labor_time: float | None
    price_estimate: float | None
    service_code: str | None
    assigned_tech_id: int | None
    parts_needed: dict[str, Any] | None
    punchable: bool
    voided_at: datetime | None
    void_reason: str | None


class WorkOrderOut(ORMModel):
    id: int
    shop_id: int
    customer_id: int | None
    vehicle_id: int | None
    status: str
    notes: str | None
    odometer_km: float | None
    is_waiter: bool
    invoiced_at: datetime | None
    invoice_total: float | None
    created_at: datetime | None = None


class WorkOrderDetail(WorkOrderOut):
    lines: list[WorkOrderLineOut] = []


class JobPunchOut(ORMModel):
    id: int
    work_order_line_id: int
    technician_id: int
    started_at: datetime
    ended_at: datetime | None


class QuoteLineOut(ORMModel):
    id: int
    work_order_id: int
    description: str
    job_type: str | None
    qty: int
    labor_hours: float | None
    price_estimate: float | None
    notes: str | None
    status: str
