from datetime import datetime
from typing import Any

from repair_desk.schemas.common import ORMModel


class PartOut(ORMModel):
    id: int
    name: str
    sku: str | None
    unit_cost: float | None
    unit_price: float | None
    quantity_on_hand: float


class AllocationOut(ORMModel):
    id: int
    work_order_line_id: int
    part_id: int
    qty: float


class PartRequestItemOut(ORMModel):
    id: int
    description: str
    qty: float
    part_id: int | None
    quoted_price: float | None


class PartRequestOut(ORMModel):
    id: int
    work_order_id: int | None
    work_order_line_id: int | None
    requested_by: int | None
    status: str
    notes: str | None
    items: list[PartRequestItemOut] = []


class InspectionTemplateOut(ORMModel):
    id: int
    name: str
    sections: list[dict[str, Any]]


class InspectionSessionOut(ORMModel):
    id: int
    work_order_id: int
    template_id: int | None
    status: str
    items: list[dict[str, Any]]
    completed_at: datetime | None
