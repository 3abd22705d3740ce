"""Shop-health snapshot computed from the shop's own work-order history."""

from collections import defaultdict
from typing import Any, Final

from sqlalchemy import select
from sqlalchemy.orm import Session

from repair_desk.core.timeutils import as_utc
from repair_desk.db.models import WorkOrder, WorkOrderLine

TOP_REPAIRS_LIMIT: Final[int] = 5
HISTORY_STATUSES: Final[tuple[str, ...]] = ("completed", "ready_to_invoice", "invoiced")


def _round2(value: float) -> float:
    return round(value, 2)


def _line_value(line: WorkOrderLine) -> float:
    return float(line.price_estimate or 0)


def _repair_label(line: WorkOrderLine) -> str:
    text = (line.description or line.complaint or line.job_type or "general").strip()
    return " ".join(text.split()).capitalize() or "General"


def compute_shop_health(db: Session, *, shop_id: int, questionnaire: dict[str, Any] | None = None) -> dict:
    """KPIs, most common and highest value repairs for a shop."""
    work_orders = db.scalars(
        select(WorkOrder)
        .where(WorkOrder.shop_id == shop_id)
        .where(WorkOrder.status.in_(HISTORY_STATUSES))
    ).all()

    total_repair_orders = len(work_orders)
    dates = sorted(as_utc(wo.created_at) for wo in work_orders if wo.created_at is not None)

    by_repair: dict[str, dict[str, float]] = defaultdict(
        lambda: {"count": 0, "revenue": 0.0, "labor_hours": 0.0}
    )
    total_revenue = 0.0
    for work_order in work_orders:
        lines = [line for line in work_order.lines if line.voided_at is None]
        line_total = sum(_line_value(line) for line in lines)
        total_revenue += work_order.invoice_total if work_order.invoice_total is not None else line_total

        for line in lines:
            bucket = by_repair[_repair_label(line)]
            bucket["count"] += 1
            bucket["revenue"] += _line_value(line)
            bucket["labor_hours"] += float(line.labor_time or 0)

    def _as_row(label: str, stats: dict[str, float]) -> dict:
        count = int(stats["count"])
        return {
            "label": label,
            "count": count,
            "revenue": _round2(stats["revenue"]),
            "average_labor_hours": _round2(stats["labor_hours"] / count) if count else 0,
        }

    rows = [_as_row(label, stats) for label, stats in by_repair.items()]
    most_common = sorted(rows, key=lambda row: row["count"], reverse=True)[:TOP_REPAIRS_LIMIT]
    high_value = sorted(rows, key=lambda row: row["revenue"], reverse=True)[:TOP_REPAIRS_LIMIT]

    total_revenue = _round2(total_revenue)
    average_ro = _round2(total_revenue / total_repair_orders) if total_repair_orders else 0

    if total_repair_orders:
        summary = (
            f"{total_repair_orders} repair orders totalling ${total_revenue:,.2f} "
            f"(average ${average_ro:,.2f})."
        )
        if most_common:
            summary += f" Most common repair: {most_common[0]['label']}."
    else:
        summary = "Not enough history yet to score this shop."

    return {
        "period_start": dates[0].isoformat() if dates else None,
        "period_end": dates[-1].isoformat() if dates else None,
        "kpis": {
            "total_repair_orders": total_repair_orders,
            "total_revenue": total_revenue,
            "average_ro": average_ro,
        },
        "most_common_repairs": most_common,
        "high_value_repairs": high_value,
        "questionnaire": questionnaire or {},
        "narrative_summary": summary,
    }
