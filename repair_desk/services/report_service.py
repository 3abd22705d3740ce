"""Business logic for operational reporting."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Final

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from repair_desk.core.domain_exceptions import bad_request
from repair_desk.core.timeutils import as_utc, utcnow
from repair_desk.db.models import Booking, JobPunch, Profile, WorkOrder, WorkOrderLine

TIME_RANGES: Final[tuple[str, ...]] = ("weekly", "monthly", "quarterly", "yearly")


def _day_bounds(target_date: date) -> tuple[datetime, datetime]:
    start = datetime.combine(target_date, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def get_daily_summary(
    db: Session,
    target_date: date | None = None,
    *,
    shop_id: int,
) -> dict:
    """Return operational summary for a given UTC date."""
    if target_date is None:
        target_date = utcnow().date()
    start, end = _day_bounds(target_date)

    # Work orders opened that day
    work_orders_opened = db.scalar(
        select(func.count())
        .select_from(WorkOrder)
        .where(WorkOrder.shop_id == shop_id)
        .where(WorkOrder.created_at >= start, WorkOrder.created_at < end)
    ) or 0

    invoiced_count, revenue = db.execute(
        select(func.count(WorkOrder.id), func.sum(WorkOrder.invoice_total))
        .where(WorkOrder.shop_id == shop_id)
        .where(WorkOrder.invoiced_at >= start, WorkOrder.invoiced_at < end)
    ).one()

    total_bookings = db.scalar(
        select(func.count())
        .select_from(Booking)
        .where(Booking.shop_id == shop_id)
        .where(Booking.starts_at >= start, Booking.starts_at < end)
    ) or 0

    cancelled_bookings = db.scalar(
        select(func.count())
        .select_from(Booking)
        .where(
            Booking.shop_id == shop_id,
            Booking.starts_at >= start,
            Booking.starts_at < end,
            Booking.status == "cancelled",
        )
    ) or 0

    # Lines currently being worked, regardless of date
    in_progress_lines = db.scalar(
        select(func.count())
        .select_from(WorkOrderLine)
        .where(WorkOrderLine.shop_id == shop_id)
        .where(WorkOrderLine.status == "in_progress")
        .where(WorkOrderLine.voided_at.is_(None))
    ) or 0

    return {
        "date": str(target_date),
        "work_orders_opened": int(work_orders_opened),
        "work_orders_invoiced": int(invoiced_count or 0),
        "total_bookings": int(total_bookings),
        "cancelled_bookings": int(cancelled_bookings),
        "in_progress_lines": int(in_progress_lines),
        "total_revenue": float(revenue or 0),
    }


def period_bounds(time_range: str, now: datetime) -> tuple[datetime, datetime]:
    """Half-open UTC window for the period containing `now`."""
    today = now.date()
    if time_range == "weekly":
        start_day = today - timedelta(days=today.weekday())
        end_day = start_day + timedelta(days=7)
    elif time_range == "quarterly":
        first_month = 3 * ((today.month - 1) // 3) + 1
        start_day = date(today.year, first_month, 1)
        end_day = date(today.year + 1, 1, 1) if first_month == 10 else date(today.year, first_month + 3, 1)
    elif time_range == "yearly":
        start_day = date(today.year, 1, 1)
        end_day = date(today.year + 1, 1, 1)
    else:
        start_day = date(today.year, today.month, 1)
        end_day = date(today.year + 1, 1, 1) if today.month == 12 else date(today.year, today.month + 1, 1)
    return _day_bounds(start_day)[0], _day_bounds(end_day)[0]


def is_tech_role(role: str | None) -> bool:
    normalized = (role or "").strip().lower()
    return "tech" in normalized or "mechanic" in normalized


def get_tech_stats(
    db: Session,
    time_range: str = "monthly",
    *,
    shop_id: int,
    now: datetime | None = None,
) -> dict:
    """Per-technician jobs, billed vs clocked hours and revenue for a period."""
    if time_range not in TIME_RANGES:
        raise bad_request(f"time_range must be one of {', '.join(TIME_RANGES)}")
    start, end = period_bounds(time_range, now or utcnow())

    techs = [
        profile
        for profile in db.scalars(select(Profile).where(Profile.shop_id == shop_id))
        if is_tech_role(profile.role)
    ]

    rows = []
    for tech in techs:
        jobs, billed_hours, revenue = db.execute(
            select(
                func.count(WorkOrderLine.id),
                func.sum(WorkOrderLine.labor_time),
                func.sum(WorkOrderLine.price_estimate),
            )
            .where(WorkOrderLine.shop_id == shop_id)
            .where(WorkOrderLine.assigned_tech_id == tech.id)
            .where(WorkOrderLine.voided_at.is_(None))
            .where(WorkOrderLine.created_at >= start, WorkOrderLine.created_at < end)
        ).one()

        punches = db.scalars(
            select(JobPunch)
            .where(JobPunch.shop_id == shop_id)
            .where(JobPunch.technician_id == tech.id)
            .where(JobPunch.ended_at.is_not(None))
            .where(JobPunch.started_at >= start, JobPunch.started_at < end)
        )
        clocked_hours = sum(
            (as_utc(punch.ended_at) - as_utc(punch.started_at)).total_seconds() / 3600 for punch in punches
        )

        billed_hours = float(billed_hours or 0)
        revenue = float(revenue or 0)
        rows.append(
            {
                "tech_id": tech.id,
                "name": tech.full_name or "Unnamed tech",
                "role": tech.role,
                "jobs": int(jobs or 0),
                "revenue": round(revenue, 2),
                "billed_hours": round(billed_hours, 2),
                "clocked_hours": round(clocked_hours, 2),
                "revenue_per_hour": round(revenue / clocked_hours, 2) if clocked_hours else 0.0,
                "efficiency_pct": round(billed_hours / clocked_hours * 100, 1) if clocked_hours else 0.0,
            }
        )

    rows.sort(key=lambda row: (-row["revenue"], -row["billed_hours"], row["tech_id"]))
    return {
        "shop_id": shop_id,
        "time_range": time_range,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "rows": rows,
    }
