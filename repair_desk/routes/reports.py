"""Operational reporting routes."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from repair_desk.core.auth import require_staff
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db
from repair_desk.services.report_service import get_daily_summary, get_tech_stats

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/daily")
def daily_report(
    report_date: date | None = Query(
        default=None,
        description="Date in YYYY-MM-DD format",
    ),
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return get_daily_summary(
        db=db,
        target_date=report_date,
        shop_id=profile.shop_id,
    )


@router.get("/tech-stats")
def tech_stats_report(
    time_range: str = Query(default="monthly", description="weekly, monthly, quarterly or yearly"),
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return get_tech_stats(db=db, time_range=time_range, shop_id=profile.shop_id)
