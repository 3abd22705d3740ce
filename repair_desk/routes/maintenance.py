"""Maintenance rule generation and interval lookups."""

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.ai.maintenance_generator import generate_rules_for_vehicle
from repair_desk.core.auth import require_staff
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db
from repair_desk.intelligence.maintenance_rules import get_cached_suggestions
from repair_desk.intelligence.service_intervals import suggest_services_for_vehicle

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


class GenerateRulesRequest(BaseModel):
    year: int | None = None
    make: str | None = None
    model: str | None = None
    engine_family: str | None = None
    force_refresh: bool = False


@router.post("/rules/generate")
def api_generate_rules(
    payload: GenerateRulesRequest,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return generate_rules_for_vehicle(
        db,
        payload.year,
        payload.make,
        payload.model,
        engine_family=payload.engine_family,
        force_refresh=payload.force_refresh,
    )


@router.get("/intervals")
def api_service_intervals(
    mileage: float | None = None,
    year: int | None = None,
    is_diesel: bool = False,
    is_heavy_duty: bool = False,
    is_4x4: bool = False,
    units: Literal["km", "mi"] = "km",
    profile: Profile = Depends(require_staff),
):
    services = suggest_services_for_vehicle(
        mileage=mileage,
        year=year,
        is_diesel=is_diesel,
        is_heavy_duty=is_heavy_duty,
        is_4x4=is_4x4,
        units=units,
    )
    return {"services": services}


@router.get("/vehicles/{vehicle_id}/suggestions")
def api_vehicle_suggestions(
    vehicle_id: int,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return get_cached_suggestions(db, shop_id=profile.shop_id, vehicle_id=vehicle_id)
