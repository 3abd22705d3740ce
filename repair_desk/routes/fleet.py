"""Fleet pre-trip and service request routes."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.core.auth import get_current_profile, require_shop
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db
from repair_desk.schemas.common import ListResponse
from repair_desk.schemas.fleet import PretripOut, ServiceRequestOut
from repair_desk.services import fleet_service

router = APIRouter(prefix="/fleet", tags=["Fleet"])


class PretripCreate(BaseModel):
    vehicle_id: int
    checklist: dict[str, Any]
    notes: str | None = None
    odometer_km: float | None = None


class PretripConvert(BaseModel):
    pretrip_id: int | None = None


class ServiceRequestCreate(BaseModel):
    vehicle_id: int
    title: str
    summary: str | None = None
    severity: str = "recommend"


class ServiceRequestConvert(BaseModel):
    service_request_id: int | None = None


@router.post("/pretrips", response_model=PretripOut, status_code=201)
def api_submit_pretrip(
    payload: PretripCreate,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return fleet_service.submit_pretrip(
        db,
        payload.vehicle_id,
        payload.checklist,
        notes=payload.notes,
        odometer_km=payload.odometer_km,
        shop_id=require_shop(profile),
        driver_id=profile.id,
    )


@router.get("/pretrips", response_model=ListResponse[PretripOut])
def api_list_pretrips(
    vehicle_id: int | None = None,
    defects_only: bool = False,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    pretrips = fleet_service.list_pretrips(
        db,
        vehicle_id=vehicle_id,
        defects_only=defects_only,
        shop_id=require_shop(profile),
    )
    return ListResponse(items=pretrips)


@router.post("/pretrips/convert-to-service-request")
def api_convert_pretrip(
    payload: PretripConvert,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return fleet_service.convert_pretrip_to_service_request(db, payload.pretrip_id, shop_id=require_shop(profile))


@router.post("/service-requests", response_model=ServiceRequestOut, status_code=201)
def api_create_service_request(
    payload: ServiceRequestCreate,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return fleet_service.create_service_request(
        db,
        payload.vehicle_id,
        payload.title,
        summary=payload.summary,
        severity=payload.severity,
        shop_id=require_shop(profile),
        created_by=profile.id,
    )


@router.get("/service-requests")
def api_list_service_requests(
    status: str | None = None,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return {"items": fleet_service.list_service_requests(db, status=status, shop_id=require_shop(profile))}


@router.post("/service-requests/convert-to-work-order")
def api_convert_service_request(
    payload: ServiceRequestConvert,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return fleet_service.convert_service_request_to_work_order(db, payload.service_request_id, profile=profile)
