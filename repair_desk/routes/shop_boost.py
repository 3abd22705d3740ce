"""Shop boost intake routes and the internal processing hook."""

from typing import Any

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.core.auth import require_roles, require_shop
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db
from repair_desk.schemas.messaging import ShopBoostIntakeOut
from repair_desk.services import shop_boost_service

router = APIRouter(tags=["Shop Boost"])

require_owner = require_roles("owner", "admin", "manager")


class IntakeCreate(BaseModel):
    questionnaire: dict[str, Any] = {}


class ProcessRequest(BaseModel):
    intake_id: int


@router.post("/shop-boost/intakes", response_model=ShopBoostIntakeOut, status_code=201)
def api_submit_intake(
    payload: IntakeCreate,
    profile: Profile = Depends(require_owner),
    db: Session = Depends(get_db),
):
    return shop_boost_service.submit_intake(db, payload.questionnaire, shop_id=require_shop(profile))


@router.get("/shop-boost/intakes/{intake_id}", response_model=ShopBoostIntakeOut)
def api_get_intake(intake_id: int, profile: Profile = Depends(require_owner), db: Session = Depends(get_db)):
    return shop_boost_service.get_intake(db, intake_id, shop_id=require_shop(profile))


@router.post("/internal/shop-boost/process", response_model=ShopBoostIntakeOut)
def api_process_intake(
    payload: ProcessRequest,
    x_shop_boost_secret: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    shop_boost_service.verify_secret(x_shop_boost_secret)
    return shop_boost_service.process_intake(db, payload.intake_id)
