"""Stripe checkout, Connect onboarding and webhook routes."""

from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.core.auth import get_current_profile, require_staff
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db
from repair_desk.services import billing_service

router = APIRouter(prefix="/billing", tags=["Billing"])


class SubscriptionCheckout(BaseModel):
    price_id: str | None = None
    success_path: str | None = None
    cancel_path: str | None = None


class PaymentCheckout(BaseModel):
    shop_id: int | None = None
    amount_cents: Any = None
    currency: str | None = None
    description: str | None = None
    work_order_id: int | None = None
    customer_email: str | None = None
    success_path: str | None = None
    cancel_path: str | None = None


class ConnectOnboard(BaseModel):
    shop_id: int | None = None


class PortalSession(BaseModel):
    return_path: str | None = None


@router.post("/subscription/checkout")
def api_subscription_checkout(
    payload: SubscriptionCheckout,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return billing_service.create_subscription_checkout(
        db,
        payload.price_id,
        success_path=payload.success_path,
        cancel_path=payload.cancel_path,
        profile=profile,
    )


@router.post("/payments/checkout")
def api_payment_checkout(
    payload: PaymentCheckout,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return billing_service.create_payment_checkout(
        db,
        payload.amount_cents,
        currency=payload.currency,
        description=payload.description,
        work_order_id=payload.work_order_id,
        customer_email=payload.customer_email,
        success_path=payload.success_path,
        cancel_path=payload.cancel_path,
        shop_id=payload.shop_id,
        profile=profile,
    )


@router.post("/connect/onboard")
def api_connect_onboard(
    payload: ConnectOnboard | None = None,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    shop_id = payload.shop_id if payload else None
    return billing_service.create_connect_onboarding_link(db, shop_id=shop_id, profile=profile)


@router.post("/portal")
def api_billing_portal(
    payload: PortalSession | None = None,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return_path = payload.return_path if payload else None
    return billing_service.create_billing_portal_session(db, return_path=return_path, profile=profile)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    payload = await request.body()
    return billing_service.handle_webhook(db, payload, stripe_signature)
