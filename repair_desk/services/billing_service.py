"""Stripe subscriptions, Connect payments and webhook synchronisation."""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Final

import stripe
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.core.auth import BILLING_ROLES, CONNECT_ROLES
from repair_desk.core.config import PLATFORM_FEE_BPS, SITE_URL, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from repair_desk.core.domain_exceptions import DomainException, bad_request, conflict, forbidden, not_found
from repair_desk.core.error_codes import ErrorCode
from repair_desk.core.timeutils import utcnow
from repair_desk.db.models import Payment, Profile, Shop, WorkOrder

logger = logging.getLogger(__name__)

if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY
else:
    logger.warning("STRIPE_SECRET_KEY not set. Billing endpoints will fail at runtime.")

MIN_AMOUNT_CENTS: Final[int] = 50
CURRENCIES: Final[tuple[str, ...]] = ("usd", "cad")
DEFAULT_SUBSCRIPTION_SUCCESS_PATH: Final[str] = "/signup?session_id={CHECKOUT_SESSION_ID}"
DEFAULT_SUBSCRIPTION_CANCEL_PATH: Final[str] = "/subscribe"
DEFAULT_PAYMENT_SUCCESS_PATH: Final[str] = "/pay/success?session_id={CHECKOUT_SESSION_ID}"
DEFAULT_PAYMENT_CANCEL_PATH: Final[str] = "/pay/cancel"
CONNECT_REFRESH_PATH: Final[str] = "/dashboard/owner/settings?stripe=refresh"
CONNECT_RETURN_PATH: Final[str] = "/dashboard/owner/settings?stripe=return"
PORTAL_RETURN_PATH: Final[str] = "/dashboard/owner/settings"


def _require_stripe() -> None:
    if not STRIPE_SECRET_KEY:
        raise DomainException(code=ErrorCode.NOT_CONFIGURED, message="Missing STRIPE_SECRET_KEY")


def _upstream(exc: Exception, action: str) -> DomainException:
    logger.exception("Stripe %s failed", action)
    return DomainException(code=ErrorCode.UPSTREAM_ERROR, message=f"Stripe request failed: {exc}")


def _site_path(path: str | None, default: str) -> str:
    path = (path or "").strip() or default
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{SITE_URL}{path}"


def platform_fee_cents(amount_cents: int, bps: int = PLATFORM_FEE_BPS) -> int:
    return math.floor(amount_cents * bps / 10000)


def normalize_currency(raw: str | None) -> str:
    currency = (raw or "").strip().lower()
    return currency if currency in CURRENCIES else "usd"


def _get_shop(db: Session, shop_id: int) -> Shop:
    shop = db.get(Shop, shop_id)
    if shop is None:
        raise not_found("Shop not found")
    return shop


def _check_scope(profile: Profile, shop_id: int | None, roles: frozenset[str]) -> int:
    if profile.shop_id is None or (shop_id is not None and shop_id != profile.shop_id):
        raise forbidden()
    if (profile.role or "").lower() not in roles:
        raise forbidden()
    return profile.shop_id


def create_subscription_checkout(
    db: Session,
    price_id: str | None,
    success_path: str | None = None,
    cancel_path: str | None = None,
    *,
    profile: Profile,
) -> dict:
    """Start a subscription Checkout Session for the caller's shop."""
    _require_stripe()
    price_id = (price_id or "").strip()
    if not price_id.startswith("price_"):
        raise bad_request("Missing/invalid priceId (expected Stripe price_*)")

    metadata = {"user_id": str(profile.id), "purpose": "subscription"}
    if profile.shop_id is not None:
        metadata["shop_id"] = str(profile.shop_id)

    try:
        session = stripe.checkout.Session.create(
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=_site_path(success_path, DEFAULT_SUBSCRIPTION_SUCCESS_PATH),
            cancel_url=_site_path(cancel_path, DEFAULT_SUBSCRIPTION_CANCEL_PATH),
            customer_email=profile.email or None,
            metadata=metadata,
        )
    except stripe.StripeError as exc:
        raise _upstream(exc, "subscription checkout") from exc

    if not session.url:
        raise DomainException(code=ErrorCode.INTERNAL_ERROR, message="Stripe did not return a Checkout URL")
    logger.info("Subscription checkout %s created for profile_id=%s", session.id, profile.id)
    return {"url": session.url, "session_id": session.id}


def create_payment_checkout(
    db: Session,
    amount_cents: Any,
    currency: str | None = None,
    description: str | None = None,
    work_order_id: int | None = None,
    customer_email: str | None = None,
    success_path: str | None = None,
    cancel_path: str | None = None,
    shop_id: int | None = None,
    *,
    profile: Profile,
) -> dict:
    """Destination charge on the shop's connected account with a platform fee."""
    _require_stripe()
    shop_id = _check_scope(profile, shop_id, BILLING_ROLES)

    try:
        amount = int(float(amount_cents))
    except (TypeError, ValueError, OverflowError):
        raise bad_request("Invalid amountCents") from None
    if amount < MIN_AMOUNT_CENTS:
        raise bad_request("Invalid amountCents")
    currency = normalize_currency(currency)
    description = (description or "").strip() or "Repair order payment"

    if work_order_id is not None:
        work_order = db.scalar(
            select(WorkOrder).where(WorkOrder.id == work_order_id).where(WorkOrder.shop_id == shop_id)
        )
        if work_order is None:
            raise not_found("Work order not found")

    shop = _get_shop(db, shop_id)
    account_id = (shop.stripe_account_id or "").strip()
    if not account_id.startswith("acct_"):
        raise conflict("Shop is not connected to Stripe yet", code=ErrorCode.STRIPE_NOT_CONNECTED)
    if not (shop.stripe_charges_enabled and shop.stripe_payouts_enabled):
        raise conflict("Stripe onboarding not complete for this shop", code=ErrorCode.STRIPE_NOT_CONNECTED)

    fee = platform_fee_cents(amount)
    metadata = {
        "shop_id": str(shop_id),
        "work_order_id": str(work_order_id) if work_order_id is not None else "",
        "purpose": "customer_payment",
        "platform_fee_bps": str(PLATFORM_FEE_BPS),
    }
    params: dict[str, Any] = {
        "mode": "payment",
        "line_items": [
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": description},
                    "unit_amount": amount,
                },
                "quantity": 1,
            }
        ],
        "success_url": _site_path(success_path, DEFAULT_PAYMENT_SUCCESS_PATH),
        "cancel_url": _site_path(cancel_path, DEFAULT_PAYMENT_CANCEL_PATH),
        "payment_intent_data": {
            "application_fee_amount": fee,
            "transfer_data": {"destination": account_id},
            "metadata": {"shop_id": metadata["shop_id"], "work_order_id": metadata["work_order_id"]},
        },
        "metadata": metadata,
    }
    if customer_email and customer_email.strip():
        params["customer_email"] = customer_email.strip()

    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as exc:
        raise _upstream(exc, "payment checkout") from exc

    if not session.url:
        raise DomainException(code=ErrorCode.INTERNAL_ERROR, message="Stripe did not return a Checkout URL")
    logger.info(
        "Payment checkout %s created shop_id=%s amount=%s %s fee=%s",
        session.id,
        shop_id,
        amount,
        currency,
        fee,
    )
    return {"url": session.url, "session_id": session.id, "platform_fee_cents": fee}


def create_connect_onboarding_link(db: Session, shop_id: int | None = None, *, profile: Profile) -> dict:
    """Return an Account Link, creating the shop's Express account first if needed."""
    _require_stripe()
    shop_id = _check_scope(profile, shop_id, CONNECT_ROLES)
    shop = _get_shop(db, shop_id)

    account_id = (shop.stripe_account_id or "").strip() or None
    try:
        if account_id is None:
            account = stripe.Account.create(
                type="express",
                country="US",
                email=profile.email or None,
                business_profile={"name": shop.name or "Repair shop", "product_description": "Auto repair services"},
                capabilities={"card_payments": {"requested": True}, "transfers": {"requested": True}},
                metadata={"shop_id": str(shop_id)},
            )
            account_id = account.id
            try:
                shop.stripe_account_id = account_id
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
            logger.info("Created Stripe Express account %s for shop_id=%s", account_id, shop_id)

        link = stripe.AccountLink.create(
            account=account_id,
            refresh_url=f"{SITE_URL}{CONNECT_REFRESH_PATH}",
            return_url=f"{SITE_URL}{CONNECT_RETURN_PATH}",
            type="account_onboarding",
        )
    except stripe.StripeError as exc:
        raise _upstream(exc, "connect onboarding") from exc

    return {"url": link.url, "account_id": account_id}


def create_billing_portal_session(db: Session, return_path: str | None = None, *, profile: Profile) -> dict:
    _require_stripe()
    shop_id = _check_scope(profile, None, CONNECT_ROLES)
    shop = _get_shop(db, shop_id)
    customer_id = shop.stripe_customer_id or profile.stripe_customer_id
    if not customer_id:
        raise conflict("Shop has no Stripe customer yet", code=ErrorCode.STRIPE_NOT_CONNECTED)

    try:
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=_site_path(return_path, PORTAL_RETURN_PATH),
        )
    except stripe.StripeError as exc:
        raise _upstream(exc, "billing portal") from exc
    return {"url": session.url}


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


def _stripe_id(value: Any, prefix: str) -> str | None:
    if isinstance(value, str):
        return value if value.startswith(prefix) else None
    if hasattr(value, "get"):
        nested = value.get("id")
        if isinstance(nested, str) and nested.startswith(prefix):
            return nested
    return None


def _from_unix(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _int_or_none(value: Any) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _apply_subscription(shop: Shop, subscription: Any) -> None:
    shop.stripe_subscription_id = subscription.get("id") or shop.stripe_subscription_id
    shop.stripe_subscription_status = subscription.get("status") or None
    shop.stripe_trial_end = _from_unix(subscription.get("trial_end"))
    shop.stripe_current_period_end = _from_unix(subscription.get("current_period_end"))


def _sync_account(db: Session, account: Any) -> None:
    account_id = account.get("id")
    if not account_id:
        return
    shop = db.scalar(select(Shop).where(Shop.stripe_account_id == account_id))
    if shop is None:
        logger.info("account.updated for unknown account %s", account_id)
        return

    shop.stripe_charges_enabled = bool(account.get("charges_enabled"))
    shop.stripe_payouts_enabled = bool(account.get("payouts_enabled"))
    shop.stripe_details_submitted = bool(account.get("details_submitted"))
    shop.stripe_onboarding_completed = (
        shop.stripe_charges_enabled and shop.stripe_payouts_enabled and shop.stripe_details_submitted
    )
    db.commit()


def _complete_subscription_checkout(db: Session, session: Any) -> None:
    metadata = session.get("metadata") or {}
    customer_id = _stripe_id(session.get("customer"), "cus_")
    subscription_id = _stripe_id(session.get("subscription"), "sub_")

    profile_id = _int_or_none(metadata.get("user_id"))
    profile = db.get(Profile, profile_id) if profile_id is not None else None
    if profile is not None:
        profile.stripe_checkout_complete = True
        profile.stripe_customer_id = customer_id
        profile.stripe_subscription_id = subscription_id
        profile.stripe_checkout_session_id = session.get("id")

    shop_id = _int_or_none(metadata.get("shop_id"))
    shop = db.get(Shop, shop_id) if shop_id is not None else None
    if shop is not None:
        shop.stripe_customer_id = customer_id
        shop.stripe_subscription_id = subscription_id
        if subscription_id:
            _apply_subscription(shop, stripe.Subscription.retrieve(subscription_id))
    db.commit()


def _record_payment(db: Session, session: Any) -> None:
    metadata = session.get("metadata") or {}
    shop_id = _int_or_none(metadata.get("shop_id"))
    session_id = session.get("id")
    if shop_id is None or not session_id:
        logger.warning("Payment checkout %s completed without shop metadata", session_id)
        return

    if db.scalar(select(Payment.id).where(Payment.stripe_session_id == session_id)) is not None:
        logger.info("Duplicate payment for session %s ignored", session_id)
        return

    amount = session.get("amount_total")
    amount = amount if isinstance(amount, int) else 0
    intent = session.get("payment_intent")
    bps = _int_or_none(metadata.get("platform_fee_bps"))
    db.add(
        Payment(
            shop_id=shop_id,
            work_order_id=_int_or_none(metadata.get("work_order_id")),
            stripe_session_id=session_id,
            stripe_payment_intent_id=intent if isinstance(intent, str) else None,
            amount_cents=amount,
            currency=normalize_currency(session.get("currency")),
            platform_fee_cents=platform_fee_cents(amount, bps) if bps is not None else None,
            status="succeeded",
            paid_at=utcnow(),
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Duplicate payment for session %s ignored", session_id)


def _sync_subscription(db: Session, subscription: Any) -> None:
    subscription_id = subscription.get("id")
    if not subscription_id:
        return
    customer_id = _stripe_id(subscription.get("customer"), "cus_")
    filters = [Shop.stripe_subscription_id == subscription_id]
    if customer_id:
        filters.append(Shop.stripe_customer_id == customer_id)
    shop = db.scalar(select(Shop).where(or_(*filters)).limit(1))
    if shop is None:
        logger.info("Subscription %s does not match any shop", subscription_id)
        return

    shop.stripe_customer_id = customer_id or shop.stripe_customer_id
    _apply_subscription(shop, subscription)
    db.commit()


def handle_webhook(db: Session, payload: bytes, signature: str | None) -> dict:
    """Verify and apply a Stripe webhook event."""
    if not STRIPE_WEBHOOK_SECRET:
        raise DomainException(code=ErrorCode.NOT_CONFIGURED, message="Missing STRIPE_WEBHOOK_SECRET")
    if not signature:
        raise bad_request("Missing Stripe signature")

    try:
        event = stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        raise bad_request(f"Webhook Error: {exc}") from exc

    event_type = event["type"]
    obj = event["data"]["object"]
    logger.info("Stripe webhook %s received", event_type)

    try:
        if event_type == "account.updated":
            _sync_account(db, obj)
        elif event_type == "checkout.session.completed":
            if obj.get("mode") == "subscription":
                _complete_subscription_checkout(db, obj)
            elif obj.get("mode") == "payment":
                _record_payment(db, obj)
        elif event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
            _sync_subscription(db, obj)
    except SQLAlchemyError:
        db.rollback()
        raise
    except stripe.StripeError as exc:
        db.rollback()
        raise _upstream(exc, "webhook sync") from exc

    return {"received": True}
