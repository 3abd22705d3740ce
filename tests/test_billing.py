import json
from types import SimpleNamespace

import pytest
import stripe
from conftest import auth
from sqlalchemy import func, select

from repair_desk.db.models import Payment, Profile, Shop
from repair_desk.services import billing_service


@pytest.fixture()
def stripe_keys(monkeypatch):
    monkeypatch.setattr(billing_service, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(billing_service, "STRIPE_WEBHOOK_SECRET", "whsec_123")


@pytest.fixture()
def fake_events(monkeypatch):
    def construct_event(payload, signature, secret):
        if signature != "good-signature":
            raise ValueError("No signatures found matching the expected signature")
        assert secret == "whsec_123"
        return json.loads(payload)

    monkeypatch.setattr(stripe.Webhook, "construct_event", construct_event)


@pytest.fixture()
def captured_checkout(monkeypatch):
    calls = []

    def create(**params):
        calls.append(params)
        return SimpleNamespace(id=f"cs_test_{len(calls)}", url=f"https://checkout.stripe.test/{len(calls)}")

    monkeypatch.setattr(stripe.checkout.Session, "create", create)
    return calls


def _connect_shop(db, shop_id, charges=True):
    shop = db.get(Shop, shop_id)
    shop.stripe_account_id = "acct_123"
    shop.stripe_charges_enabled = charges
    shop.stripe_payouts_enabled = True
    db.commit()


def _post_event(client, event, signature="good-signature"):
    return client.post(
        "/billing/webhook",
        content=json.dumps(event),
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


def test_platform_fee_rounds_down():
    assert billing_service.platform_fee_cents(12345, 300) == 370
    assert billing_service.platform_fee_cents(50, 300) == 1


def test_payment_checkout_requires_connected_shop(client, seed, stripe_keys):
    response = client.post("/billing/payments/checkout", json={"amount_cents": 5000}, headers=auth("owner-token"))
    assert response.status_code == 409
    assert response.json() == {"error": "Shop is not connected to Stripe yet", "code": "STRIPE_NOT_CONNECTED"}


def test_payment_checkout_requires_finished_onboarding(client, seed, db, stripe_keys):
    _connect_shop(db, seed.shop_id, charges=False)
    response = client.post("/billing/payments/checkout", json={"amount_cents": 5000}, headers=auth("owner-token"))
    assert response.status_code == 409
    assert response.json()["error"] == "Stripe onboarding not complete for this shop"


def test_payment_checkout_builds_destination_charge(client, seed, db, stripe_keys, captured_checkout):
    _connect_shop(db, seed.shop_id)
    response = client.post(
        "/billing/payments/checkout",
        json={"amount_cents": "12345", "currency": "CAD", "customer_email": " casey@example.com "},
        headers=auth("advisor-token"),
    )
    assert response.status_code == 200
    assert response.json() == {
        "url": "https://checkout.stripe.test/1",
        "session_id": "cs_test_1",
        "platform_fee_cents": 370,
    }

    params = captured_checkout[0]
    assert params["mode"] == "payment"
    assert params["customer_email"] == "casey@example.com"
    assert params["line_items"][0]["price_data"]["currency"] == "cad"
    assert params["line_items"][0]["price_data"]["unit_amount"] == 12345
    assert params["payment_intent_data"]["application_fee_amount"] == 370
    assert params["payment_intent_data"]["transfer_data"] == {"destination": "acct_123"}
    assert params["metadata"]["shop_id"] == str(seed.shop_id)


def test_payment_checkout_validation(client, seed, db, stripe_keys):
    _connect_shop(db, seed.shop_id)
    too_small = client.post("/billing/payments/checkout", json={"amount_cents": 10}, headers=auth("owner-token"))
    assert too_small.status_code == 400
    assert too_small.json()["error"] == "Invalid amountCents"

    overflow = client.post(
        "/billing/payments/checkout",
        content=b'{"amount_cents": 1e400}',
        headers={**auth("owner-token"), "Content-Type": "application/json"},
    )
    assert overflow.status_code == 400
    assert overflow.json()["error"] == "Invalid amountCents"

    mechanic = client.post("/billing/payments/checkout", json={"amount_cents": 5000}, headers=auth("mechanic-token"))
    assert mechanic.status_code == 403

    other_shop = client.post(
        "/billing/payments/checkout",
        json={"amount_cents": 5000, "shop_id": seed.other_shop_id},
        headers=auth("owner-token"),
    )
    assert other_shop.status_code == 403


def test_billing_without_stripe_key(client, seed, monkeypatch):
    monkeypatch.setattr(billing_service, "STRIPE_SECRET_KEY", None)
    response = client.post(
        "/billing/subscription/checkout", json={"price_id": "price_123"}, headers=auth("owner-token")
    )
    assert response.status_code == 500
    assert response.json() == {"error": "Missing STRIPE_SECRET_KEY", "code": "NOT_CONFIGURED"}


def test_subscription_checkout(client, seed, stripe_keys, captured_checkout):
    invalid = client.post("/billing/subscription/checkout", json={"price_id": "prod_1"}, headers=auth("owner-token"))
    assert invalid.status_code == 400

    response = client.post(
        "/billing/subscription/checkout",
        json={"price_id": "price_123", "cancel_path": "pricing"},
        headers=auth("owner-token"),
    )
    assert response.status_code == 200
    assert response.json()["session_id"] == "cs_test_1"

    params = captured_checkout[0]
    assert params["mode"] == "subscription"
    assert params["cancel_url"].endswith("/pricing")
    assert params["metadata"] == {
        "user_id": str(seed.owner_id),
        "purpose": "subscription",
        "shop_id": str(seed.shop_id),
    }


def test_connect_onboarding_creates_account_once(client, seed, db, stripe_keys, monkeypatch):
    created = []
    monkeypatch.setattr(
        stripe.Account, "create", lambda **params: created.append(params) or SimpleNamespace(id="acct_new")
    )
    monkeypatch.setattr(
        stripe.AccountLink, "create", lambda **params: SimpleNamespace(url=f"https://connect.test/{params['account']}")
    )

    first = client.post("/billing/connect/onboard", headers=auth("owner-token"))
    assert first.json() == {"url": "https://connect.test/acct_new", "account_id": "acct_new"}
    second = client.post("/billing/connect/onboard", headers=auth("owner-token"))
    assert second.json()["account_id"] == "acct_new"
    assert len(created) == 1

    advisor = client.post("/billing/connect/onboard", headers=auth("advisor-token"))
    assert advisor.status_code == 403


def test_webhook_rejects_bad_signatures(client, seed, stripe_keys, fake_events):
    missing = client.post("/billing/webhook", content=b"{}")
    assert missing.status_code == 400
    assert missing.json()["error"] == "Missing Stripe signature"

    forged = _post_event(client, {"type": "account.updated"}, signature="forged")
    assert forged.status_code == 400
    assert forged.json()["error"].startswith("Webhook Error")


def test_webhook_account_updated_syncs_flags(client, seed, db, stripe_keys, fake_events):
    shop = db.get(Shop, seed.shop_id)
    shop.stripe_account_id = "acct_123"
    db.commit()

    event = {
        "type": "account.updated",
        "data": {
            "object": {
                "id": "acct_123",
                "charges_enabled": True,
                "payouts_enabled": True,
                "details_submitted": True,
            }
        },
    }
    assert _post_event(client, event).json() == {"received": True}

    db.expire_all()
    shop = db.get(Shop, seed.shop_id)
    assert shop.stripe_charges_enabled is True
    assert shop.stripe_onboarding_completed is True


def test_webhook_records_payment_once(client, seed, db, stripe_keys, fake_events):
    event = {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_paid_1",
                "mode": "payment",
                "amount_total": 20000,
                "currency": "usd",
                "payment_intent": "pi_1",
                "metadata": {"shop_id": str(seed.shop_id), "work_order_id": "", "platform_fee_bps": "300"},
            }
        },
    }
    assert _post_event(client, event).status_code == 200
    assert _post_event(client, event).status_code == 200

    payments = db.scalars(select(Payment)).all()
    assert len(payments) == 1
    assert payments[0].amount_cents == 20000
    assert payments[0].platform_fee_cents == 600
    assert payments[0].work_order_id is None
    assert payments[0].status == "succeeded"


def test_webhook_completes_subscription_checkout(client, seed, db, stripe_keys, fake_events, monkeypatch):
    monkeypatch.setattr(
        stripe.Subscription,
        "retrieve",
        lambda subscription_id: {
            "id": subscription_id,
            "status": "trialing",
            "trial_end": 1893456000,
            "current_period_end": 1896134400,
        },
    )
    event = {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_sub_1",
                "mode": "subscription",
                "customer": "cus_1",
                "subscription": "sub_1",
                "metadata": {"user_id": str(seed.owner_id), "shop_id": str(seed.shop_id)},
            }
        },
    }
    assert _post_event(client, event).status_code == 200

    db.expire_all()
    owner = db.get(Profile, seed.owner_id)
    assert owner.stripe_checkout_complete is True
    assert owner.stripe_customer_id == "cus_1"
    shop = db.get(Shop, seed.shop_id)
    assert shop.stripe_subscription_id == "sub_1"
    assert shop.stripe_subscription_status == "trialing"
    assert shop.stripe_trial_end is not None

    cancelled = {
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": "sub_1", "customer": "cus_1", "status": "canceled"}},
    }
    assert _post_event(client, cancelled).status_code == 200
    db.expire_all()
    assert db.get(Shop, seed.shop_id).stripe_subscription_status == "canceled"
    assert db.scalar(select(func.count()).select_from(Payment)) == 0
