from datetime import date, datetime, timedelta, timezone

import pytest
from conftest import auth

from repair_desk.core.domain_exceptions import DomainException
from repair_desk.db.models import Booking, Customer, Shop, ShopTimeOff
from repair_desk.services import booking_service

NOW = datetime(2030, 1, 1, 0, 0, tzinfo=timezone.utc)


def _utc(hour: int, minute: int = 0, day: int = 2) -> datetime:
    return datetime(2030, 1, day, hour, minute, tzinfo=timezone.utc)


def _add_booking(db, shop_id, starts_at, ends_at, status="confirmed"):
    booking = Booking(shop_id=shop_id, starts_at=starts_at, ends_at=ends_at, status=status)
    db.add(booking)
    db.commit()
    return booking


def test_availability_lists_open_slots(db, seed):
    result = booking_service.compute_availability(db, "northside", "2030-01-02", "2030-01-02", 60, now=NOW)

    assert result["tz"] == "UTC"
    assert [slot["start"] for slot in result["slots"]] == [
        "2030-01-02T09:00:00+00:00",
        "2030-01-02T10:00:00+00:00",
        "2030-01-02T11:00:00+00:00",
    ]


def test_only_active_bookings_block_slots(db, seed):
    _add_booking(db, seed.shop_id, _utc(10), _utc(11), status="confirmed")
    _add_booking(db, seed.shop_id, _utc(9), _utc(10), status="cancelled")

    result = booking_service.compute_availability(db, "northside", "2030-01-02", "2030-01-02", 60, now=NOW)
    assert [slot["start"] for slot in result["slots"]] == [
        "2030-01-02T09:00:00+00:00",
        "2030-01-02T11:00:00+00:00",
    ]


def test_time_off_blocks_slots(db, seed):
    db.add(ShopTimeOff(shop_id=seed.shop_id, starts_at=_utc(9), ends_at=_utc(12), reason="Training"))
    db.commit()

    result = booking_service.compute_availability(db, "northside", "2030-01-02", "2030-01-02", 60, now=NOW)
    assert result["slots"] == []


def test_min_notice_hides_early_slots(db, seed):
    result = booking_service.compute_availability(
        db, "northside", "2030-01-02", "2030-01-02", 60, now=_utc(8, 30)
    )
    # 120 minutes of notice from 08:30 leaves only 11:00.
    assert [slot["start"] for slot in result["slots"]] == ["2030-01-02T11:00:00+00:00"]


def test_closed_shop_reports_disabled(db, seed):
    shop = db.get(Shop, seed.shop_id)
    shop.accepts_online_booking = False
    db.commit()

    result = booking_service.compute_availability(db, "northside", "2030-01-02", "2030-01-02", now=NOW)
    assert result == {"slots": [], "tz": "UTC", "disabled": True}


def test_has_overlap_ignores_excluded_and_inactive(db, seed):
    booking = _add_booking(db, seed.shop_id, _utc(10), _utc(11))
    _add_booking(db, seed.shop_id, _utc(11), _utc(12), status="cancelled")

    assert booking_service.has_overlap(db, seed.shop_id, _utc(10, 30), _utc(11, 30))
    assert not booking_service.has_overlap(db, seed.shop_id, _utc(11), _utc(12))
    assert not booking_service.has_overlap(db, seed.shop_id, _utc(10), _utc(11), exclude_booking_id=booking.id)


def test_create_booking_rejects_overlap(db, seed):
    customer = db.get(Customer, seed.customer_id)
    booking_service.create_booking(
        db, "northside", "2030-01-02T10:00:00Z", "2030-01-02T11:00:00Z", customer=customer, now=NOW
    )

    with pytest.raises(DomainException) as excinfo:
        booking_service.create_booking(
            db, "northside", "2030-01-02T10:30:00Z", "2030-01-02T11:30:00Z", customer=customer, now=NOW
        )
    assert excinfo.value.status_code == 409
    assert excinfo.value.message == "This time overlaps an existing booking"


def test_create_booking_enforces_lead_window(db, seed):
    customer = db.get(Customer, seed.customer_id)
    with pytest.raises(DomainException) as excinfo:
        booking_service.create_booking(
            db, "northside", "2030-03-01T10:00:00Z", "2030-03-01T11:00:00Z", customer=customer, now=NOW
        )
    assert excinfo.value.status_code == 400
    assert "days in advance" in excinfo.value.message


def test_reminder_query_picks_confirmed_unsent(db, seed):
    due = _add_booking(db, seed.shop_id, _utc(10), _utc(11))
    _add_booking(db, seed.shop_id, _utc(11), _utc(12), status="pending")
    _add_booking(db, seed.shop_id, _utc(10, day=3), _utc(11, day=3))

    assert [b.id for b in booking_service.bookings_due_for_reminder(db, date(2030, 1, 2))] == [due.id]


def test_portal_booking_flow(client, seed):
    starts_at = (datetime.now(timezone.utc) + timedelta(days=2)).replace(hour=10, minute=0, second=0, microsecond=0)
    payload = {
        "shop_slug": "northside",
        "starts_at": starts_at.isoformat(),
        "ends_at": (starts_at + timedelta(hours=1)).isoformat(),
        "notes": "Rattle over bumps",
    }

    response = client.post("/portal/bookings", json=payload, headers=auth("customer-token"))
    assert response.status_code == 201
    booking = response.json()
    assert booking["status"] == "pending"
    assert booking["customer_id"] == seed.customer_id

    again = client.post("/portal/bookings", json=payload, headers=auth("customer-token"))
    assert again.status_code == 409
    assert again.json() == {"error": "This time overlaps an existing booking", "code": "SLOT_CONFLICT"}

    confirmed = client.patch(
        f"/portal/bookings/{booking['id']}", json={"status": "confirmed"}, headers=auth("advisor-token")
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"

    customer_confirm = client.patch(
        f"/portal/bookings/{booking['id']}", json={"status": "completed"}, headers=auth("customer-token")
    )
    assert customer_confirm.status_code == 403


def test_portal_booking_requires_fields(client, seed):
    response = client.post("/portal/bookings", json={"shop_slug": "northside"}, headers=auth("customer-token"))
    assert response.status_code == 400
    assert response.json()["error"] == "Missing shopSlug, startsAt, or endsAt"


def test_availability_endpoint_is_public(client, seed):
    response = client.get(
        "/portal/availability", params={"shop_slug": "southside", "start": "2030-01-02", "end": "2030-01-02"}
    )
    assert response.status_code == 200
    assert response.json()["slots"] == []
