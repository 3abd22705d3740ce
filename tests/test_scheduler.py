from datetime import date, datetime, timedelta, timezone

import pytest

from repair_desk.db.models import Booking, Customer
from repair_desk.scheduler import reminder_scheduler
from repair_desk.services import twilio_client

DAY = date(2030, 1, 2)
TEN_AM = datetime(2030, 1, 2, 10, tzinfo=timezone.utc)


@pytest.fixture()
def texts(monkeypatch):
    sent = []

    def fake_send(to, body):
        sent.append((to, body))
        return f"SM{len(sent)}"

    monkeypatch.setattr(twilio_client, "send_sms", fake_send)
    return sent


def _booking(db, seed, starts_at, status="confirmed", customer_id=None):
    booking = Booking(
        shop_id=seed.shop_id,
        customer_id=customer_id or seed.customer_id,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(hours=1),
        status=status,
    )
    db.add(booking)
    db.commit()
    return booking


def test_reminders_text_confirmed_bookings_once(db, seed, session_factory, texts):
    booking = _booking(db, seed, TEN_AM)
    _booking(db, seed, TEN_AM + timedelta(hours=2), status="pending")
    _booking(db, seed, TEN_AM + timedelta(days=1))

    result = reminder_scheduler.send_daily_reminders(DAY, session_factory=session_factory)
    assert result == {"sent": 1, "failed": 0}
    assert texts == [("+15555550100", "Reminder: your appointment at Northside Auto is today at 10:00 AM.")]

    db.expire_all()
    booking = db.get(Booking, booking.id)
    assert booking.reminder_sent is True
    assert booking.reminder_message_sid == "SM1"
    assert booking.reminder_sent_at is not None

    assert reminder_scheduler.send_daily_reminders(DAY, session_factory=session_factory) == {"sent": 0, "failed": 0}
    assert len(texts) == 1


def test_reminder_without_phone_counts_as_failed(db, seed, session_factory, texts):
    walk_in = Customer(shop_id=seed.shop_id, name="No Phone")
    db.add(walk_in)
    db.commit()
    _booking(db, seed, TEN_AM, customer_id=walk_in.id)

    result = reminder_scheduler.send_daily_reminders(DAY, session_factory=session_factory)
    assert result == {"sent": 0, "failed": 1}
    assert texts == []


def test_reminder_delivery_errors_are_counted(db, seed, session_factory, monkeypatch):
    def not_configured(to, body):
        raise RuntimeError("Twilio client is not configured.")

    monkeypatch.setattr(twilio_client, "send_sms", not_configured)
    booking = _booking(db, seed, TEN_AM)

    result = reminder_scheduler.send_daily_reminders(DAY, session_factory=session_factory)
    assert result == {"sent": 0, "failed": 1}

    db.expire_all()
    assert db.get(Booking, booking.id).reminder_sent is False
