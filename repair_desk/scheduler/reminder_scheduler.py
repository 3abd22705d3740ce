"""Background jobs: daily booking reminders and the shop boost sweep.

Uses APScheduler BackgroundScheduler: a daily cron job texts customers with
confirmed bookings for the day, and an interval job forwards pending shop
boost intakes to the processing endpoint.
"""

import logging
from collections.abc import Callable
from datetime import date

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from twilio.base.exceptions import TwilioRestException

from repair_desk.core.config import REMINDER_HOUR, SHOP_BOOST_SWEEP_MINUTES
from repair_desk.core.timeutils import as_utc, utcnow
from repair_desk.db.models import Shop
from repair_desk.db.session import SessionLocal
from repair_desk.services import twilio_client
from repair_desk.services.booking_service import bookings_due_for_reminder, shop_zone
from repair_desk.services.shop_boost_service import sweep_pending_intakes

logger = logging.getLogger(__name__)


def send_daily_reminders(
    day: date | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> dict:
    """Text every confirmed, un-reminded booking for the day."""
    day = day or utcnow().date()
    logger.info("Running daily reminder job for %s", day)

    sent, failed = 0, 0
    db = session_factory()
    try:
        bookings = bookings_due_for_reminder(db, day)
        for booking in bookings:
            customer = booking.customer
            if customer is None or not customer.phone:
                logger.warning("Booking %d has no associated customer phone. Skipping.", booking.id)
                failed += 1
                continue

            shop = db.get(Shop, booking.shop_id)
            local_start = as_utc(booking.starts_at).astimezone(shop_zone(shop))
            message = (
                f"Reminder: your appointment at {shop.name} is today "
                f"at {local_start.strftime('%I:%M %p')}."
            )

            try:
                message_sid = twilio_client.send_sms(to=customer.phone, body=message)
                booking.reminder_sent = True
                booking.reminder_sent_at = utcnow()
                booking.reminder_message_sid = message_sid
                db.commit()
                sent += 1
            except (RuntimeError, ValueError, TwilioRestException, SQLAlchemyError):
                db.rollback()
                logger.exception(
                    "Failed to send reminder for booking %d to %s",
                    booking.id,
                    customer.phone,
                )
                failed += 1

        logger.info(
            "Reminder job complete: %d sent, %d failed out of %d bookings.",
            sent,
            failed,
            len(bookings),
        )
    except SQLAlchemyError:
        logger.exception("Unhandled database error in reminder job.")
    finally:
        db.close()
    return {"sent": sent, "failed": failed}


def run_shop_boost_sweep() -> None:
    sweep_pending_intakes(SessionLocal)


def start_scheduler() -> BackgroundScheduler:
    """Create, configure, and start the background scheduler.

    Returns the scheduler instance so the caller can shut it down if needed.
    """
    scheduler = BackgroundScheduler(daemon=True)

    scheduler.add_job(
        send_daily_reminders,
        trigger="cron",
        hour=REMINDER_HOUR,
        minute=0,
        id="daily_booking_reminder",
        name="Send daily SMS booking reminders",
        replace_existing=True,
    )
    scheduler.add_job(
        run_shop_boost_sweep,
        trigger="interval",
        minutes=SHOP_BOOST_SWEEP_MINUTES,
        id="shop_boost_sweep",
        name="Process pending shop boost intakes",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started (reminders daily at %02d:00, shop boost sweep every %d minutes).",
        REMINDER_HOUR,
        SHOP_BOOST_SWEEP_MINUTES,
    )
    return scheduler
