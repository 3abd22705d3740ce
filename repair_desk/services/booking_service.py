"""Portal scheduling: availability, bookings and reminders.

Shop hours are wall-clock times in the shop's IANA timezone; every stored
datetime is UTC.
"""

import logging
from collections.abc import Iterator
from datetime import date, datetime, time, timedelta, timezone
from typing import Final
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.core.auth import STAFF_ROLES
from repair_desk.core.domain_exceptions import DomainException, bad_request, conflict, forbidden, not_found
from repair_desk.core.error_codes import ErrorCode
from repair_desk.core.timeutils import as_utc, parse_iso_datetime, utcnow
from repair_desk.db.models import Booking, Customer, Profile, Shop, ShopHours, ShopTimeOff

logger = logging.getLogger(__name__)

DEFAULT_SLOT_MINUTES: Final[int] = 30
MIN_SLOT_MINUTES: Final[int] = 5
MAX_SLOT_MINUTES: Final[int] = 180
DEFAULT_MIN_NOTICE_MINUTES: Final[int] = 120
DEFAULT_MAX_LEAD_DAYS: Final[int] = 30
ACTIVE_STATUSES: Final[tuple[str, ...]] = ("pending", "confirmed")
ALLOWED_TRANSITIONS: Final[dict[str, set[str]]] = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def clamp_slot_minutes(raw: int | None) -> int:
    if raw is None:
        return DEFAULT_SLOT_MINUTES
    return max(MIN_SLOT_MINUTES, min(MAX_SLOT_MINUTES, int(raw)))


def parse_ymd(raw: str) -> date:
    try:
        return date.fromisoformat(raw.strip())
    except (AttributeError, ValueError):
        raise bad_request("Invalid date") from None


def parse_hm(raw: str | None) -> time | None:
    """Accept HH:MM or HH:MM:SS, tolerating trailing offsets like +00."""
    if not raw:
        return None
    cleaned = raw.strip()
    for index, char in enumerate(cleaned):
        if not (char.isdigit() or char == ":"):
            cleaned = cleaned[:index]
            break
    pieces = cleaned.split(":")
    if len(pieces) < 2:
        return None
    try:
        hour, minute = int(pieces[0]), int(pieces[1])
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return time(hour, minute)


def weekday_candidates(raw: int | None) -> set[int]:
    """Map a stored weekday to Sunday-based 0..6 values.

    0..6 is taken as is; 1..7 may be Monday-first or Sunday-first, so both
    readings are accepted.
    """
    if raw is None:
        return set()
    if 0 <= raw <= 6:
        return {raw}
    if 1 <= raw <= 7:
        return {raw % 7, raw - 1}
    return set()


def sunday_based_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


def _iterate_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def shop_zone(shop: Shop) -> ZoneInfo:
    try:
        return ZoneInfo(shop.timezone or "UTC")
    except ZoneInfoNotFoundError:
        logger.warning("Unknown timezone %r for shop_id=%s; using UTC", shop.timezone, shop.id)
        return ZoneInfo("UTC")


def _min_notice(shop: Shop) -> int:
    return shop.min_notice_minutes if shop.min_notice_minutes is not None else DEFAULT_MIN_NOTICE_MINUTES


def _max_lead(shop: Shop) -> int:
    return shop.max_lead_days if shop.max_lead_days is not None else DEFAULT_MAX_LEAD_DAYS


def get_shop_by_slug(db: Session, slug: str) -> Shop:
    shop = db.scalar(select(Shop).where(Shop.slug == slug))
    if shop is None:
        raise not_found("Shop not found")
    return shop


def compute_availability(
    db: Session,
    slug: str,
    start: str,
    end: str,
    slot_minutes: int | None = None,
    *,
    now: datetime | None = None,
) -> dict:
    """Open slots for a shop between two local calendar dates."""
    if not slug or not start or not end:
        raise bad_request("Missing required params: shop, start, end")

    slot_minutes = clamp_slot_minutes(slot_minutes)
    start_day = parse_ymd(start)
    end_day = parse_ymd(end)
    shop = get_shop_by_slug(db, slug)
    zone = shop_zone(shop)
    tz_name = shop.timezone or "UTC"

    if not shop.accepts_online_booking:
        return {"slots": [], "tz": tz_name, "disabled": True}

    now = now or utcnow()
    earliest = now + timedelta(minutes=_min_notice(shop))
    latest = now + timedelta(days=_max_lead(shop))

    window_start = datetime.combine(start_day, time(0, 0), tzinfo=zone).astimezone(timezone.utc)
    window_end = datetime.combine(end_day + timedelta(days=1), time(0, 0), tzinfo=zone).astimezone(
        timezone.utc
    )

    hours = db.scalars(select(ShopHours).where(ShopHours.shop_id == shop.id)).all()
    blocked = [
        (as_utc(row.starts_at), as_utc(row.ends_at))
        for row in db.scalars(
            select(ShopTimeOff)
            .where(ShopTimeOff.shop_id == shop.id)
            .where(ShopTimeOff.ends_at >= window_start)
            .where(ShopTimeOff.starts_at <= window_end)
        )
    ]
    blocked += [
        (as_utc(row.starts_at), as_utc(row.ends_at))
        for row in db.scalars(
            select(Booking)
            .where(Booking.shop_id == shop.id)
            .where(Booking.status.in_(ACTIVE_STATUSES))
            .where(Booking.ends_at >= window_start)
            .where(Booking.starts_at <= window_end)
        )
    ]

    step = timedelta(minutes=slot_minutes)
    slots = []
    for day in _iterate_days(start_day, end_day):
        weekday = sunday_based_weekday(day)
        for row in hours:
            if weekday not in weekday_candidates(row.weekday):
                continue
            open_at = parse_hm(row.open_time)
            close_at = parse_hm(row.close_time)
            if open_at is None or close_at is None:
                continue
            opens = datetime.combine(day, open_at, tzinfo=zone).astimezone(timezone.utc)
            closes = datetime.combine(day, close_at, tzinfo=zone).astimezone(timezone.utc)
            # Overnight hours are not supported.
            if closes <= opens:
                continue

            slot_start = opens
            while slot_start + step <= closes:
                slot_end = slot_start + step
                if earliest <= slot_start <= latest and not any(
                    _overlaps(slot_start, slot_end, b_start, b_end) for b_start, b_end in blocked
                ):
                    slots.append({"start": slot_start.isoformat(), "end": slot_end.isoformat()})
                slot_start = slot_end

    return {"slots": slots, "tz": tz_name}


def _check_window(shop: Shop, starts_at: datetime, now: datetime, verb: str) -> None:
    min_notice = _min_notice(shop)
    minutes_until = (starts_at - now).total_seconds() // 60
    if minutes_until < min_notice:
        raise bad_request(f"{verb} require at least {min_notice} minutes notice")

    max_lead = _max_lead(shop)
    start_of_today = datetime.combine(now.date(), time(0, 0), tzinfo=timezone.utc)
    days_until = (starts_at - start_of_today).days
    if days_until > max_lead:
        raise bad_request(f"{verb} cannot be more than {max_lead} days in advance")


def has_overlap(
    db: Session,
    shop_id: int,
    starts_at: datetime,
    ends_at: datetime,
    exclude_booking_id: int | None = None,
) -> bool:
    query = (
        select(Booking.id)
        .where(Booking.shop_id == shop_id)
        .where(Booking.status.in_(ACTIVE_STATUSES))
        .where(Booking.starts_at < ends_at)
        .where(Booking.ends_at > starts_at)
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    return db.scalar(query.limit(1)) is not None


def _parse_window(starts_at_raw: str | None, ends_at_raw: str | None, message: str) -> tuple[datetime, datetime]:
    starts_at = parse_iso_datetime(starts_at_raw)
    ends_at = parse_iso_datetime(ends_at_raw)
    if starts_at is None or ends_at is None or ends_at <= starts_at:
        raise bad_request(message)
    return starts_at, ends_at


def create_booking(
    db: Session,
    shop_slug: str | None,
    starts_at_raw: str | None,
    ends_at_raw: str | None,
    notes: str | None = None,
    vehicle_id: int | None = None,
    *,
    customer: Customer,
    now: datetime | None = None,
) -> Booking:
    """Book a window at a shop for a portal customer."""
    if not shop_slug or not starts_at_raw or not ends_at_raw:
        raise bad_request("Missing shopSlug, startsAt, or endsAt")
    starts_at, ends_at = _parse_window(starts_at_raw, ends_at_raw, "Invalid start/end")

    shop = get_shop_by_slug(db, shop_slug)
    if not shop.accepts_online_booking:
        raise forbidden("Shop is not accepting online bookings")

    _check_window(shop, starts_at, now or utcnow(), "Bookings")

    if has_overlap(db, shop.id, starts_at, ends_at):
        raise conflict("This time overlaps an existing booking", code=ErrorCode.SLOT_CONFLICT)

    booking = Booking(
        shop_id=shop.id,
        customer_id=customer.id,
        vehicle_id=vehicle_id,
        starts_at=starts_at,
        ends_at=ends_at,
        status="pending",
        notes=notes or None,
    )
    try:
        db.add(booking)
        if customer.shop_id is None:
            customer.shop_id = shop.id
        db.commit()
        db.refresh(booking)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Created booking_id=%s shop_id=%s customer_id=%s", booking.id, shop.id, customer.id)
    return booking


def _is_staff_for(profile: Profile, shop_id: int) -> bool:
    return profile.role in STAFF_ROLES and profile.shop_id == shop_id


def _own_customer(db: Session, profile: Profile) -> Customer | None:
    return db.scalar(select(Customer).where(Customer.user_id == profile.id))


def list_bookings(db: Session, slug: str, start: str, end: str, *, profile: Profile) -> list[Booking]:
    """Bookings in a date range; customers only see their own."""
    if not slug or not start or not end:
        raise bad_request("Missing shop, start, or end")
    shop = get_shop_by_slug(db, slug)

    customer_filter = None
    if not _is_staff_for(profile, shop.id):
        customer = _own_customer(db, profile)
        if customer is None or customer.shop_id != shop.id:
            raise forbidden("Not allowed")
        customer_filter = customer.id

    start_at = datetime.combine(parse_ymd(start), time(0, 0), tzinfo=timezone.utc)
    end_exclusive = datetime.combine(parse_ymd(end) + timedelta(days=1), time(0, 0), tzinfo=timezone.utc)

    query = (
        select(Booking)
        .where(Booking.shop_id == shop.id)
        .where(Booking.starts_at >= start_at)
        .where(Booking.starts_at < end_exclusive)
    )
    if customer_filter is not None:
        query = query.where(Booking.customer_id == customer_filter)
    return list(db.scalars(query.order_by(Booking.starts_at)))


def update_booking(
    db: Session,
    booking_id: int,
    status: str | None = None,
    starts_at_raw: str | None = None,
    ends_at_raw: str | None = None,
    notes: str | None = None,
    notes_set: bool = False,
    *,
    profile: Profile,
    now: datetime | None = None,
) -> Booking:
    """Change status, reschedule or annotate a booking."""
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise not_found("Booking not found")

    is_staff = _is_staff_for(profile, booking.shop_id)
    customer = _own_customer(db, profile)
    is_owner = customer is not None and booking.customer_id == customer.id
    if not is_staff and not is_owner:
        raise forbidden("Not allowed")

    if status is not None:
        if not is_staff and status != "cancelled":
            raise forbidden("Customers may only cancel their own booking")
        if status not in ALLOWED_TRANSITIONS.get(booking.status, set()):
            raise DomainException(
                code=ErrorCode.INVALID_STATUS,
                message=f"Invalid status transition: {booking.status} → {status}",
                status_code=400,
            )

    new_window = None
    if starts_at_raw or ends_at_raw:
        if not is_staff:
            raise forbidden("Only staff can reschedule")
        new_window = _parse_window(starts_at_raw, ends_at_raw, "Invalid startsAt/endsAt")
        shop = db.get(Shop, booking.shop_id)
        _check_window(shop, new_window[0], now or utcnow(), "Reschedules")
        if has_overlap(db, booking.shop_id, *new_window, exclude_booking_id=booking.id):
            raise conflict("Selected time overlaps another booking", code=ErrorCode.SLOT_CONFLICT)

    if status is None and new_window is None and not notes_set:
        raise bad_request("Nothing to update")

    try:
        if status is not None:
            booking.status = status
        if notes_set:
            booking.notes = notes
        if new_window is not None:
            booking.starts_at, booking.ends_at = new_window
        db.commit()
        db.refresh(booking)
    except SQLAlchemyError:
        db.rollback()
        raise
    return booking


def bookings_due_for_reminder(db: Session, day: date) -> list[Booking]:
    """Confirmed, not yet reminded bookings starting on a UTC calendar day."""
    day_start = datetime.combine(day, time(0, 0), tzinfo=timezone.utc)
    return list(
        db.scalars(
            select(Booking)
            .where(Booking.status == "confirmed")
            .where(Booking.reminder_sent.is_(False))
            .where(Booking.starts_at >= day_start)
            .where(Booking.starts_at < day_start + timedelta(days=1))
            .order_by(Booking.starts_at)
        )
    )
