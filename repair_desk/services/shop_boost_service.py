"""Shop boost intakes: queue a questionnaire, process it into a shop-health snapshot."""

import hmac
import logging
from collections.abc import Callable
from typing import Any, Final

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repair_desk.core.config import SHOP_BOOST_ENDPOINT, SHOP_BOOST_SECRET
from repair_desk.core.domain_exceptions import DomainException, bad_request, forbidden, not_found
from repair_desk.core.error_codes import ErrorCode
from repair_desk.core.timeutils import utcnow
from repair_desk.db.models import ShopBoostIntake
from repair_desk.intelligence.shop_health import compute_shop_health

logger = logging.getLogger(__name__)

SECRET_HEADER: Final[str] = "X-Shop-Boost-Secret"
SWEEP_BATCH_SIZE: Final[int] = 25
REQUEST_TIMEOUT_SECONDS: Final[float] = 30.0


def submit_intake(db: Session, questionnaire: dict[str, Any] | None, *, shop_id: int) -> ShopBoostIntake:
    if questionnaire is not None and not isinstance(questionnaire, dict):
        raise bad_request("questionnaire must be an object")
    intake = ShopBoostIntake(shop_id=shop_id, questionnaire=questionnaire or {}, status="pending")
    try:
        db.add(intake)
        db.commit()
        db.refresh(intake)
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("Shop boost intake %s queued for shop_id=%s", intake.id, shop_id)
    return intake


def get_intake(db: Session, intake_id: int, *, shop_id: int) -> ShopBoostIntake:
    intake = db.scalar(
        select(ShopBoostIntake)
        .where(ShopBoostIntake.id == intake_id)
        .where(ShopBoostIntake.shop_id == shop_id)
    )
    if intake is None:
        raise not_found("Intake not found")
    return intake


def verify_secret(provided: str | None, expected: str | None = None) -> None:
    expected = expected or SHOP_BOOST_SECRET
    if not expected:
        raise DomainException(code=ErrorCode.NOT_CONFIGURED, message="SHOP_BOOST_SECRET is not configured")
    if not provided or not hmac.compare_digest(provided, expected):
        raise forbidden("Invalid shop boost secret")


def process_intake(db: Session, intake_id: int) -> ShopBoostIntake:
    """Compute the snapshot for one intake; finished intakes are returned untouched."""
    intake = db.get(ShopBoostIntake, intake_id)
    if intake is None:
        raise not_found("Intake not found")
    if intake.status in ("completed", "failed"):
        return intake

    try:
        intake.status = "processing"
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    try:
        snapshot = compute_shop_health(db, shop_id=intake.shop_id, questionnaire=intake.questionnaire)
    except (SQLAlchemyError, ValueError, TypeError) as exc:
        db.rollback()
        logger.exception("Shop boost intake %s failed", intake.id)
        intake.status = "failed"
        intake.error = str(exc)
        intake.processed_at = utcnow()
        db.commit()
        return intake

    try:
        intake.snapshot = snapshot
        intake.status = "completed"
        intake.error = None
        intake.processed_at = utcnow()
        db.commit()
        db.refresh(intake)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Shop boost intake %s completed", intake.id)
    return intake


def pending_intake_ids(db: Session, limit: int = SWEEP_BATCH_SIZE) -> list[int]:
    return list(
        db.scalars(
            select(ShopBoostIntake.id)
            .where(ShopBoostIntake.status == "pending")
            .order_by(ShopBoostIntake.created_at, ShopBoostIntake.id)
            .limit(limit)
        )
    )


def sweep_pending_intakes(
    session_factory: Callable[[], Session],
    endpoint: str | None = None,
    secret: str | None = None,
    http_client: httpx.Client | None = None,
    limit: int = SWEEP_BATCH_SIZE,
) -> dict:
    """POST every pending intake to the processing endpoint and tally the outcomes."""
    endpoint = endpoint or SHOP_BOOST_ENDPOINT
    secret = secret or SHOP_BOOST_SECRET
    db = session_factory()
    try:
        intake_ids = pending_intake_ids(db, limit)
    finally:
        db.close()

    result = {"attempted": 0, "processed": 0, "failed": 0}
    if not intake_ids:
        return result
    if not secret:
        logger.warning("SHOP_BOOST_SECRET not set; skipping sweep of %d intakes", len(intake_ids))
        return result

    client = http_client or httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS)
    try:
        for intake_id in intake_ids:
            result["attempted"] += 1
            try:
                response = client.post(endpoint, json={"intake_id": intake_id}, headers={SECRET_HEADER: secret})
                response.raise_for_status()
            except httpx.HTTPError:
                result["failed"] += 1
                logger.exception("Shop boost processing request failed for intake %s", intake_id)
                continue
            result["processed"] += 1
    finally:
        if http_client is None:
            client.close()

    logger.info(
        "Shop boost sweep: attempted=%d processed=%d failed=%d",
        result["attempted"],
        result["processed"],
        result["failed"],
    )
    return result
