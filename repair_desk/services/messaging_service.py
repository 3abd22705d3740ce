"""Staff conversations and customer SMS notifications."""

import logging
from typing import Final

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from twilio.base.exceptions import TwilioRestException

from repair_desk.core.config import SITE_URL
from repair_desk.core.domain_exceptions import DomainException, bad_request, forbidden, not_found
from repair_desk.core.error_codes import ErrorCode
from repair_desk.db.models import Conversation, ConversationParticipant, Message, Profile, Shop
from repair_desk.services import twilio_client
from repair_desk.services.work_order_service import get_work_order, work_order_total

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH: Final[int] = 4000
MESSAGE_PAGE_SIZE: Final[int] = 200
NOTIFICATION_KINDS: Final[tuple[str, ...]] = ("quote", "invoice")


def _is_participant(db: Session, conversation_id: int, profile_id: int) -> bool:
    return (
        db.scalar(
            select(ConversationParticipant.id)
            .where(ConversationParticipant.conversation_id == conversation_id)
            .where(ConversationParticipant.profile_id == profile_id)
        )
        is not None
    )


def _get_conversation_for(db: Session, conversation_id: int, profile: Profile) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise not_found("Conversation not found")
    if not _is_participant(db, conversation.id, profile.id):
        raise forbidden("Not a participant in this conversation")
    return conversation


def create_conversation(
    db: Session,
    participant_ids: list[int],
    title: str | None = None,
    *,
    profile: Profile,
) -> dict:
    """Open a conversation between the caller and other members of the same shop."""
    others = {pid for pid in participant_ids or [] if pid != profile.id}
    if not others:
        raise bad_request("At least one other participant is required")

    found = list(db.scalars(select(Profile).where(Profile.id.in_(others))))
    if len(found) != len(others):
        raise not_found("Participant not found")
    if any(member.shop_id != profile.shop_id for member in found):
        raise forbidden("Participants must belong to your shop")

    conversation = Conversation(
        shop_id=profile.shop_id,
        created_by=profile.id,
        title=(title or "").strip() or None,
    )
    try:
        db.add(conversation)
        db.flush()
        member_ids = sorted(others | {profile.id})
        db.add_all(ConversationParticipant(conversation_id=conversation.id, profile_id=pid) for pid in member_ids)
        db.commit()
        db.refresh(conversation)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Conversation %s created by profile_id=%s", conversation.id, profile.id)
    return {
        "id": conversation.id,
        "title": conversation.title,
        "participant_ids": member_ids,
    }


def list_conversations(db: Session, *, profile: Profile) -> list[Conversation]:
    return list(
        db.scalars(
            select(Conversation)
            .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
            .where(ConversationParticipant.profile_id == profile.id)
            .order_by(Conversation.created_at.desc(), Conversation.id.desc())
        )
    )


def send_message(db: Session, conversation_id: int, content: str | None, *, profile: Profile) -> Message:
    conversation = _get_conversation_for(db, conversation_id, profile)
    content = (content or "").strip()
    if not content:
        raise bad_request("content is required")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise bad_request(f"content must be at most {MAX_MESSAGE_LENGTH} characters")

    message = Message(conversation_id=conversation.id, sender_id=profile.id, content=content)
    try:
        db.add(message)
        db.commit()
        db.refresh(message)
    except SQLAlchemyError:
        db.rollback()
        raise
    return message


def list_messages(
    db: Session,
    conversation_id: int,
    after_id: int = 0,
    *,
    profile: Profile,
) -> list[Message]:
    conversation = _get_conversation_for(db, conversation_id, profile)
    return list(
        db.scalars(
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .where(Message.id > after_id)
            .order_by(Message.id)
            .limit(MESSAGE_PAGE_SIZE)
        )
    )


# ---------------------------------------------------------------------------
# Customer SMS
# ---------------------------------------------------------------------------


def build_notification_body(kind: str, shop_name: str, work_order, customer_name: str | None) -> str:
    greeting = f"Hi {customer_name}," if customer_name else "Hi,"
    if kind == "invoice":
        total = work_order.invoice_total if work_order.invoice_total is not None else work_order_total(work_order)
        return (
            f"{greeting} your invoice from {shop_name} for work order #{work_order.id} "
            f"is ready. Total: ${total:.2f}. View it at {SITE_URL}/portal/work-orders/{work_order.id}"
        )

    pending = [
        line.description
        for line in work_order.lines
        if line.voided_at is None and line.approval_state == "pending"
    ]
    summary = "; ".join(pending[:3])
    if len(pending) > 3:
        summary += f" and {len(pending) - 3} more"
    return (
        f"{greeting} {shop_name} has a quote ready for work order #{work_order.id}"
        + (f": {summary}" if summary else "")
        + f". Estimated total: ${work_order_total(work_order):.2f}. "
        f"Review and approve at {SITE_URL}/portal/work-orders/{work_order.id}"
    )


def notify_customer(db: Session, work_order_id: int, kind: str, *, shop_id: int) -> dict:
    """Text the work order's customer that a quote or invoice is ready."""
    if kind not in NOTIFICATION_KINDS:
        raise bad_request(f"kind must be one of {', '.join(NOTIFICATION_KINDS)}")
    work_order = get_work_order(db, work_order_id, shop_id=shop_id)
    if kind == "invoice" and work_order.invoiced_at is None:
        raise DomainException(code=ErrorCode.INVALID_STATUS, message="Work order has not been invoiced")

    customer = work_order.customer
    if customer is None or not customer.phone:
        raise bad_request("Customer has no phone number on file")

    shop = db.get(Shop, shop_id)
    body = build_notification_body(kind, shop.name if shop else "Your shop", work_order, customer.name)

    try:
        sid = twilio_client.send_sms(customer.phone, body)
    except RuntimeError as exc:
        raise DomainException(code=ErrorCode.NOT_CONFIGURED, message=str(exc)) from exc
    except ValueError as exc:
        raise bad_request(str(exc)) from exc
    except TwilioRestException as exc:
        logger.exception("Twilio rejected %s SMS for work_order_id=%s", kind, work_order.id)
        raise DomainException(code=ErrorCode.UPSTREAM_ERROR, message="SMS delivery failed.") from exc

    logger.info("Sent %s SMS for work_order_id=%s sid=%s", kind, work_order.id, sid)
    return {"ok": True, "kind": kind, "message_sid": sid}
