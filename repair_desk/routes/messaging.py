"""Conversations between shop members and customer SMS notifications."""

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_desk.core.auth import get_current_profile, require_staff
from repair_desk.db.models import Profile
from repair_desk.db.session import get_db
from repair_desk.schemas.common import ListResponse
from repair_desk.schemas.messaging import ConversationOut, MessageOut
from repair_desk.services import messaging_service

router = APIRouter(tags=["Messaging"])


class ConversationCreate(BaseModel):
    participant_ids: list[int]
    title: str | None = None


class MessageCreate(BaseModel):
    content: str | None = None


class CustomerNotification(BaseModel):
    kind: Literal["quote", "invoice"]


@router.post("/conversations", status_code=201)
def api_create_conversation(
    payload: ConversationCreate,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return messaging_service.create_conversation(db, payload.participant_ids, title=payload.title, profile=profile)


@router.get("/conversations", response_model=ListResponse[ConversationOut])
def api_list_conversations(profile: Profile = Depends(get_current_profile), db: Session = Depends(get_db)):
    return ListResponse(items=messaging_service.list_conversations(db, profile=profile))


@router.post("/conversations/{conversation_id}/messages", response_model=MessageOut, status_code=201)
def api_send_message(
    conversation_id: int,
    payload: MessageCreate,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return messaging_service.send_message(db, conversation_id, payload.content, profile=profile)


@router.get("/conversations/{conversation_id}/messages", response_model=ListResponse[MessageOut])
def api_list_messages(
    conversation_id: int,
    after_id: int = 0,
    profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return ListResponse(items=messaging_service.list_messages(db, conversation_id, after_id=after_id, profile=profile))


@router.post("/work-orders/{work_order_id}/notify")
def api_notify_customer(
    work_order_id: int,
    payload: CustomerNotification,
    profile: Profile = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return messaging_service.notify_customer(db, work_order_id, payload.kind, shop_id=profile.shop_id)
