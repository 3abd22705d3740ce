from datetime import datetime
from typing import Any

from repair_desk.schemas.common import ORMModel


class ConversationOut(ORMModel):
    id: int
    title: str | None
    created_by: int
    created_at: datetime | None = None


class MessageOut(ORMModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    created_at: datetime | None = None


class ShopBoostIntakeOut(ORMModel):
    id: int
    shop_id: int
    status: str
    questionnaire: dict[str, Any]
    snapshot: dict[str, Any] | None
    error: str | None
    processed_at: datetime | None
