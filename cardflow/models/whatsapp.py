"""Outbound notification and inbound message records for the WhatsApp channel."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from cardflow.models.base import Entity, new_id

MAX_MESSAGE_LENGTH = 4096

NotificationType = Literal["card_request_approval", "payment_notification"]
RelatedEntityType = Literal["cardRequest", "payment"]
DeliveryStatus = Literal["pending", "sent", "delivered", "failed", "dead_letter"]
ProcessedStatus = Literal["received", "processing", "processed", "ignored", "error"]
CommandAction = Literal["approve", "reject", "unknown"]


class ParsedCommand(BaseModel):
    action: CommandAction
    request_id: str = ""
    raw: str = ""

    @property
    def is_valid(self) -> bool:
        return self.action != "unknown" and bool(self.request_id)


class WhatsAppNotification(Entity):
    notification_id: str = Field(default_factory=new_id)
    recipient_phone: str
    recipient_name: str | None = None
    message_content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    notification_type: NotificationType
    related_entity_type: RelatedEntityType
    related_entity_id: str
    user_id: str
    delivery_status: DeliveryStatus = "pending"
    wpp_message_id: str | None = None
    retry_count: int = Field(default=0, ge=0)
    last_error: str | None = None
    next_retry_at: datetime | None = None
    sent_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def is_due(self, now: datetime | None = None) -> bool:
        if self.delivery_status == "pending":
            return True
        if self.delivery_status != "failed":
            return False
        return self.next_retry_at is None or self.next_retry_at <= (now or datetime.utcnow())


class WhatsAppInboundMessage(Entity):
    message_id: str = Field(default_factory=new_id)
    wpp_message_id: str
    sender_phone: str
    sender_name: str | None = None
    is_from_whitelisted_admin: bool = False
    raw_body: str = ""
    parsed_command: ParsedCommand | None = None
    processed_status: ProcessedStatus = "received"
    processed_action: str | None = None
    processing_error: str | None = None
    related_request_id: str | None = None
    related_user_id: str | None = None
    received_at: datetime = Field(default_factory=datetime.utcnow)
    processed_at: datetime | None = None

    @field_validator("raw_body", mode="before")
    @classmethod
    def _truncate_body(cls, v):
        if v is None:
            return ""
        return str(v)[:MAX_MESSAGE_LENGTH]
