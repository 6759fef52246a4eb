from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from cardflow.models.base import Entity, new_id

EventType = Literal[
    "user.created",
    "score.changed",
    "card.requested",
    "card.approved",
    "card.rejected",
    "card.suspended",
    "card.cancelled",
    "transaction.purchase",
    "transaction.payment",
    "system.cleanup",
]
OutboxStatus = Literal["pending", "sent", "failed", "dead_letter"]

UNDELIVERED_STATUSES = ("pending", "failed")


class OutboxEvent(Entity):
    event_id: str = Field(default_factory=new_id)
    event_type: EventType
    entity_type: str
    entity_id: str
    owner_id: str  # user the event belongs to, "system" for maintenance events
    sequence_number: int = Field(default=0, ge=0)  # 0 until the repository allocates one
    payload: dict[str, Any] = Field(default_factory=dict)
    status: OutboxStatus = "pending"
    retry_count: int = Field(default=0, ge=0)
    last_error: str | None = None
    next_retry_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    sent_at: datetime | None = None

    @property
    def entity_key(self) -> str:
        return f"{self.entity_type}:{self.entity_id}"

    def is_due(self, now: datetime | None = None) -> bool:
        if self.status not in UNDELIVERED_STATUSES:
            return False
        return self.next_retry_at is None or self.next_retry_at <= (now or datetime.utcnow())

    def envelope(self) -> dict[str, Any]:
        """Wire form published to the event stream."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "owner_id": self.owner_id,
            "sequence_number": self.sequence_number,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }
