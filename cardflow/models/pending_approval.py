"""Remote approval tracking for a card request awaiting an admin reply."""

from datetime import datetime, timedelta
from typing import Literal

from pydantic import Field

from cardflow.core.exceptions import ConflictError
from cardflow.models.base import Entity
from cardflow.models.card_request import short_request_id

ApprovalStatus = Literal["pending", "approved", "rejected", "expired"]

DEFAULT_APPROVAL_TIMEOUT_HOURS = 24


class PendingApproval(Entity):
    request_id: str
    user_id: str
    short_id: str
    notification_ids: list[str] = Field(default_factory=list)
    notifications_sent_at: datetime = Field(default_factory=datetime.utcnow)
    approval_status: ApprovalStatus = "pending"
    responding_admin_phone: str | None = None
    response_received_at: datetime | None = None
    expires_at: datetime
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def new(
        cls,
        request_id: str,
        user_id: str,
        notification_ids: list[str],
        timeout_hours: int = DEFAULT_APPROVAL_TIMEOUT_HOURS,
    ) -> "PendingApproval":
        now = datetime.utcnow()
        return cls(
            request_id=request_id,
            user_id=user_id,
            short_id=short_request_id(request_id),
            notification_ids=notification_ids,
            notifications_sent_at=now,
            expires_at=now + timedelta(hours=timeout_hours),
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.approval_status != "pending"

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at

    def can_process(self, now: datetime | None = None) -> bool:
        return not self.is_terminal and not self.is_expired(now)

    def _resolve(self, status: ApprovalStatus, phone: str | None) -> "PendingApproval":
        if self.is_terminal:
            raise ConflictError(
                f"Approval for {self.request_id} already {self.approval_status}",
                code="REQUEST_NOT_PENDING",
            )
        now = datetime.utcnow()
        return self.evolve(
            approval_status=status,
            responding_admin_phone=phone,
            response_received_at=now if phone else None,
            updated_at=now,
        )

    def mark_approved(self, phone: str | None = None) -> "PendingApproval":
        return self._resolve("approved", phone)

    def mark_rejected(self, phone: str | None = None) -> "PendingApproval":
        return self._resolve("rejected", phone)

    def mark_expired(self) -> "PendingApproval":
        return self._resolve("expired", None)
