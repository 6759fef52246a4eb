from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from cardflow.models.base import Entity, new_id

AuditAction = Literal[
    "score.adjusted",
    "card_request.approved",
    "card_request.rejected",
    "card.suspended",
    "card.cancelled",
    "card.reactivated",
    "user.disabled",
    "user.enabled",
    "system.cleanup",
]

RETENTION_YEARS = 7


class AuditLog(Entity):
    log_id: str = Field(default_factory=new_id)
    admin_id: str
    admin_email: str
    action: AuditAction
    target_type: str
    target_id: str
    target_user_id: str | None = None
    previous_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    reason: str | None = None
    correlation_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
