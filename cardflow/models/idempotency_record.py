from datetime import datetime, timedelta
from typing import Any

from pydantic import Field

from cardflow.core.security import hash_idempotency_key
from cardflow.models.base import Entity

DEFAULT_TTL_HOURS = 24


class IdempotencyRecord(Entity):
    actor_id: str
    key_hash: str = Field(pattern=r"^[0-9a-f]{64}$")
    operation: str
    response: dict[str, Any] = Field(default_factory=dict)
    status_code: int = Field(default=200, ge=100, le=599)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime

    @classmethod
    def new(
        cls,
        actor_id: str,
        key: str,
        operation: str,
        response: dict[str, Any],
        status_code: int = 200,
        ttl: timedelta = timedelta(hours=DEFAULT_TTL_HOURS),
    ) -> "IdempotencyRecord":
        now = datetime.utcnow()
        return cls(
            actor_id=actor_id,
            key_hash=hash_idempotency_key(key),
            operation=operation,
            response=response,
            status_code=status_code,
            created_at=now,
            expires_at=now + ttl,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at
