"""Event stream publishers used by the outbox drain."""

from abc import ABC, abstractmethod

import orjson
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from cardflow.core.config import Settings, get_settings
from cardflow.core.exceptions import ExternalServiceError
from cardflow.models.outbox_event import OutboxEvent


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, event: OutboxEvent) -> None:
        """Deliver one event; raise on failure so the outbox can retry."""
        ...

    async def close(self) -> None:
        return None


class InMemoryEventPublisher(EventPublisher):
    """Collects envelopes in order; used by tests and local runs."""

    def __init__(self) -> None:
        self.published: list[dict] = []

    async def publish(self, event: OutboxEvent) -> None:
        self.published.append(event.envelope())


class RedisStreamPublisher(EventPublisher):
    def __init__(self, redis_url: str, stream: str, maxlen: int = 100_000) -> None:
        self.redis = aioredis.from_url(redis_url)
        self.stream = stream
        self.maxlen = maxlen

    async def publish(self, event: OutboxEvent) -> None:
        fields = {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "entity_key": event.entity_key,
            "sequence_number": str(event.sequence_number),
            "data": orjson.dumps(event.envelope()),
        }
        try:
            await self.redis.xadd(self.stream, fields, maxlen=self.maxlen, approximate=True)
        except RedisError as e:
            raise ExternalServiceError(f"Event stream unavailable: {e}") from e

    async def close(self) -> None:
        await self.redis.aclose()


def get_event_publisher(settings: Settings | None = None) -> EventPublisher:
    settings = settings or get_settings()
    if settings.event_publisher == "redis":
        return RedisStreamPublisher(settings.redis_url, settings.event_stream_name)
    return InMemoryEventPublisher()
