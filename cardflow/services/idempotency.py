"""Cached command responses keyed by (actor, sha256(client key))."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from cardflow.core.exceptions import ConflictError
from cardflow.core.logging import get_logger
from cardflow.core.security import hash_idempotency_key
from cardflow.models.idempotency_record import DEFAULT_TTL_HOURS, IdempotencyRecord
from cardflow.repositories.base import Repositories

log = get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    response: dict[str, Any] = field(default_factory=dict)
    status_code: int = 200
    replayed: bool = False


async def find_cached(repos: Repositories, actor_id: str, key: str, operation: str) -> CommandResult | None:
    """Return the cached result for this key, deleting it first if it has expired."""
    key_hash = hash_idempotency_key(key)
    record = await repos.idempotency.get(actor_id, key_hash)
    if record is None:
        return None
    if record.is_expired():
        await repos.idempotency.delete(actor_id, key_hash)
        return None
    if record.operation != operation:
        raise ConflictError(
            "Idempotency key used for different operation",
            code="IDEMPOTENCY_MISMATCH",
            details={"operation": operation},
        )
    return CommandResult(response=record.response, status_code=record.status_code, replayed=True)


async def remember(
    repos: Repositories,
    actor_id: str,
    key: str,
    operation: str,
    response: dict[str, Any],
    status_code: int = 200,
    ttl: timedelta = timedelta(hours=DEFAULT_TTL_HOURS),
) -> CommandResult:
    record = IdempotencyRecord.new(actor_id, key, operation, response, status_code=status_code, ttl=ttl)
    await repos.idempotency.save(record)
    return CommandResult(response=record.response, status_code=status_code)


async def run_idempotent(
    repos: Repositories,
    actor_id: str,
    key: str,
    operation: str,
    execute: Callable[[], Awaitable[dict[str, Any]]],
    status_code: int = 200,
) -> CommandResult:
    """Replay a cached response, or execute and cache it. Failures are not cached."""
    cached = await find_cached(repos, actor_id, key, operation)
    if cached is not None:
        log.info("idempotent_replay", operation=operation, actor_id=actor_id)
        return cached
    response = await execute()
    return await remember(repos, actor_id, key, operation, response, status_code=status_code)


async def purge_expired(repos: Repositories, now: datetime | None = None) -> int:
    deleted = await repos.idempotency.delete_expired(now or datetime.utcnow())
    if deleted:
        log.info("idempotency_records_purged", count=deleted)
    return deleted
