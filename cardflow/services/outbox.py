"""Outbox drain: publish undelivered events in per-entity order with backoff and dead-lettering."""

from dataclasses import asdict, dataclass
from datetime import datetime

from cardflow.core.logging import get_logger
from cardflow.domain.backoff import OUTBOX_MAX_RETRIES, next_outbox_attempt
from cardflow.models.outbox_event import OutboxEvent

log = get_logger(__name__)


@dataclass
class DrainReport:
    sent: int = 0
    failed: int = 0
    dead_lettered: int = 0
    deferred: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def group_by_entity(events: list[OutboxEvent]) -> dict[str, list[OutboxEvent]]:
    groups: dict[str, list[OutboxEvent]] = {}
    for event in events:
        groups.setdefault(event.entity_key, []).append(event)
    for group in groups.values():
        group.sort(key=lambda e: e.sequence_number)
    return groups


async def _record_failure(container, event: OutboxEvent, error: str, now: datetime, report: DrainReport) -> None:
    retry_count = event.retry_count + 1
    if retry_count >= OUTBOX_MAX_RETRIES:
        await container.repos.outbox.mark_dead_letter(event.event_id, retry_count, error)
        report.dead_lettered += 1
        log.error(
            "outbox_event_dead_lettered",
            event_id=event.event_id,
            event_type=event.event_type,
            entity_key=event.entity_key,
            retry_count=retry_count,
            error=error,
        )
        return
    next_retry_at = next_outbox_attempt(event.retry_count, now)
    await container.repos.outbox.mark_failed(event.event_id, retry_count, error, next_retry_at)
    report.failed += 1
    log.warning(
        "outbox_publish_failed",
        event_id=event.event_id,
        event_type=event.event_type,
        retry_count=retry_count,
        next_retry_at=next_retry_at.isoformat(),
        error=error,
    )


async def drain_outbox(container, now: datetime | None = None, limit: int | None = None) -> DrainReport:
    """
    One pass over pending and failed events. Each entity's events go out in
    sequence order; an event that fails or is not yet due holds back the rest
    of its entity until a later pass.
    """
    now = now or datetime.utcnow()
    limit = limit or container.settings.outbox_batch_size
    report = DrainReport()
    events = await container.repos.outbox.list_undelivered(limit=limit)

    for group in group_by_entity(events).values():
        for index, event in enumerate(group):
            if not event.is_due(now):
                report.deferred += len(group) - index
                break
            try:
                await container.publisher.publish(event)
            except Exception as e:
                await _record_failure(container, event, str(e)[:500], now, report)
                report.deferred += len(group) - index - 1
                break
            await container.repos.outbox.mark_sent(event.event_id, now)
            report.sent += 1

    if events:
        log.info("outbox_drained", **report.as_dict())
    return report
