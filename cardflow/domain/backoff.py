"""Retry schedules for outbox delivery and outbound notifications."""

from datetime import datetime, timedelta

OUTBOX_BASE_DELAY_SECONDS = 10
OUTBOX_MAX_DELAY_SECONDS = 160
OUTBOX_MAX_RETRIES = 5

NOTIFICATION_BASE_DELAY_SECONDS = 60
NOTIFICATION_MAX_RETRIES = 3


def outbox_retry_delay(retry_count: int) -> timedelta:
    """min(10s * 2^retry_count, 160s)."""
    retry_count = max(0, retry_count)
    seconds = min(OUTBOX_BASE_DELAY_SECONDS * (2 ** retry_count), OUTBOX_MAX_DELAY_SECONDS)
    return timedelta(seconds=seconds)


def notification_retry_delay(retry_count: int) -> timedelta:
    """60s * 2^retry_count."""
    return timedelta(seconds=NOTIFICATION_BASE_DELAY_SECONDS * (2 ** max(0, retry_count)))


def next_outbox_attempt(retry_count: int, now: datetime | None = None) -> datetime:
    return (now or datetime.utcnow()) + outbox_retry_delay(retry_count)


def next_notification_attempt(retry_count: int, now: datetime | None = None) -> datetime:
    return (now or datetime.utcnow()) + notification_retry_delay(retry_count)
