"""Dict-backed repositories for tests and local runs.

Conditional writes check and store without awaiting in between, so they are
atomic with respect to other coroutines on the same event loop.
"""

from collections import defaultdict
from datetime import datetime
from typing import TypeVar

from pydantic import BaseModel

from cardflow.core.exceptions import ActiveCardExistsError, ConcurrencyError, ConflictError, NotFoundError
from cardflow.models.audit_log import AuditLog
from cardflow.models.card import Card
from cardflow.models.card_request import CardRequest
from cardflow.models.failed_job import FailedJob
from cardflow.models.idempotency_record import IdempotencyRecord
from cardflow.models.outbox_event import UNDELIVERED_STATUSES, OutboxEvent
from cardflow.models.pending_approval import PendingApproval
from cardflow.models.score import ScoreEntry
from cardflow.models.transaction import Transaction
from cardflow.models.user import CardSummary, User
from cardflow.models.whatsapp import WhatsAppInboundMessage, WhatsAppNotification
from cardflow.repositories.base import (
    AuditLogRepository,
    CardRepository,
    CardRequestRepository,
    FailedJobRepository,
    IdempotencyRepository,
    OutboxRepository,
    PendingApprovalRepository,
    Repositories,
    ScoreHistoryRepository,
    TransactionRepository,
    UserRepository,
    WhatsAppInboundRepository,
    WhatsAppNotificationRepository,
)

M = TypeVar("M", bound=BaseModel)


def _copy(model: M) -> M:
    return model.model_copy(deep=True)


class MemoryUserRepository(UserRepository):
    def __init__(self) -> None:
        self._users: dict[str, User] = {}

    async def get(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return _copy(user) if user else None

    async def find_by_external_id(self, external_id: str) -> User | None:
        for user in self._users.values():
            if user.external_id == external_id:
                return _copy(user)
        return None

    async def save(self, user: User) -> None:
        self._users[user.user_id] = _copy(user)

    async def update_card_summary(self, user_id: str, summary: CardSummary) -> None:
        user = self._users.get(user_id)
        if not user:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        self._users[user_id] = user.evolve(card_summary=summary.model_dump(), updated_at=datetime.utcnow())

    async def delete(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None


class MemoryCardRepository(CardRepository):
    def __init__(self) -> None:
        self._cards: dict[str, Card] = {}

    async def get(self, user_id: str, card_id: str) -> Card | None:
        card = self._cards.get(card_id)
        if not card or card.user_id != user_id:
            return None
        return _copy(card)

    async def list_for_user(self, user_id: str) -> list[Card]:
        cards = [c for c in self._cards.values() if c.user_id == user_id]
        return [_copy(c) for c in sorted(cards, key=lambda c: c.created_at)]

    async def insert(self, card: Card) -> None:
        if card.card_id in self._cards:
            raise ConflictError("Card already exists", details={"card_id": card.card_id})
        if card.status == "active" and any(
            c.user_id == card.user_id and c.status == "active" for c in self._cards.values()
        ):
            raise ActiveCardExistsError(card.user_id)
        self._cards[card.card_id] = _copy(card)

    async def update(self, card: Card, expected_version: int) -> None:
        stored = self._cards.get(card.card_id)
        if not stored:
            raise NotFoundError("Card not found", code="CARD_NOT_FOUND")
        if stored.version != expected_version:
            raise ConcurrencyError(card.card_id, expected_version, stored.version)
        self._cards[card.card_id] = _copy(card)

    async def delete_for_user(self, user_id: str) -> int:
        ids = [cid for cid, c in self._cards.items() if c.user_id == user_id]
        for cid in ids:
            del self._cards[cid]
        return len(ids)


class MemoryCardRequestRepository(CardRequestRepository):
    def __init__(self) -> None:
        self._requests: dict[str, CardRequest] = {}

    async def get(self, user_id: str, request_id: str) -> CardRequest | None:
        request = self._requests.get(request_id)
        if not request or request.user_id != user_id:
            return None
        return _copy(request)

    async def find_pending_for_user(self, user_id: str) -> CardRequest | None:
        for request in self._requests.values():
            if request.user_id == user_id and request.status == "pending":
                return _copy(request)
        return None

    async def find_rejected_since(self, user_id: str, since: datetime) -> list[CardRequest]:
        return [
            _copy(r)
            for r in self._requests.values()
            if r.user_id == user_id
            and r.status == "rejected"
            and r.decision is not None
            and r.decision.decided_at >= since
        ]

    async def list_pending(self, limit: int = 50, offset: int = 0) -> list[CardRequest]:
        pending = sorted((r for r in self._requests.values() if r.status == "pending"), key=lambda r: r.created_at)
        return [_copy(r) for r in pending[offset : offset + limit]]

    async def insert(self, request: CardRequest) -> None:
        if request.status == "pending" and any(
            r.user_id == request.user_id and r.status == "pending" for r in self._requests.values()
        ):
            raise ConflictError("User has a pending card request", code="NOT_ELIGIBLE")
        self._requests[request.request_id] = _copy(request)

    async def record_decision(self, request: CardRequest) -> None:
        stored = self._requests.get(request.request_id)
        if not stored:
            raise NotFoundError("Request not found", code="REQUEST_NOT_FOUND")
        if stored.status != "pending":
            raise ConflictError(
                f"Request is not pending (status: {stored.status})",
                code="REQUEST_NOT_PENDING",
                details={"request_id": request.request_id, "status": stored.status},
            )
        self._requests[request.request_id] = _copy(request)

    async def delete_for_user(self, user_id: str) -> int:
        ids = [rid for rid, r in self._requests.items() if r.user_id == user_id]
        for rid in ids:
            del self._requests[rid]
        return len(ids)


class MemoryTransactionRepository(TransactionRepository):
    def __init__(self) -> None:
        self._transactions: list[Transaction] = []

    async def insert(self, transaction: Transaction) -> None:
        self._transactions.append(_copy(transaction))

    async def list_for_card(self, user_id: str, card_id: str, limit: int = 50, offset: int = 0) -> list[Transaction]:
        rows = [t for t in self._transactions if t.user_id == user_id and t.card_id == card_id]
        rows.sort(key=lambda t: t.timestamp, reverse=True)
        return [_copy(t) for t in rows[offset : offset + limit]]

    async def delete_for_user(self, user_id: str) -> int:
        before = len(self._transactions)
        self._transactions = [t for t in self._transactions if t.user_id != user_id]
        return before - len(self._transactions)


class MemoryScoreHistoryRepository(ScoreHistoryRepository):
    def __init__(self) -> None:
        self._entries: list[ScoreEntry] = []

    async def append(self, entry: ScoreEntry) -> None:
        self._entries.append(_copy(entry))

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[ScoreEntry]:
        rows = [e for e in self._entries if e.user_id == user_id]
        rows.sort(key=lambda e: e.timestamp, reverse=True)
        return [_copy(e) for e in rows[:limit]]

    async def delete_for_user(self, user_id: str) -> int:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.user_id != user_id]
        return before - len(self._entries)


class MemoryOutboxRepository(OutboxRepository):
    def __init__(self) -> None:
        self._events: dict[str, OutboxEvent] = {}
        self._sequences: dict[str, int] = defaultdict(int)

    async def append(self, event: OutboxEvent) -> OutboxEvent:
        self._sequences[event.entity_key] += 1
        stored = event.evolve(sequence_number=self._sequences[event.entity_key])
        self._events[stored.event_id] = stored
        return _copy(stored)

    async def get(self, event_id: str) -> OutboxEvent | None:
        event = self._events.get(event_id)
        return _copy(event) if event else None

    async def list_undelivered(self, limit: int = 100) -> list[OutboxEvent]:
        rows = [e for e in self._events.values() if e.status in UNDELIVERED_STATUSES]
        rows.sort(key=lambda e: (e.created_at, e.sequence_number))
        return [_copy(e) for e in rows[:limit]]

    async def list_by_status(self, status: str, limit: int = 100) -> list[OutboxEvent]:
        rows = sorted((e for e in self._events.values() if e.status == status), key=lambda e: e.created_at)
        return [_copy(e) for e in rows[:limit]]

    async def list_for_entity(self, entity_type: str, entity_id: str) -> list[OutboxEvent]:
        rows = [e for e in self._events.values() if e.entity_type == entity_type and e.entity_id == entity_id]
        return [_copy(e) for e in sorted(rows, key=lambda e: e.sequence_number)]

    def _replace(self, event_id: str, **changes) -> None:
        event = self._events.get(event_id)
        if not event:
            raise NotFoundError("Outbox event not found")
        self._events[event_id] = event.evolve(**changes)

    async def mark_sent(self, event_id: str, sent_at: datetime) -> None:
        self._replace(event_id, status="sent", sent_at=sent_at, last_error=None, next_retry_at=None)

    async def mark_failed(self, event_id: str, retry_count: int, error: str, next_retry_at: datetime) -> None:
        self._replace(event_id, status="failed", retry_count=retry_count, last_error=error, next_retry_at=next_retry_at)

    async def mark_dead_letter(self, event_id: str, retry_count: int, error: str) -> None:
        self._replace(event_id, status="dead_letter", retry_count=retry_count, last_error=error, next_retry_at=None)

    async def delete_sent_before(self, cutoff: datetime) -> int:
        ids = [eid for eid, e in self._events.items() if e.status == "sent" and e.sent_at and e.sent_at < cutoff]
        for eid in ids:
            del self._events[eid]
        return len(ids)


class MemoryIdempotencyRepository(IdempotencyRepository):
    def __init__(self) -> None:
        self._records: dict[tuple[str, str], IdempotencyRecord] = {}

    async def get(self, actor_id: str, key_hash: str) -> IdempotencyRecord | None:
        record = self._records.get((actor_id, key_hash))
        return _copy(record) if record else None

    async def save(self, record: IdempotencyRecord) -> None:
        self._records[(record.actor_id, record.key_hash)] = _copy(record)

    async def delete(self, actor_id: str, key_hash: str) -> bool:
        return self._records.pop((actor_id, key_hash), None) is not None

    async def delete_expired(self, now: datetime) -> int:
        keys = [k for k, r in self._records.items() if r.is_expired(now)]
        for k in keys:
            del self._records[k]
        return len(keys)

    async def delete_for_actor(self, actor_id: str) -> int:
        keys = [k for k in self._records if k[0] == actor_id]
        for k in keys:
            del self._records[k]
        return len(keys)


class MemoryAuditLogRepository(AuditLogRepository):
    def __init__(self) -> None:
        self._entries: list[AuditLog] = []

    async def append(self, entry: AuditLog) -> None:
        self._entries.append(_copy(entry))

    async def list_for_target_user(self, user_id: str, limit: int = 50) -> list[AuditLog]:
        rows = [e for e in self._entries if e.target_user_id == user_id]
        rows.sort(key=lambda e: e.timestamp, reverse=True)
        return [_copy(e) for e in rows[:limit]]


class MemoryPendingApprovalRepository(PendingApprovalRepository):
    def __init__(self) -> None:
        self._trackers: dict[str, PendingApproval] = {}

    async def save(self, tracker: PendingApproval) -> None:
        self._trackers[tracker.request_id] = _copy(tracker)

    async def get(self, request_id: str) -> PendingApproval | None:
        tracker = self._trackers.get(request_id)
        return _copy(tracker) if tracker else None

    async def find_by_short_id(self, short_id: str) -> list[PendingApproval]:
        short_id = short_id.upper()
        return [_copy(t) for t in self._trackers.values() if t.short_id == short_id]

    async def find_expired(self, now: datetime, limit: int = 100) -> list[PendingApproval]:
        rows = [t for t in self._trackers.values() if t.approval_status == "pending" and t.expires_at <= now]
        rows.sort(key=lambda t: t.expires_at)
        return [_copy(t) for t in rows[:limit]]

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        ids = [rid for rid, t in self._trackers.items() if t.is_terminal and t.updated_at < cutoff]
        for rid in ids:
            del self._trackers[rid]
        return len(ids)

    async def delete_for_user(self, user_id: str) -> int:
        ids = [rid for rid, t in self._trackers.items() if t.user_id == user_id]
        for rid in ids:
            del self._trackers[rid]
        return len(ids)


class MemoryWhatsAppNotificationRepository(WhatsAppNotificationRepository):
    def __init__(self) -> None:
        self._notifications: dict[str, WhatsAppNotification] = {}

    async def save(self, notification: WhatsAppNotification) -> None:
        self._notifications[notification.notification_id] = _copy(notification)

    async def get(self, notification_id: str) -> WhatsAppNotification | None:
        notification = self._notifications.get(notification_id)
        return _copy(notification) if notification else None

    async def find_due(self, now: datetime, limit: int = 10) -> list[WhatsAppNotification]:
        rows = [n for n in self._notifications.values() if n.is_due(now)]
        rows.sort(key=lambda n: n.created_at)
        return [_copy(n) for n in rows[:limit]]

    async def list_for_entity(self, related_entity_id: str) -> list[WhatsAppNotification]:
        rows = [n for n in self._notifications.values() if n.related_entity_id == related_entity_id]
        return [_copy(n) for n in sorted(rows, key=lambda n: n.created_at)]


class MemoryWhatsAppInboundRepository(WhatsAppInboundRepository):
    def __init__(self) -> None:
        self._messages: list[WhatsAppInboundMessage] = []

    async def save(self, message: WhatsAppInboundMessage) -> None:
        self._messages.append(_copy(message))

    async def list_recent(self, limit: int = 50) -> list[WhatsAppInboundMessage]:
        rows = sorted(self._messages, key=lambda m: m.received_at, reverse=True)
        return [_copy(m) for m in rows[:limit]]


class MemoryFailedJobRepository(FailedJobRepository):
    def __init__(self) -> None:
        self._jobs: list[FailedJob] = []

    async def save(self, job: FailedJob) -> None:
        self._jobs.append(_copy(job))

    async def list_recent(self, limit: int = 50) -> list[FailedJob]:
        rows = sorted(self._jobs, key=lambda j: j.created_at, reverse=True)
        return [_copy(j) for j in rows[:limit]]


def build_memory_repositories() -> Repositories:
    return Repositories(
        users=MemoryUserRepository(),
        cards=MemoryCardRepository(),
        card_requests=MemoryCardRequestRepository(),
        transactions=MemoryTransactionRepository(),
        scores=MemoryScoreHistoryRepository(),
        outbox=MemoryOutboxRepository(),
        idempotency=MemoryIdempotencyRepository(),
        audit_logs=MemoryAuditLogRepository(),
        pending_approvals=MemoryPendingApprovalRepository(),
        notifications=MemoryWhatsAppNotificationRepository(),
        inbound_messages=MemoryWhatsAppInboundRepository(),
        failed_jobs=MemoryFailedJobRepository(),
    )
