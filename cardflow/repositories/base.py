from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from cardflow.core.config import Settings, get_settings
from cardflow.models.audit_log import AuditLog
from cardflow.models.card import Card
from cardflow.models.card_request import CardRequest
from cardflow.models.failed_job import FailedJob
from cardflow.models.idempotency_record import IdempotencyRecord
from cardflow.models.outbox_event import OutboxEvent
from cardflow.models.pending_approval import PendingApproval
from cardflow.models.score import ScoreEntry
from cardflow.models.transaction import Transaction
from cardflow.models.user import CardSummary, User
from cardflow.models.whatsapp import WhatsAppInboundMessage, WhatsAppNotification


class UserRepository(ABC):
    @abstractmethod
    async def get(self, user_id: str) -> User | None:
        ...

    @abstractmethod
    async def find_by_external_id(self, external_id: str) -> User | None:
        ...

    @abstractmethod
    async def save(self, user: User) -> None:
        """Insert or replace by user_id."""
        ...

    @abstractmethod
    async def update_card_summary(self, user_id: str, summary: CardSummary) -> None:
        ...

    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        ...


class CardRepository(ABC):
    @abstractmethod
    async def get(self, user_id: str, card_id: str) -> Card | None:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[Card]:
        ...

    @abstractmethod
    async def insert(self, card: Card) -> None:
        ...

    @abstractmethod
    async def update(self, card: Card, expected_version: int) -> None:
        """Replace the card only if the stored version equals expected_version; else ConcurrencyError."""
        ...

    @abstractmethod
    async def delete_for_user(self, user_id: str) -> int:
        ...


class CardRequestRepository(ABC):
    @abstractmethod
    async def get(self, user_id: str, request_id: str) -> CardRequest | None:
        ...

    @abstractmethod
    async def find_pending_for_user(self, user_id: str) -> CardRequest | None:
        ...

    @abstractmethod
    async def find_rejected_since(self, user_id: str, since: datetime) -> list[CardRequest]:
        ...

    @abstractmethod
    async def list_pending(self, limit: int = 50, offset: int = 0) -> list[CardRequest]:
        """Admin queue across all users, oldest first."""
        ...

    @abstractmethod
    async def insert(self, request: CardRequest) -> None:
        """Insert; a second pending request for the same user raises ConflictError."""
        ...

    @abstractmethod
    async def record_decision(self, request: CardRequest) -> None:
        """Persist a decided request only while the stored one is still pending; else ConflictError."""
        ...

    @abstractmethod
    async def delete_for_user(self, user_id: str) -> int:
        ...


class TransactionRepository(ABC):
    @abstractmethod
    async def insert(self, transaction: Transaction) -> None:
        ...

    @abstractmethod
    async def list_for_card(self, user_id: str, card_id: str, limit: int = 50, offset: int = 0) -> list[Transaction]:
        """Newest first."""
        ...

    @abstractmethod
    async def delete_for_user(self, user_id: str) -> int:
        ...


class ScoreHistoryRepository(ABC):
    @abstractmethod
    async def append(self, entry: ScoreEntry) -> None:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str, limit: int = 50) -> list[ScoreEntry]:
        """Newest first."""
        ...

    @abstractmethod
    async def delete_for_user(self, user_id: str) -> int:
        ...


class OutboxRepository(ABC):
    @abstractmethod
    async def append(self, event: OutboxEvent) -> OutboxEvent:
        """Store the event with the next sequence number for its entity; return the stored event."""
        ...

    @abstractmethod
    async def get(self, event_id: str) -> OutboxEvent | None:
        ...

    @abstractmethod
    async def list_undelivered(self, limit: int = 100) -> list[OutboxEvent]:
        """Pending and failed events, ordered by created_at then sequence_number."""
        ...

    @abstractmethod
    async def list_by_status(self, status: str, limit: int = 100) -> list[OutboxEvent]:
        ...

    @abstractmethod
    async def list_for_entity(self, entity_type: str, entity_id: str) -> list[OutboxEvent]:
        ...

    @abstractmethod
    async def mark_sent(self, event_id: str, sent_at: datetime) -> None:
        ...

    @abstractmethod
    async def mark_failed(self, event_id: str, retry_count: int, error: str, next_retry_at: datetime) -> None:
        ...

    @abstractmethod
    async def mark_dead_letter(self, event_id: str, retry_count: int, error: str) -> None:
        ...

    @abstractmethod
    async def delete_sent_before(self, cutoff: datetime) -> int:
        ...


class IdempotencyRepository(ABC):
    @abstractmethod
    async def get(self, actor_id: str, key_hash: str) -> IdempotencyRecord | None:
        """Raw lookup; expiry is checked by the caller."""
        ...

    @abstractmethod
    async def save(self, record: IdempotencyRecord) -> None:
        ...

    @abstractmethod
    async def delete(self, actor_id: str, key_hash: str) -> bool:
        ...

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        ...

    @abstractmethod
    async def delete_for_actor(self, actor_id: str) -> int:
        ...


class AuditLogRepository(ABC):
    @abstractmethod
    async def append(self, entry: AuditLog) -> None:
        ...

    @abstractmethod
    async def list_for_target_user(self, user_id: str, limit: int = 50) -> list[AuditLog]:
        ...


class PendingApprovalRepository(ABC):
    @abstractmethod
    async def save(self, tracker: PendingApproval) -> None:
        """Insert or replace by request_id."""
        ...

    @abstractmethod
    async def get(self, request_id: str) -> PendingApproval | None:
        ...

    @abstractmethod
    async def find_by_short_id(self, short_id: str) -> list[PendingApproval]:
        ...

    @abstractmethod
    async def find_expired(self, now: datetime, limit: int = 100) -> list[PendingApproval]:
        """Still-pending trackers whose expires_at has passed."""
        ...

    @abstractmethod
    async def delete_terminal_before(self, cutoff: datetime) -> int:
        ...

    @abstractmethod
    async def delete_for_user(self, user_id: str) -> int:
        ...


class WhatsAppNotificationRepository(ABC):
    @abstractmethod
    async def save(self, notification: WhatsAppNotification) -> None:
        ...

    @abstractmethod
    async def get(self, notification_id: str) -> WhatsAppNotification | None:
        ...

    @abstractmethod
    async def find_due(self, now: datetime, limit: int = 10) -> list[WhatsAppNotification]:
        """Pending, or failed with next_retry_at reached; oldest first."""
        ...

    @abstractmethod
    async def list_for_entity(self, related_entity_id: str) -> list[WhatsAppNotification]:
        ...


class WhatsAppInboundRepository(ABC):
    @abstractmethod
    async def save(self, message: WhatsAppInboundMessage) -> None:
        ...

    @abstractmethod
    async def list_recent(self, limit: int = 50) -> list[WhatsAppInboundMessage]:
        ...


class FailedJobRepository(ABC):
    @abstractmethod
    async def save(self, job: FailedJob) -> None:
        ...

    @abstractmethod
    async def list_recent(self, limit: int = 50) -> list[FailedJob]:
        ...


@dataclass
class Repositories:
    users: UserRepository
    cards: CardRepository
    card_requests: CardRequestRepository
    transactions: TransactionRepository
    scores: ScoreHistoryRepository
    outbox: OutboxRepository
    idempotency: IdempotencyRepository
    audit_logs: AuditLogRepository
    pending_approvals: PendingApprovalRepository
    notifications: WhatsAppNotificationRepository
    inbound_messages: WhatsAppInboundRepository
    failed_jobs: FailedJobRepository


def get_repositories(settings: Settings | None = None) -> Repositories:
    settings = settings or get_settings()
    if settings.repository_backend == "mongo":
        from cardflow.repositories.mongo import build_mongo_repositories
        return build_mongo_repositories()
    from cardflow.repositories.memory import build_memory_repositories
    return build_memory_repositories()
