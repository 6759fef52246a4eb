"""Beanie/MongoDB repositories. Requires init_db() before first use."""

from datetime import datetime
from typing import Any, TypeVar

from beanie import Document
from beanie.operators import In, Set
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from cardflow.core.exceptions import ActiveCardExistsError, ConcurrencyError, ConflictError, NotFoundError
from cardflow.db.documents import (
    AuditLogDocument,
    CardDocument,
    CardRequestDocument,
    FailedJobDocument,
    IdempotencyRecordDocument,
    OutboxEventDocument,
    OutboxSequenceDocument,
    PendingApprovalDocument,
    ScoreEntryDocument,
    TransactionDocument,
    UserDocument,
    WhatsAppInboundMessageDocument,
    WhatsAppNotificationDocument,
)
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

E = TypeVar("E", bound=BaseModel)

_DOCUMENT_ONLY_FIELDS = {"id", "revision_id"}
ACTIVE_CARD_INDEX = "one_active_card_per_user"


def _entity(cls: type[E], doc: Document | None) -> E | None:
    if doc is None:
        return None
    return cls.model_validate(doc.model_dump(exclude=_DOCUMENT_ONLY_FIELDS))


def _entities(cls: type[E], docs: list[Document]) -> list[E]:
    return [cls.model_validate(d.model_dump(exclude=_DOCUMENT_ONLY_FIELDS)) for d in docs]


def _fields(model: BaseModel) -> dict[str, Any]:
    return model.model_dump()


def _deleted(result) -> int:
    return result.deleted_count if result else 0


class MongoUserRepository(UserRepository):
    async def get(self, user_id: str) -> User | None:
        return _entity(User, await UserDocument.find_one(UserDocument.user_id == user_id))

    async def find_by_external_id(self, external_id: str) -> User | None:
        return _entity(User, await UserDocument.find_one(UserDocument.external_id == external_id))

    async def save(self, user: User) -> None:
        data = _fields(user)
        await UserDocument.find_one(UserDocument.user_id == user.user_id).upsert(
            Set(data), on_insert=UserDocument(**data)
        )

    async def update_card_summary(self, user_id: str, summary: CardSummary) -> None:
        result = await UserDocument.find_one(UserDocument.user_id == user_id).update(
            Set({"card_summary": summary.model_dump(), "updated_at": datetime.utcnow()})
        )
        if result is None or result.matched_count == 0:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")

    async def delete(self, user_id: str) -> bool:
        return _deleted(await UserDocument.find(UserDocument.user_id == user_id).delete()) > 0


class MongoCardRepository(CardRepository):
    async def get(self, user_id: str, card_id: str) -> Card | None:
        doc = await CardDocument.find_one(CardDocument.card_id == card_id, CardDocument.user_id == user_id)
        return _entity(Card, doc)

    async def list_for_user(self, user_id: str) -> list[Card]:
        docs = await CardDocument.find(CardDocument.user_id == user_id).sort("+created_at").to_list()
        return _entities(Card, docs)

    async def insert(self, card: Card) -> None:
        try:
            await CardDocument(**_fields(card)).insert()
        except DuplicateKeyError as e:
            if ACTIVE_CARD_INDEX in str(e):
                raise ActiveCardExistsError(card.user_id) from e
            raise ConflictError("Card already exists", details={"card_id": card.card_id}) from e

    async def update(self, card: Card, expected_version: int) -> None:
        result = await CardDocument.find_one(
            CardDocument.card_id == card.card_id,
            CardDocument.version == expected_version,
        ).update(Set(_fields(card)))
        if result is not None and result.matched_count == 1:
            return
        current = await CardDocument.find_one(CardDocument.card_id == card.card_id)
        if current is None:
            raise NotFoundError("Card not found", code="CARD_NOT_FOUND")
        raise ConcurrencyError(card.card_id, expected_version, current.version)

    async def delete_for_user(self, user_id: str) -> int:
        return _deleted(await CardDocument.find(CardDocument.user_id == user_id).delete())


class MongoCardRequestRepository(CardRequestRepository):
    async def get(self, user_id: str, request_id: str) -> CardRequest | None:
        doc = await CardRequestDocument.find_one(
            CardRequestDocument.request_id == request_id,
            CardRequestDocument.user_id == user_id,
        )
        return _entity(CardRequest, doc)

    async def find_pending_for_user(self, user_id: str) -> CardRequest | None:
        doc = await CardRequestDocument.find_one(
            CardRequestDocument.user_id == user_id,
            CardRequestDocument.status == "pending",
        )
        return _entity(CardRequest, doc)

    async def find_rejected_since(self, user_id: str, since: datetime) -> list[CardRequest]:
        docs = await CardRequestDocument.find(
            {"user_id": user_id, "status": "rejected", "decision.decided_at": {"$gte": since}}
        ).to_list()
        return _entities(CardRequest, docs)

    async def list_pending(self, limit: int = 50, offset: int = 0) -> list[CardRequest]:
        docs = (
            await CardRequestDocument.find(CardRequestDocument.status == "pending")
            .sort("+created_at")
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return _entities(CardRequest, docs)

    async def insert(self, request: CardRequest) -> None:
        try:
            await CardRequestDocument(**_fields(request)).insert()
        except DuplicateKeyError as e:
            raise ConflictError("User has a pending card request", code="NOT_ELIGIBLE") from e

    async def record_decision(self, request: CardRequest) -> None:
        result = await CardRequestDocument.find_one(
            CardRequestDocument.request_id == request.request_id,
            CardRequestDocument.status == "pending",
        ).update(Set(_fields(request)))
        if result is not None and result.matched_count == 1:
            return
        current = await CardRequestDocument.find_one(CardRequestDocument.request_id == request.request_id)
        if current is None:
            raise NotFoundError("Request not found", code="REQUEST_NOT_FOUND")
        raise ConflictError(
            f"Request is not pending (status: {current.status})",
            code="REQUEST_NOT_PENDING",
            details={"request_id": request.request_id, "status": current.status},
        )

    async def delete_for_user(self, user_id: str) -> int:
        return _deleted(await CardRequestDocument.find(CardRequestDocument.user_id == user_id).delete())


class MongoTransactionRepository(TransactionRepository):
    async def insert(self, transaction: Transaction) -> None:
        await TransactionDocument(**_fields(transaction)).insert()

    async def list_for_card(self, user_id: str, card_id: str, limit: int = 50, offset: int = 0) -> list[Transaction]:
        docs = (
            await TransactionDocument.find(
                TransactionDocument.user_id == user_id,
                TransactionDocument.card_id == card_id,
            )
            .sort("-timestamp")
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return _entities(Transaction, docs)

    async def delete_for_user(self, user_id: str) -> int:
        return _deleted(await TransactionDocument.find(TransactionDocument.user_id == user_id).delete())


class MongoScoreHistoryRepository(ScoreHistoryRepository):
    async def append(self, entry: ScoreEntry) -> None:
        await ScoreEntryDocument(**_fields(entry)).insert()

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[ScoreEntry]:
        docs = (
            await ScoreEntryDocument.find(ScoreEntryDocument.user_id == user_id)
            .sort("-timestamp")
            .limit(limit)
            .to_list()
        )
        return _entities(ScoreEntry, docs)

    async def delete_for_user(self, user_id: str) -> int:
        return _deleted(await ScoreEntryDocument.find(ScoreEntryDocument.user_id == user_id).delete())


class MongoOutboxRepository(OutboxRepository):
    async def _next_sequence(self, key: str) -> int:
        collection = OutboxSequenceDocument.get_motor_collection()
        counter = await collection.find_one_and_update(
            {"key": key},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["value"]

    async def append(self, event: OutboxEvent) -> OutboxEvent:
        stored = event.evolve(sequence_number=await self._next_sequence(event.entity_key))
        await OutboxEventDocument(**_fields(stored)).insert()
        return stored

    async def get(self, event_id: str) -> OutboxEvent | None:
        return _entity(OutboxEvent, await OutboxEventDocument.find_one(OutboxEventDocument.event_id == event_id))

    async def list_undelivered(self, limit: int = 100) -> list[OutboxEvent]:
        docs = (
            await OutboxEventDocument.find(In(OutboxEventDocument.status, list(UNDELIVERED_STATUSES)))
            .sort([("created_at", 1), ("sequence_number", 1)])
            .limit(limit)
            .to_list()
        )
        return _entities(OutboxEvent, docs)

    async def list_by_status(self, status: str, limit: int = 100) -> list[OutboxEvent]:
        docs = (
            await OutboxEventDocument.find(OutboxEventDocument.status == status)
            .sort("+created_at")
            .limit(limit)
            .to_list()
        )
        return _entities(OutboxEvent, docs)

    async def list_for_entity(self, entity_type: str, entity_id: str) -> list[OutboxEvent]:
        docs = (
            await OutboxEventDocument.find(
                OutboxEventDocument.entity_type == entity_type,
                OutboxEventDocument.entity_id == entity_id,
            )
            .sort("+sequence_number")
            .to_list()
        )
        return _entities(OutboxEvent, docs)

    async def _set(self, event_id: str, changes: dict[str, Any]) -> None:
        result = await OutboxEventDocument.find_one(OutboxEventDocument.event_id == event_id).update(Set(changes))
        if result is None or result.matched_count == 0:
            raise NotFoundError("Outbox event not found")

    async def mark_sent(self, event_id: str, sent_at: datetime) -> None:
        await self._set(event_id, {"status": "sent", "sent_at": sent_at, "last_error": None, "next_retry_at": None})

    async def mark_failed(self, event_id: str, retry_count: int, error: str, next_retry_at: datetime) -> None:
        await self._set(
            event_id,
            {"status": "failed", "retry_count": retry_count, "last_error": error, "next_retry_at": next_retry_at},
        )

    async def mark_dead_letter(self, event_id: str, retry_count: int, error: str) -> None:
        await self._set(
            event_id,
            {"status": "dead_letter", "retry_count": retry_count, "last_error": error, "next_retry_at": None},
        )

    async def delete_sent_before(self, cutoff: datetime) -> int:
        result = await OutboxEventDocument.find(
            OutboxEventDocument.status == "sent",
            OutboxEventDocument.sent_at < cutoff,
        ).delete()
        return _deleted(result)


class MongoIdempotencyRepository(IdempotencyRepository):
    async def get(self, actor_id: str, key_hash: str) -> IdempotencyRecord | None:
        doc = await IdempotencyRecordDocument.find_one(
            IdempotencyRecordDocument.actor_id == actor_id,
            IdempotencyRecordDocument.key_hash == key_hash,
        )
        return _entity(IdempotencyRecord, doc)

    async def save(self, record: IdempotencyRecord) -> None:
        data = _fields(record)
        await IdempotencyRecordDocument.find_one(
            IdempotencyRecordDocument.actor_id == record.actor_id,
            IdempotencyRecordDocument.key_hash == record.key_hash,
        ).upsert(Set(data), on_insert=IdempotencyRecordDocument(**data))

    async def delete(self, actor_id: str, key_hash: str) -> bool:
        result = await IdempotencyRecordDocument.find(
            IdempotencyRecordDocument.actor_id == actor_id,
            IdempotencyRecordDocument.key_hash == key_hash,
        ).delete()
        return _deleted(result) > 0

    async def delete_expired(self, now: datetime) -> int:
        return _deleted(await IdempotencyRecordDocument.find(IdempotencyRecordDocument.expires_at <= now).delete())

    async def delete_for_actor(self, actor_id: str) -> int:
        return _deleted(await IdempotencyRecordDocument.find(IdempotencyRecordDocument.actor_id == actor_id).delete())


class MongoAuditLogRepository(AuditLogRepository):
    async def append(self, entry: AuditLog) -> None:
        await AuditLogDocument(**_fields(entry)).insert()

    async def list_for_target_user(self, user_id: str, limit: int = 50) -> list[AuditLog]:
        docs = (
            await AuditLogDocument.find(AuditLogDocument.target_user_id == user_id)
            .sort("-timestamp")
            .limit(limit)
            .to_list()
        )
        return _entities(AuditLog, docs)


class MongoPendingApprovalRepository(PendingApprovalRepository):
    async def save(self, tracker: PendingApproval) -> None:
        data = _fields(tracker)
        await PendingApprovalDocument.find_one(PendingApprovalDocument.request_id == tracker.request_id).upsert(
            Set(data), on_insert=PendingApprovalDocument(**data)
        )

    async def get(self, request_id: str) -> PendingApproval | None:
        doc = await PendingApprovalDocument.find_one(PendingApprovalDocument.request_id == request_id)
        return _entity(PendingApproval, doc)

    async def find_by_short_id(self, short_id: str) -> list[PendingApproval]:
        docs = await PendingApprovalDocument.find(PendingApprovalDocument.short_id == short_id.upper()).to_list()
        return _entities(PendingApproval, docs)

    async def find_expired(self, now: datetime, limit: int = 100) -> list[PendingApproval]:
        docs = (
            await PendingApprovalDocument.find(
                PendingApprovalDocument.approval_status == "pending",
                PendingApprovalDocument.expires_at <= now,
            )
            .sort("+expires_at")
            .limit(limit)
            .to_list()
        )
        return _entities(PendingApproval, docs)

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        result = await PendingApprovalDocument.find(
            In(PendingApprovalDocument.approval_status, ["approved", "rejected", "expired"]),
            PendingApprovalDocument.updated_at < cutoff,
        ).delete()
        return _deleted(result)

    async def delete_for_user(self, user_id: str) -> int:
        return _deleted(await PendingApprovalDocument.find(PendingApprovalDocument.user_id == user_id).delete())


class MongoWhatsAppNotificationRepository(WhatsAppNotificationRepository):
    async def save(self, notification: WhatsAppNotification) -> None:
        data = _fields(notification)
        await WhatsAppNotificationDocument.find_one(
            WhatsAppNotificationDocument.notification_id == notification.notification_id
        ).upsert(Set(data), on_insert=WhatsAppNotificationDocument(**data))

    async def get(self, notification_id: str) -> WhatsAppNotification | None:
        doc = await WhatsAppNotificationDocument.find_one(
            WhatsAppNotificationDocument.notification_id == notification_id
        )
        return _entity(WhatsAppNotification, doc)

    async def find_due(self, now: datetime, limit: int = 10) -> list[WhatsAppNotification]:
        docs = (
            await WhatsAppNotificationDocument.find(
                {
                    "$or": [
                        {"delivery_status": "pending"},
                        {"delivery_status": "failed", "next_retry_at": {"$lte": now}},
                        {"delivery_status": "failed", "next_retry_at": None},
                    ]
                }
            )
            .sort("+created_at")
            .limit(limit)
            .to_list()
        )
        return _entities(WhatsAppNotification, docs)

    async def list_for_entity(self, related_entity_id: str) -> list[WhatsAppNotification]:
        docs = (
            await WhatsAppNotificationDocument.find(
                WhatsAppNotificationDocument.related_entity_id == related_entity_id
            )
            .sort("+created_at")
            .to_list()
        )
        return _entities(WhatsAppNotification, docs)


class MongoWhatsAppInboundRepository(WhatsAppInboundRepository):
    async def save(self, message: WhatsAppInboundMessage) -> None:
        await WhatsAppInboundMessageDocument(**_fields(message)).insert()

    async def list_recent(self, limit: int = 50) -> list[WhatsAppInboundMessage]:
        docs = await WhatsAppInboundMessageDocument.find_all().sort("-received_at").limit(limit).to_list()
        return _entities(WhatsAppInboundMessage, docs)


class MongoFailedJobRepository(FailedJobRepository):
    async def save(self, job: FailedJob) -> None:
        await FailedJobDocument(**_fields(job)).insert()

    async def list_recent(self, limit: int = 50) -> list[FailedJob]:
        docs = await FailedJobDocument.find_all().sort("-created_at").limit(limit).to_list()
        return _entities(FailedJob, docs)


def build_mongo_repositories() -> Repositories:
    return Repositories(
        users=MongoUserRepository(),
        cards=MongoCardRepository(),
        card_requests=MongoCardRequestRepository(),
        transactions=MongoTransactionRepository(),
        scores=MongoScoreHistoryRepository(),
        outbox=MongoOutboxRepository(),
        idempotency=MongoIdempotencyRepository(),
        audit_logs=MongoAuditLogRepository(),
        pending_approvals=MongoPendingApprovalRepository(),
        notifications=MongoWhatsAppNotificationRepository(),
        inbound_messages=MongoWhatsAppInboundRepository(),
        failed_jobs=MongoFailedJobRepository(),
    )
