"""Beanie documents: the entity fields plus collection settings and indexes."""

from beanie import Document
from pymongo import ASCENDING, DESCENDING, IndexModel

from cardflow.models.audit_log import AuditLog
from cardflow.models.card import Card
from cardflow.models.card_request import CardRequest
from cardflow.models.failed_job import FailedJob
from cardflow.models.idempotency_record import IdempotencyRecord
from cardflow.models.outbox_event import OutboxEvent
from cardflow.models.pending_approval import PendingApproval
from cardflow.models.score import ScoreEntry
from cardflow.models.transaction import Transaction
from cardflow.models.user import User
from cardflow.models.whatsapp import WhatsAppInboundMessage, WhatsAppNotification


class UserDocument(User, Document):
    class Settings:
        name = "users"
        indexes = [
            IndexModel([("user_id", ASCENDING)], unique=True),
            IndexModel([("external_id", ASCENDING)], unique=True),
        ]


class CardDocument(Card, Document):
    class Settings:
        name = "cards"
        indexes = [
            IndexModel([("card_id", ASCENDING)], unique=True),
            [("user_id", ASCENDING), ("created_at", ASCENDING)],
            IndexModel(
                [("user_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"status": "active"},
                name="one_active_card_per_user",
            ),
        ]


class CardRequestDocument(CardRequest, Document):
    class Settings:
        name = "card_requests"
        indexes = [
            IndexModel([("request_id", ASCENDING)], unique=True),
            [("user_id", ASCENDING), ("status", ASCENDING)],
            # admin queue and expiry scans read pending requests only
            [("status", ASCENDING), ("created_at", ASCENDING)],
            IndexModel(
                [("user_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"status": "pending"},
                name="one_pending_request_per_user",
            ),
        ]


class TransactionDocument(Transaction, Document):
    class Settings:
        name = "transactions"
        indexes = [
            IndexModel([("transaction_id", ASCENDING)], unique=True),
            [("user_id", ASCENDING), ("card_id", ASCENDING), ("timestamp", DESCENDING)],
        ]


class ScoreEntryDocument(ScoreEntry, Document):
    class Settings:
        name = "score_history"
        indexes = [[("user_id", ASCENDING), ("timestamp", DESCENDING)]]


class OutboxEventDocument(OutboxEvent, Document):
    class Settings:
        name = "outbox"
        indexes = [
            IndexModel([("event_id", ASCENDING)], unique=True),
            [("status", ASCENDING), ("created_at", ASCENDING)],
            IndexModel(
                [("entity_type", ASCENDING), ("entity_id", ASCENDING), ("sequence_number", ASCENDING)],
                unique=True,
            ),
        ]


class OutboxSequenceDocument(Document):
    key: str
    value: int = 0

    class Settings:
        name = "outbox_sequences"
        indexes = [IndexModel([("key", ASCENDING)], unique=True)]


class IdempotencyRecordDocument(IdempotencyRecord, Document):
    class Settings:
        name = "idempotency_records"
        indexes = [
            IndexModel([("actor_id", ASCENDING), ("key_hash", ASCENDING)], unique=True),
            [("expires_at", ASCENDING)],
        ]


class AuditLogDocument(AuditLog, Document):
    class Settings:
        name = "audit_logs"
        indexes = [
            [("target_user_id", ASCENDING), ("timestamp", DESCENDING)],
            [("admin_id", ASCENDING), ("timestamp", DESCENDING)],
        ]


class PendingApprovalDocument(PendingApproval, Document):
    class Settings:
        name = "pending_approvals"
        indexes = [
            IndexModel([("request_id", ASCENDING)], unique=True),
            [("short_id", ASCENDING)],
            [("approval_status", ASCENDING), ("expires_at", ASCENDING)],
        ]


class WhatsAppNotificationDocument(WhatsAppNotification, Document):
    class Settings:
        name = "whatsapp_notifications"
        indexes = [
            IndexModel([("notification_id", ASCENDING)], unique=True),
            [("delivery_status", ASCENDING), ("next_retry_at", ASCENDING)],
            [("related_entity_id", ASCENDING)],
        ]


class WhatsAppInboundMessageDocument(WhatsAppInboundMessage, Document):
    class Settings:
        name = "whatsapp_inbound"
        indexes = [[("received_at", DESCENDING)], [("wpp_message_id", ASCENDING)]]


class FailedJobDocument(FailedJob, Document):
    class Settings:
        name = "failed_jobs"
        indexes = [[("job_name", ASCENDING)], [("created_at", DESCENDING)]]
