from cardflow.models.audit_log import AuditLog
from cardflow.models.card import Card
from cardflow.models.card_request import AdminDecision, AutoDecision, CardRequest
from cardflow.models.failed_job import FailedJob
from cardflow.models.idempotency_record import IdempotencyRecord
from cardflow.models.outbox_event import OutboxEvent
from cardflow.models.pending_approval import PendingApproval
from cardflow.models.score import ScoreEntry
from cardflow.models.transaction import Transaction
from cardflow.models.user import CardSummary, User
from cardflow.models.whatsapp import ParsedCommand, WhatsAppInboundMessage, WhatsAppNotification

__all__ = [
    "AdminDecision",
    "AuditLog",
    "AutoDecision",
    "Card",
    "CardRequest",
    "CardSummary",
    "FailedJob",
    "IdempotencyRecord",
    "OutboxEvent",
    "ParsedCommand",
    "PendingApproval",
    "ScoreEntry",
    "Transaction",
    "User",
    "WhatsAppInboundMessage",
    "WhatsAppNotification",
]
