import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from cardflow.core.config import Settings, get_settings
from cardflow.core.logging import get_logger
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

log = get_logger(__name__)

DOCUMENT_MODELS = [
    UserDocument,
    CardDocument,
    CardRequestDocument,
    TransactionDocument,
    ScoreEntryDocument,
    OutboxEventDocument,
    OutboxSequenceDocument,
    IdempotencyRecordDocument,
    AuditLogDocument,
    PendingApprovalDocument,
    WhatsAppNotificationDocument,
    WhatsAppInboundMessageDocument,
    FailedJobDocument,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Plain mongodb:// stays unencrypted for local runs."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    if settings.repository_backend != "mongo":
        return
    kwargs = {}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    log.info("db_initialized", database=settings.mongodb_db_name, collections=len(DOCUMENT_MODELS))
