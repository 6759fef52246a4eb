from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_list(v: Any, default: List[str]) -> List[str]:
    try:
        if v is None or v == "":
            return default.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return default.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or default.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or default.copy()
    except ValueError:
        return default.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars", alias="SECRET_KEY")

    # Persistence: "memory" | "mongo"
    repository_backend: str = Field(default="memory", alias="REPOSITORY_BACKEND")
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="cardflow", alias="MONGODB_DB_NAME")

    # Redis (ARQ + event stream)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    event_publisher: str = Field(default="memory", alias="EVENT_PUBLISHER")
    event_stream_name: str = Field(default="cardflow.events", alias="EVENT_STREAM_NAME")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_list(self.cors_origins_raw, _DEFAULT_CORS)

    # Auth
    access_token_max_age_seconds: int = 7 * 24 * 3600
    admin_emails_raw: str = Field(default="", alias="ADMIN_EMAILS")

    @property
    def admin_emails(self) -> List[str]:
        return [e.lower() for e in _parse_list(self.admin_emails_raw, [])]

    # WhatsApp (WPP-Connect)
    wpp_base_url: str = Field(default="", alias="WPP_BASE_URL")
    wpp_secret_key: str = Field(default="", alias="WPP_SECRET_KEY")
    wpp_session_name: str = Field(default="acme-financial-api", alias="WPP_SESSION_NAME")
    wpp_timeout_seconds: float = Field(default=10.0, alias="WPP_TIMEOUT_SECONDS")
    admin_phone_1: str = Field(default="", alias="ADMIN_PHONE_1")
    admin_phone_2: str = Field(default="", alias="ADMIN_PHONE_2")
    webhook_secret: str = Field(default="", alias="WEBHOOK_SECRET")
    whatsapp_notifications_enabled_raw: str = Field(default="true", alias="WHATSAPP_NOTIFICATIONS_ENABLED")

    @property
    def whatsapp_notifications_enabled(self) -> bool:
        return self.whatsapp_notifications_enabled_raw.strip().lower() != "false"

    # Workflow windows
    approval_timeout_hours: int = 24
    idempotency_ttl_hours: int = 24
    cleanup_token_ttl_seconds: int = 300
    outbox_batch_size: int = 100


@lru_cache
def get_settings() -> Settings:
    return Settings()
