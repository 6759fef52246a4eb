"""WhatsApp channel settings derived from the app Settings."""

from dataclasses import dataclass
from urllib.parse import urlparse

from cardflow.core.config import Settings, get_settings
from cardflow.core.exceptions import AppError
from cardflow.whatsapp.phone import is_valid_brazilian_phone, normalize_brazilian_phone


class WhatsAppConfigError(AppError):
    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            "Invalid WhatsApp configuration:\n- " + "\n- ".join(errors),
            code="WHATSAPP_CONFIG_INVALID",
            details={"errors": errors},
        )


@dataclass(frozen=True)
class WhatsAppConfig:
    wpp_base_url: str
    wpp_secret_key: str
    wpp_session_name: str
    admin_phone_1: str
    admin_phone_2: str
    webhook_secret: str
    notifications_enabled: bool
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "WhatsAppConfig":
        settings = settings or get_settings()
        return cls(
            wpp_base_url=settings.wpp_base_url.rstrip("/"),
            wpp_secret_key=settings.wpp_secret_key,
            wpp_session_name=settings.wpp_session_name,
            admin_phone_1=settings.admin_phone_1,
            admin_phone_2=settings.admin_phone_2,
            webhook_secret=settings.webhook_secret,
            notifications_enabled=settings.whatsapp_notifications_enabled,
            timeout_seconds=settings.wpp_timeout_seconds,
        )

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not self.wpp_base_url:
            errors.append("WPP_BASE_URL is required")
        else:
            parsed = urlparse(self.wpp_base_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append("WPP_BASE_URL must be a valid URL")
        if not self.wpp_secret_key:
            errors.append("WPP_SECRET_KEY is required")
        if not self.wpp_session_name:
            errors.append("WPP_SESSION_NAME is required")
        if not self.webhook_secret:
            errors.append("WEBHOOK_SECRET is required")
        if not self.admin_phone_1 and not self.admin_phone_2:
            errors.append("At least one admin phone (ADMIN_PHONE_1 or ADMIN_PHONE_2) is required")
        for name, phone in (("ADMIN_PHONE_1", self.admin_phone_1), ("ADMIN_PHONE_2", self.admin_phone_2)):
            if phone and not is_valid_brazilian_phone(phone):
                errors.append(f"{name} ({phone}) is not a valid Brazilian phone number")
        return errors

    def ensure_valid(self) -> None:
        errors = self.validate()
        if errors:
            raise WhatsAppConfigError(errors)

    @property
    def admin_phones(self) -> list[str]:
        phones = []
        for phone in (self.admin_phone_1, self.admin_phone_2):
            if phone:
                phones.append(normalize_brazilian_phone(phone) if is_valid_brazilian_phone(phone) else phone)
        return phones

    @property
    def enabled(self) -> bool:
        return self.notifications_enabled and not self.validate()
