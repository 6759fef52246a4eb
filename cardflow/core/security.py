import hashlib
import hmac
import secrets
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from cardflow.core.config import get_settings
from cardflow.core.exceptions import BadRequestError

MAX_IDEMPOTENCY_KEY_LENGTH = 64


def get_token_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="cardflow-access-token",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def issue_access_token(claims: dict[str, Any]) -> str:
    """Sign auth claims ({uid, email, role}) into a bearer token."""
    return get_token_serializer().dumps(claims)


def verify_access_token(token: str) -> dict[str, Any] | None:
    """Return claims for a valid, unexpired token, else None."""
    settings = get_settings()
    try:
        claims = get_token_serializer().loads(token, max_age=settings.access_token_max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(claims, dict) or not claims.get("uid"):
        return None
    return claims


def hash_idempotency_key(key: str) -> str:
    """SHA-256 hex digest of the client key (64 chars)."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def require_idempotency_key(key: str | None) -> str:
    if not key or not key.strip():
        raise BadRequestError(
            "Idempotency-Key header is required for this request",
            code="IDEMPOTENCY_KEY_REQUIRED",
        )
    key = key.strip()
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise BadRequestError(
            f"Idempotency-Key must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters",
            code="VALIDATION_ERROR",
        )
    return key


def generate_confirmation_token() -> str:
    return secrets.token_urlsafe(24)


def verify_webhook_secret(provided: str | None, expected: str) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
