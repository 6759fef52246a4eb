from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found", code: str = "NOT_FOUND"):
        super().__init__(message, code=code, status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(
        self,
        message: str = "Conflict",
        code: str = "CONFLICT",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=code, status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(
        self,
        message: str = "Bad request",
        code: str = "BAD_REQUEST",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=code, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class ExternalServiceError(AppError):
    """Messaging transport, event stream or storage unavailable after retries."""

    def __init__(self, message: str = "External service unavailable", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="EXTERNAL_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
        )


class InternalError(AppError):
    """Invariant violated after a write. A bug, never retried."""

    def __init__(self, message: str = "Internal error", details: dict[str, Any] | None = None):
        super().__init__(message, code="INTERNAL_ERROR", details=details)


class ConcurrencyError(ConflictError):
    """Card version moved between read and conditional write."""

    def __init__(self, card_id: str, expected_version: int, actual_version: int | None):
        self.card_id = card_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Card {card_id} was modified concurrently",
            code="CONCURRENCY_CONFLICT",
            details={"card_id": card_id, "expected_version": expected_version, "actual_version": actual_version},
        )


class ActiveCardExistsError(ConflictError):
    """A second active card for the same user was about to be written."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(
            "User already has an active credit card",
            code="NOT_ELIGIBLE",
            details={"user_id": user_id},
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    if isinstance(exc, InternalError):
        from cardflow.core.logging import get_logger
        get_logger(__name__).error("invariant_violation", message=exc.message, details=exc.details)
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from cardflow.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
