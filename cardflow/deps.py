"""Shared FastAPI dependencies."""

from fastapi import Depends, Header, Request
from fastapi.responses import ORJSONResponse

from cardflow.container import Container
from cardflow.core.audit import AdminActor
from cardflow.core.exceptions import ForbiddenError, UnauthorizedError
from cardflow.core.security import require_idempotency_key, verify_access_token
from cardflow.models.user import User
from cardflow.services.idempotency import CommandResult
from cardflow.services.users import get_or_create_user

REPLAY_HEADER = "Idempotent-Replayed"


def get_container(request: Request) -> Container:
    return request.app.state.container


async def get_current_user(request: Request, container: Container = Depends(get_container)) -> User:
    """Dependency: verify the bearer token and return (or provision) the User."""
    auth = request.headers.get("Authorization") or ""
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedError("Not authenticated")
    claims = verify_access_token(token.strip())
    if not claims:
        raise UnauthorizedError("Invalid or expired token")
    user = await get_or_create_user(container.repos, claims, container.settings.admin_emails)
    if user.status != "active":
        raise ForbiddenError("Account disabled")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise ForbiddenError("Admin only")
    return user


async def get_admin_actor(request: Request, admin: User = Depends(require_admin)) -> AdminActor:
    return AdminActor(
        admin_id=admin.user_id,
        email=admin.email,
        correlation_id=getattr(request.state, "request_id", None),
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


def get_idempotency_key(idempotency_key: str | None = Header(None, alias="Idempotency-Key")) -> str:
    return require_idempotency_key(idempotency_key)


def command_response(result: CommandResult) -> ORJSONResponse:
    """Render a command result; replays carry the cached body unchanged."""
    headers = {REPLAY_HEADER: "true"} if result.replayed else None
    return ORJSONResponse(status_code=result.status_code, content=result.response, headers=headers)
