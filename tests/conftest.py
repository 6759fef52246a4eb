import itertools
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("REPOSITORY_BACKEND", "memory")
os.environ.setdefault("EVENT_PUBLISHER", "memory")

from cardflow.container import Container, build_container  # noqa: E402
from cardflow.core.config import Settings  # noqa: E402
from cardflow.core.exceptions import ExternalServiceError  # noqa: E402
from cardflow.core.security import issue_access_token  # noqa: E402
from cardflow.models.user import User  # noqa: E402
from cardflow.repositories.memory import build_memory_repositories  # noqa: E402
from cardflow.services.publisher import InMemoryEventPublisher  # noqa: E402
from cardflow.services.users import get_or_create_user  # noqa: E402
from cardflow.whatsapp.client import MessageSender  # noqa: E402

ADMIN_PHONE_1 = "5511987654321"
ADMIN_PHONE_2 = "5521976543210"
WEBHOOK_SECRET = "hook-secret"


class FakeSender(MessageSender):
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    async def send_message(self, phone: str, message: str) -> str:
        if self.fail:
            raise ExternalServiceError("WPP-Connect unreachable")
        self.sent.append((phone, message))
        return f"wpp-msg-{len(self.sent)}"

    async def check_connection(self) -> dict:
        return {"status": "CONNECTED"}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        SECRET_KEY="test-secret-key-min-32-characters-long",
        REPOSITORY_BACKEND="memory",
        EVENT_PUBLISHER="memory",
        WPP_BASE_URL="http://wpp.test",
        WPP_SECRET_KEY="wpp-secret",
        ADMIN_PHONE_1=ADMIN_PHONE_1,
        ADMIN_PHONE_2=ADMIN_PHONE_2,
        WEBHOOK_SECRET=WEBHOOK_SECRET,
        WHATSAPP_NOTIFICATIONS_ENABLED="true",
    )


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def container(settings: Settings, sender: FakeSender) -> Container:
    return build_container(
        settings,
        repos=build_memory_repositories(),
        publisher=InMemoryEventPublisher(),
        sender=sender,
    )


@pytest.fixture
def make_user(container: Container):
    """Factory: create a user with the given score (and role)."""
    counter = itertools.count(1)

    async def _make(score: int = 500, role: str = "user", email: str | None = None) -> User:
        uid = f"ext-{role}-{next(counter)}"
        user = await get_or_create_user(
            container.repos, {"uid": uid, "email": email or f"{uid}@example.com", "role": role}
        )
        if score != user.current_score:
            user = user.with_score(score)
            await container.repos.users.save(user)
        return user

    return _make


@pytest.fixture
def auth():
    """Build request headers carrying a bearer token for the user."""

    def _headers(user: User, **extra: str) -> dict[str, str]:
        token = issue_access_token({"uid": user.external_id, "email": user.email, "role": user.role})
        return {"Authorization": f"Bearer {token}", **extra}

    return _headers


@pytest_asyncio.fixture
async def client(container: Container) -> AsyncGenerator[AsyncClient, None]:
    from cardflow.deps import get_container
    from cardflow.main import app

    app.dependency_overrides[get_container] = lambda: container
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
