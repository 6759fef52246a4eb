"""WPP-Connect client against a scripted httpx transport."""

import httpx
import pytest

from cardflow.whatsapp import client as client_module
from cardflow.whatsapp.client import WppClient, WppConnectError
from cardflow.whatsapp.config import WhatsAppConfig

pytestmark = pytest.mark.asyncio


class FakeResponse:
    def __init__(self, status_code: int, data: dict | None = None, text: str = ""):
        self.status_code = status_code
        self._data = data or {}
        self.text = text or str(self._data)

    def json(self):
        return self._data


class FakeAsyncClient:
    """Replays queued responses; records every request."""

    calls: list[tuple[str, str, dict | None, dict]] = []
    responses: list = []

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def request(self, method, url, json=None, headers=None):
        FakeAsyncClient.calls.append((method, url, json, headers or {}))
        response = FakeAsyncClient.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def http(monkeypatch):
    FakeAsyncClient.calls = []
    FakeAsyncClient.responses = []
    monkeypatch.setattr(client_module.httpx, "AsyncClient", FakeAsyncClient)
    return FakeAsyncClient


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def wpp(sleeps):
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    config = WhatsAppConfig(
        wpp_base_url="http://wpp.test",
        wpp_secret_key="s3cret",
        wpp_session_name="acme",
        admin_phone_1="5511987654321",
        admin_phone_2="",
        webhook_secret="hook",
        notifications_enabled=True,
    )
    return WppClient(config, sleep=fake_sleep)


def _token(value: str = "tok-1") -> FakeResponse:
    return FakeResponse(201, {"status": "success", "token": value})


async def test_send_message_generates_and_caches_token(http, wpp):
    http.responses = [_token(), FakeResponse(201, {"response": [{"id": "true_55@c.us_A"}]}), FakeResponse(201, {"id": "B"})]

    assert await wpp.send_message("5511987654321", "hi") == "true_55@c.us_A"
    assert await wpp.send_message("5511987654321", "again") == "B"

    methods_urls = [(m, u) for m, u, _, _ in http.calls]
    assert methods_urls == [
        ("POST", "http://wpp.test/api/acme/s3cret/generate-token"),
        ("POST", "http://wpp.test/api/acme/send-message"),
        ("POST", "http://wpp.test/api/acme/send-message"),
    ]
    _, _, body, headers = http.calls[1]
    assert body == {"phone": "5511987654321", "message": "hi"}
    assert headers["Authorization"] == "Bearer tok-1"


async def test_expired_token_is_refreshed(http, wpp, sleeps):
    http.responses = [
        _token("old"),
        FakeResponse(401, {"message": "Unauthorized"}),
        _token("new"),
        FakeResponse(201, {"id": "C"}),
    ]
    assert await wpp.send_message("5511987654321", "hi") == "C"
    assert http.calls[-1][3]["Authorization"] == "Bearer new"
    assert sleeps == [1.0]


async def test_client_errors_are_not_retried(http, wpp, sleeps):
    http.responses = [_token(), FakeResponse(400, {"message": "Invalid phone", "error": "BAD_PHONE"})]
    with pytest.raises(WppConnectError) as exc:
        await wpp.send_message("55", "hi")
    assert exc.value.upstream_status == 400
    assert exc.value.error_code == "BAD_PHONE"
    assert not exc.value.retryable
    assert sleeps == []


async def test_server_errors_back_off_then_give_up(http, wpp, sleeps):
    http.responses = [_token()] + [FakeResponse(500, {"message": "boom"}) for _ in range(4)]
    with pytest.raises(WppConnectError) as exc:
        await wpp.send_message("5511987654321", "hi")
    assert exc.value.code == "EXTERNAL_UNAVAILABLE"
    assert sleeps == [1.0, 2.0, 4.0]


async def test_network_errors_are_wrapped(http, wpp, sleeps):
    http.responses = [httpx.ConnectError("refused") for _ in range(4)]
    with pytest.raises(WppConnectError) as exc:
        await wpp.send_message("5511987654321", "hi")
    assert "unreachable" in exc.value.message
    assert len(sleeps) == 3


async def test_token_response_without_token(http, wpp):
    http.responses = [FakeResponse(201, {"status": "error"})]
    with pytest.raises(WppConnectError):
        await wpp.get_token()


async def test_check_connection(http, wpp):
    http.responses = [_token(), FakeResponse(200, {"status": True, "message": "Connected"})]
    assert await wpp.check_connection() == {"status": True, "message": "Connected"}
    assert http.calls[-1][:2] == ("GET", "http://wpp.test/api/acme/check-connection-session")


async def test_start_session_registers_webhook(http, wpp):
    http.responses = [_token(), FakeResponse(201, {"status": "QRCODE"})]
    await wpp.start_session(webhook_url="https://api.example.com/v1/webhooks/whatsapp")
    assert http.calls[-1][2] == {"waitQrCode": True, "webhook": "https://api.example.com/v1/webhooks/whatsapp"}
