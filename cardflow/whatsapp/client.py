"""WPP-Connect HTTP client: token management and message sending with retry."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

import httpx

from cardflow.core.exceptions import ExternalServiceError
from cardflow.core.logging import get_logger
from cardflow.whatsapp.config import WhatsAppConfig
from cardflow.whatsapp.phone import format_phone_for_display

log = get_logger(__name__)

TOKEN_TTL = timedelta(hours=23)


class WppConnectError(ExternalServiceError):
    def __init__(self, message: str, upstream_status: int | None = None, error_code: str | None = None):
        self.upstream_status = upstream_status
        self.error_code = error_code
        super().__init__(message, details={"upstream_status": upstream_status, "error_code": error_code})

    @property
    def retryable(self) -> bool:
        # 4xx other than an expired token will fail the same way again
        if self.upstream_status is None:
            return True
        return not (400 <= self.upstream_status < 500) or self.upstream_status == 401


class MessageSender(ABC):
    @abstractmethod
    async def send_message(self, phone: str, message: str) -> str:
        """Send a text message; return the transport message id."""
        ...

    @abstractmethod
    async def check_connection(self) -> dict[str, Any]:
        """Return session status, e.g. {"status": "CONNECTED"}."""
        ...


class WppClient(MessageSender):
    def __init__(
        self,
        config: WhatsAppConfig,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._token: str | None = None
        self._token_expires_at: datetime | None = None

    def _url(self, path: str) -> str:
        return f"{self.config.wpp_base_url}/api/{self.config.wpp_session_name}/{path}"

    async def _request(self, method: str, url: str, json: dict[str, Any] | None = None, token: str | None = None) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                return await client.request(method, url, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise WppConnectError(f"WPP-Connect unreachable: {e}") from e

    async def get_token(self) -> str:
        now = datetime.utcnow()
        if self._token and self._token_expires_at and now < self._token_expires_at:
            return self._token
        url = f"{self.config.wpp_base_url}/api/{self.config.wpp_session_name}/{self.config.wpp_secret_key}/generate-token"
        resp = await self._request("POST", url)
        if resp.status_code >= 400:
            raise WppConnectError(f"Failed to generate token: {resp.text}", resp.status_code)
        token = resp.json().get("token")
        if not token:
            raise WppConnectError("Token response missing token field")
        self._token = token
        self._token_expires_at = now + TOKEN_TTL
        return token

    def clear_token(self) -> None:
        self._token = None
        self._token_expires_at = None

    async def _with_retry(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        attempt = 0
        while True:
            try:
                return await operation()
            except WppConnectError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                log.warning("wpp_retry", attempt=attempt + 1, delay=delay, error=e.message)
                attempt += 1
                await self._sleep(delay)

    async def send_message(self, phone: str, message: str) -> str:
        async def _send() -> str:
            token = await self.get_token()
            resp = await self._request("POST", self._url("send-message"), json={"phone": phone, "message": message}, token=token)
            if resp.status_code == 401:
                self.clear_token()
                raise WppConnectError("Token expired", 401, "TOKEN_EXPIRED")
            if resp.status_code >= 400:
                try:
                    body = resp.json()
                except ValueError:
                    body = {}
                raise WppConnectError(body.get("message") or "Failed to send message", resp.status_code, body.get("error"))
            return _message_id(resp.json())

        message_id = await self._with_retry(_send)
        log.info("wpp_message_sent", phone=format_phone_for_display(phone), message_id=message_id)
        return message_id

    async def check_connection(self) -> dict[str, Any]:
        token = await self.get_token()
        resp = await self._request("GET", self._url("check-connection-session"), token=token)
        if resp.status_code >= 400:
            raise WppConnectError("Failed to check connection", resp.status_code)
        return resp.json()

    async def check_number_status(self, phone: str) -> dict[str, Any]:
        token = await self.get_token()
        resp = await self._request("POST", self._url("check-number-status"), json={"phone": phone}, token=token)
        if resp.status_code >= 400:
            raise WppConnectError("Failed to check number status", resp.status_code)
        return resp.json()

    async def start_session(self, webhook_url: str | None = None) -> dict[str, Any]:
        token = await self.get_token()
        body: dict[str, Any] = {"waitQrCode": True}
        if webhook_url:
            body["webhook"] = webhook_url
        resp = await self._request("POST", self._url("start-session"), json=body, token=token)
        if resp.status_code >= 400:
            raise WppConnectError("Failed to start session", resp.status_code)
        return resp.json()


def _message_id(data: dict[str, Any]) -> str:
    if data.get("id"):
        return str(data["id"])
    response = data.get("response")
    if isinstance(response, list) and response and isinstance(response[0], dict):
        return str(response[0].get("id", ""))
    if isinstance(response, dict) and response.get("id"):
        return str(response["id"])
    return ""
