from fastapi import APIRouter, Depends, Header, Request

from cardflow.container import Container
from cardflow.core.exceptions import ExternalServiceError, UnauthorizedError
from cardflow.core.logging import get_logger
from cardflow.core.security import verify_webhook_secret
from cardflow.deps import get_container
from cardflow.whatsapp.approvals import handle_inbound_webhook

router = APIRouter()
log = get_logger(__name__)


@router.post("/whatsapp")
async def whatsapp_webhook(
    request: Request,
    container: Container = Depends(get_container),
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
):
    """Inbound WPP-Connect events. Admin replies approve or reject pending card requests."""
    if not verify_webhook_secret(x_webhook_secret, container.whatsapp.webhook_secret):
        log.warning("webhook_auth_failed", client=request.client.host if request.client else None)
        raise UnauthorizedError("Invalid webhook secret")
    # the body is validated by the handler so malformed events are ignored, not rejected
    try:
        payload = await request.json()
    except ValueError:
        log.info("whatsapp_payload_not_json")
        return {"ok": True, "action": "ignored", "reason": "invalid_payload"}
    return await handle_inbound_webhook(container, payload)


@router.get("/whatsapp/health")
async def whatsapp_health(container: Container = Depends(get_container)):
    config = container.whatsapp
    if not config.enabled:
        return {"status": "disabled", "notifications_enabled": config.notifications_enabled}
    try:
        connection = await container.sender.check_connection()
    except ExternalServiceError as e:
        log.warning("wpp_health_check_failed", error=e.message)
        return {"status": "unavailable", "error": e.message}
    return {"status": "ok", "session": config.wpp_session_name, "connection": connection}
