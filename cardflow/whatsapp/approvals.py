"""Inbound admin replies from WPP-Connect and expiry of unanswered approvals."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cardflow.core.audit import SYSTEM_ACTOR, AdminActor
from cardflow.core.exceptions import AppError, ConflictError
from cardflow.core.logging import get_logger
from cardflow.domain.approval import default_remote_limit
from cardflow.models.pending_approval import PendingApproval
from cardflow.models.whatsapp import ParsedCommand, WhatsAppInboundMessage
from cardflow.services.approvals import admin_approve, admin_reject
from cardflow.whatsapp.parser import parse_command
from cardflow.whatsapp.phone import (
    InvalidPhoneError,
    extract_phone_from_wpp_id,
    format_phone_for_display,
    is_whitelisted_admin,
)

log = get_logger(__name__)

MESSAGE_EVENT = "onmessage"
EXPIRY_REASON = "Approval request expired after 24 hours without response"


class WppSender(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str | None = None
    pushname: str | None = None


class WppMessageData(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = ""
    from_: str = Field(default="", alias="from")
    to: str = ""
    body: str = ""
    from_me: bool = Field(default=False, alias="fromMe")
    is_group_msg: bool = Field(default=False, alias="isGroupMsg")
    sender: WppSender | None = None
    type: str = "chat"

    @field_validator("id", mode="before")
    @classmethod
    def _serialized_id(cls, v):
        # WPP sometimes sends the id as {"_serialized": "..."}
        if isinstance(v, dict):
            return str(v.get("_serialized") or v.get("id") or "")
        return "" if v is None else str(v)

    @field_validator("body", mode="before")
    @classmethod
    def _body_text(cls, v):
        return "" if v is None else str(v)

    @property
    def sender_label(self) -> str | None:
        if not self.sender:
            return None
        return self.sender.pushname or self.sender.name


class WppWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str = ""
    session: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


def _result(action: str, ok: bool = True, request_id: str | None = None, reason: str | None = None, error: str | None = None) -> dict[str, Any]:
    out: dict[str, Any] = {"ok": ok, "action": action}
    if request_id:
        out["requestId"] = request_id
    if reason:
        out["reason"] = reason
    if error:
        out["error"] = error
    return out


async def _record_inbound(
    container,
    data: WppMessageData,
    phone: str,
    whitelisted: bool,
    status: str,
    action: str,
    command: ParsedCommand | None = None,
    tracker: PendingApproval | None = None,
    error: str | None = None,
) -> None:
    message = WhatsAppInboundMessage(
        wpp_message_id=data.id,
        sender_phone=phone,
        sender_name=data.sender_label,
        is_from_whitelisted_admin=whitelisted,
        raw_body=data.body,
        parsed_command=command,
        processed_status=status,
        processed_action=action,
        processing_error=error,
        related_request_id=tracker.request_id if tracker else None,
        related_user_id=tracker.user_id if tracker else None,
        processed_at=datetime.utcnow(),
    )
    await container.repos.inbound_messages.save(message)


async def resolve_tracker(container, reference: str) -> tuple[PendingApproval | None, str | None]:
    """Find the tracker for a full request id or an 8-character short id. Returns (tracker, failure reason)."""
    repos = container.repos
    tracker = await repos.pending_approvals.get(reference)
    if tracker:
        return tracker, None
    matches = await repos.pending_approvals.find_by_short_id(reference.upper())
    if not matches:
        return None, "request_not_found"
    if len(matches) == 1:
        return matches[0], None
    open_trackers = [t for t in matches if not t.is_terminal]
    if len(open_trackers) == 1:
        return open_trackers[0], None
    if len(open_trackers) > 1:
        return None, "ambiguous_request_id"
    return max(matches, key=lambda t: t.created_at), None


async def handle_inbound_webhook(container, payload: Any) -> dict[str, Any]:
    """Turn an admin reply into an approve/reject. Bad input is ignored with a reason, never raised.

    `payload` may be the raw decoded JSON body; anything that does not fit the WPP shape is ignored.
    """
    try:
        if not isinstance(payload, WppWebhookPayload):
            payload = WppWebhookPayload.model_validate(payload)
        if payload.event != MESSAGE_EVENT:
            return _result("ignored", reason="non_message_event")
        data = WppMessageData.model_validate(payload.data)
    except ValidationError as e:
        log.info("whatsapp_payload_invalid", errors=e.error_count())
        return _result("ignored", reason="invalid_payload")
    if data.from_me:
        return _result("ignored", reason="from_self")
    if data.is_group_msg:
        return _result("ignored", reason="group_message")

    try:
        phone = extract_phone_from_wpp_id(data.from_)
    except InvalidPhoneError:
        return _result("ignored", reason="not_whitelisted")
    if not is_whitelisted_admin(phone, container.whatsapp.admin_phones):
        await _record_inbound(container, data, phone, False, "ignored", "not_whitelisted")
        log.info("whatsapp_sender_not_whitelisted", phone=format_phone_for_display(phone))
        return _result("ignored", reason="not_whitelisted")

    command = parse_command(data.body)
    if not command.is_valid:
        await _record_inbound(container, data, phone, True, "ignored", "invalid_command", command)
        return _result("ignored", reason="invalid_command")

    tracker, failure = await resolve_tracker(container, command.request_id)
    if tracker is None:
        await _record_inbound(container, data, phone, True, "processed", failure, command)
        return _result("ignored", reason=failure)

    request = await container.repos.card_requests.get(tracker.user_id, tracker.request_id)
    if request is None:
        await _record_inbound(container, data, phone, True, "processed", "request_not_found", command, tracker)
        return _result("ignored", reason="request_not_found")
    if not request.is_pending:
        await _record_inbound(container, data, phone, True, "processed", "already_processed", command, tracker)
        return _result("ignored", request_id=request.request_id, reason="already_processed")

    sender_label = data.sender_label
    actor = AdminActor(admin_id=phone, email=f"whatsapp:{phone}", correlation_id=data.id or None)
    key = f"wpp:{data.id}" if data.id else f"wpp:{command.action}:{request.request_id}"
    try:
        if command.action == "approve":
            await admin_approve(
                container,
                actor,
                request.user_id,
                request.request_id,
                default_remote_limit(request.tier_at_request),
                idempotency_key=key,
                reason=f"Approved via WhatsApp by {sender_label or phone}",
                responder_phone=phone,
            )
            action = "approved"
        else:
            await admin_reject(
                container,
                actor,
                request.user_id,
                request.request_id,
                idempotency_key=key,
                reason=f"Rejected via WhatsApp by {sender_label or phone}",
                responder_phone=phone,
            )
            action = "rejected"
    except ConflictError as e:
        if e.code != "REQUEST_NOT_PENDING":
            await _record_inbound(container, data, phone, True, "error", "error", command, tracker, e.message)
            return _result("error", ok=False, request_id=request.request_id, error=e.message)
        # another admin decided between our read and write
        await _record_inbound(container, data, phone, True, "processed", "already_processed", command, tracker)
        return _result("ignored", request_id=request.request_id, reason="already_processed")
    except AppError as e:
        await _record_inbound(container, data, phone, True, "error", "error", command, tracker, e.message)
        return _result("error", ok=False, request_id=request.request_id, error=e.message)
    except Exception as e:
        log.exception("whatsapp_approval_failed", request_id=request.request_id)
        await _record_inbound(container, data, phone, True, "error", "error", command, tracker, str(e)[:500])
        return _result("error", ok=False, request_id=request.request_id, error="Internal error")

    await _record_inbound(container, data, phone, True, "processed", action, command, tracker)
    log.info("whatsapp_command_processed", action=action, request_id=request.request_id, phone=format_phone_for_display(phone))
    return _result(action, request_id=request.request_id)


async def expire_pending_approvals(container, now: datetime | None = None, limit: int = 100) -> dict[str, int]:
    """Reject requests whose tracker ran out of time and mark the trackers expired."""
    now = now or datetime.utcnow()
    repos = container.repos
    report = {"expired": 0, "rejected": 0}
    for tracker in await repos.pending_approvals.find_expired(now, limit=limit):
        await repos.pending_approvals.save(tracker.mark_expired())
        report["expired"] += 1
        request = await repos.card_requests.get(tracker.user_id, tracker.request_id)
        if request is None or not request.is_pending:
            continue
        try:
            await admin_reject(
                container,
                SYSTEM_ACTOR,
                tracker.user_id,
                tracker.request_id,
                idempotency_key=f"expire:{tracker.request_id}",
                reason=EXPIRY_REASON,
            )
        except ConflictError as e:
            if e.code != "REQUEST_NOT_PENDING":
                raise
            continue
        report["rejected"] += 1
        log.info("card_request_expired", request_id=tracker.request_id, user_id=tracker.user_id)
    return report
