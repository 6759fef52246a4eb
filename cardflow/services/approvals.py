"""Admin decisions on pending card requests. Shared by the HTTP admin routes and the WhatsApp channel."""

from typing import Any

from cardflow.core.audit import AdminActor, log_admin_action
from cardflow.core.exceptions import ConflictError, NotFoundError
from cardflow.core.logging import get_logger
from cardflow.domain import events
from cardflow.domain.approval import can_approve_with_limit
from cardflow.domain.scoring import derive_tier
from cardflow.models.card import Card
from cardflow.models.card_request import AdminDecision, CardRequest
from cardflow.repositories.base import Repositories
from cardflow.services.idempotency import CommandResult, run_idempotent
from cardflow.services.users import get_user, refresh_card_summary

log = get_logger(__name__)

APPROVE_OPERATION = "admin-approve-card"
REJECT_OPERATION = "admin-reject-card"


async def _load_pending(repos: Repositories, user_id: str, request_id: str) -> CardRequest:
    request = await repos.card_requests.get(user_id, request_id)
    if not request:
        raise NotFoundError("Request not found", code="REQUEST_NOT_FOUND")
    if not request.is_pending:
        raise ConflictError(
            f"Request is not pending (status: {request.status})",
            code="REQUEST_NOT_PENDING",
            details={"request_id": request_id, "status": request.status},
        )
    return request


async def _close_tracker(repos: Repositories, request_id: str, outcome: str, phone: str | None) -> None:
    tracker = await repos.pending_approvals.get(request_id)
    if not tracker or tracker.is_terminal:
        return
    if outcome == "approved":
        tracker = tracker.mark_approved(phone)
    else:
        tracker = tracker.mark_rejected(phone)
    await repos.pending_approvals.save(tracker)


async def admin_approve(
    container,
    actor: AdminActor,
    user_id: str,
    request_id: str,
    limit: int,
    idempotency_key: str,
    reason: str | None = None,
    responder_phone: str | None = None,
) -> CommandResult:
    repos: Repositories = container.repos

    async def _execute() -> dict[str, Any]:
        user = await get_user(repos, user_id)
        request = await _load_pending(repos, user_id, request_id)
        check = can_approve_with_limit(request, limit, derive_tier(user.current_score))
        if not check.allowed:
            raise ConflictError(check.reason or "Limit exceeds policy", code="LIMIT_EXCEEDS_POLICY", details={"limit": limit})

        card = Card.new(user_id, limit, approved_by="admin", score_at_approval=user.current_score, admin_id=actor.admin_id)
        decision = AdminDecision(outcome="approved", admin_id=actor.admin_id, approved_limit=limit, reason=reason)
        approved = request.decide(decision, resulting_card_id=card.card_id)
        # conditional on the stored request still being pending
        await repos.card_requests.record_decision(approved)
        await repos.cards.insert(card)
        await refresh_card_summary(repos, user_id)
        await log_admin_action(
            repos,
            actor,
            "card_request.approved",
            "card-request",
            request_id,
            target_user_id=user_id,
            previous_value={"status": "pending"},
            new_value={"status": "approved", "limit": limit, "card_id": card.card_id},
            reason=reason or "Approved by admin",
        )
        await repos.outbox.append(events.card_approved(approved, card, decision))
        await _close_tracker(repos, request_id, "approved", responder_phone)
        log.info("card_request_approved", request_id=request_id, card_id=card.card_id, admin_id=actor.admin_id, limit=limit)
        return {
            "request_id": request_id,
            "status": "approved",
            "card_id": card.card_id,
            "limit": limit,
            "message": f"Card approved with ${limit} limit",
        }

    return await run_idempotent(repos, actor.admin_id, idempotency_key, APPROVE_OPERATION, _execute)


async def admin_reject(
    container,
    actor: AdminActor,
    user_id: str,
    request_id: str,
    idempotency_key: str,
    reason: str | None = None,
    responder_phone: str | None = None,
) -> CommandResult:
    repos: Repositories = container.repos
    reason = reason or "Rejected by admin"

    async def _execute() -> dict[str, Any]:
        await get_user(repos, user_id)
        request = await _load_pending(repos, user_id, request_id)
        decision = AdminDecision(outcome="rejected", admin_id=actor.admin_id, reason=reason)
        rejected = request.decide(decision)
        await repos.card_requests.record_decision(rejected)
        await log_admin_action(
            repos,
            actor,
            "card_request.rejected",
            "card-request",
            request_id,
            target_user_id=user_id,
            previous_value={"status": "pending"},
            new_value={"status": "rejected"},
            reason=reason,
        )
        await repos.outbox.append(events.card_rejected(rejected, decision))
        await _close_tracker(repos, request_id, "rejected", responder_phone)
        log.info("card_request_rejected", request_id=request_id, admin_id=actor.admin_id)
        return {"request_id": request_id, "status": "rejected", "reason": reason, "message": "Card request rejected"}

    return await run_idempotent(repos, actor.admin_id, idempotency_key, REJECT_OPERATION, _execute)


async def list_pending_requests(repos: Repositories, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
    """Admin queue, oldest first, with the requester's current standing."""
    items = []
    for request in await repos.card_requests.list_pending(limit=limit, offset=offset):
        user = await repos.users.get(request.user_id)
        item = request.model_dump(mode="json")
        item["short_id"] = request.short_id
        item["requires_attention"] = request.requires_attention()
        item["user"] = (
            {"email": user.email, "current_score": user.current_score, "tier": user.tier} if user else None
        )
        items.append(item)
    return items
