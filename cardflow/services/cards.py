"""Card requests (auto-approval path), card queries and cancellation."""

from datetime import datetime, timedelta
from typing import Any

from cardflow.core.exceptions import ConflictError, NotFoundError
from cardflow.core.logging import get_logger
from cardflow.domain import events
from cardflow.domain.approval import REJECTION_COOLDOWN_DAYS, can_request_card, determine_approval_outcome
from cardflow.models.card import Card
from cardflow.models.card_request import DEFAULT_PRODUCT_ID, AutoDecision, CardRequest
from cardflow.models.user import User
from cardflow.repositories.base import Repositories
from cardflow.services.idempotency import CommandResult, run_idempotent
from cardflow.services.users import refresh_card_summary
from cardflow.whatsapp.notifications import enqueue_card_request_notifications

log = get_logger(__name__)

REQUEST_CARD_OPERATION = "request-card"
CANCEL_CARD_OPERATION = "cancel-card"


async def request_card(
    container,
    user: User,
    idempotency_key: str,
    product_id: str = DEFAULT_PRODUCT_ID,
) -> CommandResult:
    async def _execute() -> dict[str, Any]:
        return await _submit_request(container, user, idempotency_key, product_id)

    return await run_idempotent(
        container.repos, user.user_id, idempotency_key, REQUEST_CARD_OPERATION, _execute, status_code=201
    )


async def _submit_request(container, user: User, idempotency_key: str, product_id: str) -> dict[str, Any]:
    repos: Repositories = container.repos
    now = datetime.utcnow()
    cards = await repos.cards.list_for_user(user.user_id)
    pending = await repos.card_requests.find_pending_for_user(user.user_id)
    rejected = await repos.card_requests.find_rejected_since(user.user_id, now - timedelta(days=REJECTION_COOLDOWN_DAYS))

    eligibility = can_request_card(user, cards, [pending] if pending else [], rejected, now=now)
    if not eligibility.allowed:
        details = {"days_remaining": eligibility.days_remaining} if eligibility.days_remaining else {}
        raise ConflictError(eligibility.reason or "Not eligible", code="NOT_ELIGIBLE", details=details)

    outcome = determine_approval_outcome(user.current_score)
    request = CardRequest(
        user_id=user.user_id,
        product_id=product_id,
        idempotency_key=idempotency_key,
        score_at_request=user.current_score,
        tier_at_request=user.tier,
    )

    if not outcome.approved:
        await repos.card_requests.insert(request)
        await repos.outbox.append(events.card_requested(request))
        await enqueue_card_request_notifications(container, request, user)
        log.info("card_request_created", request_id=request.request_id, user_id=user.user_id, tier=user.tier)
        return {
            "request_id": request.request_id,
            "status": "pending",
            "message": outcome.reason or "Request pending admin review",
        }

    card = Card.new(user.user_id, outcome.limit, approved_by="auto", score_at_approval=user.current_score)
    decision = AutoDecision(outcome="approved", approved_limit=outcome.limit)
    approved = request.decide(decision, resulting_card_id=card.card_id)
    # the card write enforces one active card per user; nothing else is written if it loses
    await repos.cards.insert(card)
    await repos.card_requests.insert(approved)
    await refresh_card_summary(repos, user.user_id)
    await repos.outbox.append(events.card_approved(approved, card, decision))
    log.info("card_auto_approved", request_id=approved.request_id, card_id=card.card_id, limit=card.limit)
    return {
        "request_id": approved.request_id,
        "status": "approved",
        "card_id": card.card_id,
        "limit": card.limit,
        "message": f"Card approved with ${card.limit} limit",
    }


async def get_card(repos: Repositories, user_id: str, card_id: str) -> Card:
    card = await repos.cards.get(user_id, card_id)
    if not card:
        raise NotFoundError("Card not found", code="CARD_NOT_FOUND")
    return card


def card_view(card: Card) -> dict[str, Any]:
    data = card.model_dump(mode="json")
    data["last4"] = card.last4
    return data


async def list_cards(repos: Repositories, user_id: str) -> list[dict[str, Any]]:
    return [card_view(c) for c in await repos.cards.list_for_user(user_id)]


async def cancel_card(
    container,
    user: User,
    card_id: str,
    idempotency_key: str,
    reason: str | None = None,
) -> CommandResult:
    repos: Repositories = container.repos

    async def _execute() -> dict[str, Any]:
        card = await get_card(repos, user.user_id, card_id)
        cancelled = card.transition("cancelled")
        await repos.cards.update(cancelled, expected_version=card.version)
        await refresh_card_summary(repos, user.user_id)
        await repos.outbox.append(
            events.card_cancelled(cancelled, card, reason or "Cancelled by user", requested_by="user")
        )
        log.info("card_cancelled", card_id=card_id, user_id=user.user_id)
        return {"card_id": card_id, "status": cancelled.status, "message": "Card cancelled"}

    return await run_idempotent(repos, user.user_id, idempotency_key, CANCEL_CARD_OPERATION, _execute)
