"""Outbox event builders. Sequence numbers are left at 0 for the repository to allocate."""

from datetime import datetime
from typing import Any

from cardflow.domain.scoring import derive_tier
from cardflow.models.card import Card
from cardflow.models.card_request import AdminDecision, AutoDecision, CardRequest
from cardflow.models.outbox_event import OutboxEvent
from cardflow.models.transaction import Transaction
from cardflow.models.user import User

SYSTEM_OWNER = "system"


def _event(event_type: str, entity_type: str, entity_id: str, owner_id: str, payload: dict[str, Any]) -> OutboxEvent:
    # None values are dropped so payloads stay stable across backends
    return OutboxEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        owner_id=owner_id,
        payload={k: v for k, v in payload.items() if v is not None},
    )


def user_created(user: User) -> OutboxEvent:
    return _event(
        "user.created",
        "user",
        user.user_id,
        user.user_id,
        {
            "user_id": user.user_id,
            "external_id": user.external_id,
            "email": user.email,
            "role": user.role,
            "initial_score": user.current_score,
            "tier": user.tier,
        },
    )


def score_changed(
    user_id: str,
    previous_score: int,
    new_score: int,
    reason: str,
    source: str,
    admin_id: str | None = None,
    related_entity_type: str | None = None,
    related_entity_id: str | None = None,
) -> OutboxEvent:
    return _event(
        "score.changed",
        "score",
        user_id,
        user_id,
        {
            "user_id": user_id,
            "previous_score": previous_score,
            "new_score": new_score,
            "delta": new_score - previous_score,
            "previous_tier": derive_tier(previous_score),
            "new_tier": derive_tier(new_score),
            "reason": reason,
            "source": source,
            "admin_id": admin_id,
            "related_entity_type": related_entity_type,
            "related_entity_id": related_entity_id,
        },
    )


def card_requested(request: CardRequest) -> OutboxEvent:
    return _event(
        "card.requested",
        "cardRequest",
        request.request_id,
        request.user_id,
        {
            "request_id": request.request_id,
            "user_id": request.user_id,
            "product_id": request.product_id,
            "score_at_request": request.score_at_request,
            "tier_at_request": request.tier_at_request,
            "idempotency_key": request.idempotency_key,
        },
    )


def card_approved(request: CardRequest, card: Card, decision: AutoDecision | AdminDecision) -> OutboxEvent:
    return _event(
        "card.approved",
        "card",
        card.card_id,
        request.user_id,
        {
            "request_id": request.request_id,
            "card_id": card.card_id,
            "user_id": request.user_id,
            "product_id": request.product_id,
            "approved_limit": card.limit,
            "source": decision.source,
            "admin_id": getattr(decision, "admin_id", None),
            "score_at_approval": card.score_at_approval,
            "tier_at_approval": derive_tier(card.score_at_approval),
        },
    )


def card_rejected(request: CardRequest, decision: AutoDecision | AdminDecision) -> OutboxEvent:
    return _event(
        "card.rejected",
        "cardRequest",
        request.request_id,
        request.user_id,
        {
            "request_id": request.request_id,
            "user_id": request.user_id,
            "product_id": request.product_id,
            "reason": decision.reason or "Request rejected",
            "source": decision.source,
            "admin_id": getattr(decision, "admin_id", None),
            "score_at_request": request.score_at_request,
        },
    )


def card_cancelled(card: Card, previous: Card, reason: str, requested_by: str, admin_id: str | None = None) -> OutboxEvent:
    return _event(
        "card.cancelled",
        "card",
        card.card_id,
        card.user_id,
        {
            "card_id": card.card_id,
            "user_id": card.user_id,
            "reason": reason,
            "requested_by": requested_by,
            "admin_id": admin_id,
            "previous_status": previous.status,
            "final_balance": card.balance,
        },
    )


def purchase_made(transaction: Transaction, card: Card) -> OutboxEvent:
    return _event(
        "transaction.purchase",
        "transaction",
        transaction.transaction_id,
        card.user_id,
        {
            "transaction_id": transaction.transaction_id,
            "card_id": card.card_id,
            "user_id": card.user_id,
            "amount": transaction.amount,
            "merchant": transaction.merchant or "Unknown",
            "new_balance": card.balance,
            "new_available_credit": card.available_credit,
            "idempotency_key": transaction.idempotency_key,
        },
    )


def payment_made(transaction: Transaction, card: Card, new_score: int) -> OutboxEvent:
    return _event(
        "transaction.payment",
        "transaction",
        transaction.transaction_id,
        card.user_id,
        {
            "transaction_id": transaction.transaction_id,
            "card_id": card.card_id,
            "user_id": card.user_id,
            "amount": transaction.amount,
            "payment_status": transaction.payment_status or "on_time",
            "days_overdue": transaction.days_overdue,
            "score_impact": transaction.score_impact or 0,
            "new_balance": card.balance,
            "new_available_credit": card.available_credit,
            "new_score": new_score,
            "new_tier": derive_tier(new_score),
            "idempotency_key": transaction.idempotency_key,
        },
    )


def system_cleanup(admin_id: str, admin_email: str, deleted_counts: dict[str, int]) -> OutboxEvent:
    return _event(
        "system.cleanup",
        "system",
        "cleanup",
        SYSTEM_OWNER,
        {
            "admin_id": admin_id,
            "admin_email": admin_email,
            "deleted_counts": deleted_counts,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
