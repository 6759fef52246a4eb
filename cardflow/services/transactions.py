"""Purchases and payments against a card, with version-checked balance writes."""

from datetime import datetime
from typing import Any, Awaitable, Callable

from cardflow.core.exceptions import BadRequestError, ConcurrencyError, ConflictError
from cardflow.core.logging import get_logger
from cardflow.domain import events
from cardflow.domain.payments import (
    apply_payment,
    apply_purchase,
    calculate_days_overdue,
    is_payment_on_time,
    validate_payment,
    validate_purchase,
)
from cardflow.domain.scoring import apply_score_delta, calculate_payment_score_impact
from cardflow.models.transaction import Transaction
from cardflow.models.user import User
from cardflow.repositories.base import Repositories
from cardflow.services.cards import get_card
from cardflow.services.idempotency import CommandResult, run_idempotent
from cardflow.services.users import apply_score_change, get_user, refresh_card_summary
from cardflow.whatsapp.notifications import enqueue_payment_notifications

log = get_logger(__name__)

PURCHASE_OPERATION = "make-purchase"
PAYMENT_OPERATION = "make-payment"
MAX_VERSION_RETRIES = 3


async def _with_version_retry(card_id: str, attempt_once: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
    """Re-read and retry when the card changed between read and write."""
    attempt = 1
    while True:
        try:
            return await attempt_once()
        except ConcurrencyError:
            if attempt >= MAX_VERSION_RETRIES:
                raise
            log.warning("card_version_conflict", card_id=card_id, attempt=attempt)
            attempt += 1


async def make_purchase(
    container,
    user: User,
    card_id: str,
    amount: float,
    merchant: str,
    idempotency_key: str,
) -> CommandResult:
    repos: Repositories = container.repos

    async def _attempt() -> dict[str, Any]:
        card = await get_card(repos, user.user_id, card_id)
        error = validate_purchase(amount, card)
        if error:
            await repos.transactions.insert(
                Transaction.failed(card_id, user.user_id, "purchase", amount, idempotency_key, error, merchant=merchant)
            )
            if card.status != "active":
                raise ConflictError(error, code="CARD_NOT_ACTIVE", details={"status": card.status})
            raise BadRequestError(error, code="INVALID_AMOUNT")

        updated = apply_purchase(card, amount)
        await repos.cards.update(updated, expected_version=card.version)
        transaction = Transaction.purchase(card_id, user.user_id, amount, merchant, idempotency_key)
        await repos.transactions.insert(transaction)
        await refresh_card_summary(repos, user.user_id)
        await repos.outbox.append(events.purchase_made(transaction, updated))
        log.info("purchase_completed", card_id=card_id, transaction_id=transaction.transaction_id, amount=amount)
        return {
            "transaction_id": transaction.transaction_id,
            "status": "completed",
            "new_balance": updated.balance,
            "new_available_credit": updated.available_credit,
            "minimum_payment": updated.minimum_payment,
            "message": f"Purchase of ${amount} at {merchant} completed",
        }

    async def _execute() -> dict[str, Any]:
        return await _with_version_retry(card_id, _attempt)

    return await run_idempotent(repos, user.user_id, idempotency_key, PURCHASE_OPERATION, _execute, status_code=201)


async def make_payment(
    container,
    user: User,
    card_id: str,
    amount: float,
    idempotency_key: str,
    paid_at: datetime | None = None,
) -> CommandResult:
    """Pay down the balance. paid_at overrides the payment date for simulations and tests."""
    repos: Repositories = container.repos
    state: dict[str, Any] = {}

    async def _attempt() -> dict[str, Any]:
        current_user = await get_user(repos, user.user_id)
        card = await get_card(repos, user.user_id, card_id)
        error = validate_payment(amount, card.balance)
        if error:
            await repos.transactions.insert(
                Transaction.failed(card_id, user.user_id, "payment", amount, idempotency_key, error)
            )
            raise BadRequestError(error, code="INVALID_AMOUNT")

        payment_date = paid_at or datetime.utcnow()
        on_time = is_payment_on_time(payment_date, card.next_due_date)
        days_overdue = calculate_days_overdue(payment_date, card.next_due_date)
        impact = calculate_payment_score_impact(amount, card.balance, on_time, days_overdue)
        new_score = apply_score_delta(current_user.current_score, impact.delta)

        updated = apply_payment(card, amount, paid_at=payment_date)
        await repos.cards.update(updated, expected_version=card.version)
        transaction = Transaction.payment(
            card_id,
            user.user_id,
            amount,
            idempotency_key,
            payment_status="on_time" if on_time else "late",
            score_impact=impact.delta,
            days_overdue=None if on_time else days_overdue,
        )
        await repos.transactions.insert(transaction)
        scored_user = await apply_score_change(
            repos,
            current_user,
            new_score,
            impact.reason,
            related_entity_type="transaction",
            related_entity_id=transaction.transaction_id,
        )
        await refresh_card_summary(repos, user.user_id)
        await repos.outbox.append(events.payment_made(transaction, updated, new_score))
        state.update(transaction=transaction, card=updated, user=scored_user)

        log.info(
            "payment_completed",
            card_id=card_id,
            transaction_id=transaction.transaction_id,
            amount=amount,
            payment_status=transaction.payment_status,
            score_impact=impact.delta,
        )
        if on_time:
            sign = "+" if impact.delta >= 0 else ""
            message = f"Payment of ${amount} processed. Score {sign}{impact.delta}"
        else:
            message = f"Late payment of ${amount} processed. Score {impact.delta}"
        return {
            "transaction_id": transaction.transaction_id,
            "status": "completed",
            "payment_status": transaction.payment_status,
            "new_balance": updated.balance,
            "new_available_credit": updated.available_credit,
            "new_score": new_score,
            "score_impact": impact.delta,
            "message": message,
        }

    async def _execute() -> dict[str, Any]:
        response = await _with_version_retry(card_id, _attempt)
        await enqueue_payment_notifications(container, state["transaction"], state["card"], state["user"])
        return response

    return await run_idempotent(repos, user.user_id, idempotency_key, PAYMENT_OPERATION, _execute)


async def list_transactions(
    repos: Repositories, user_id: str, card_id: str, limit: int = 50, offset: int = 0
) -> list[dict[str, Any]]:
    await get_card(repos, user_id, card_id)
    items = await repos.transactions.list_for_card(user_id, card_id, limit=limit, offset=offset)
    return [t.model_dump(mode="json") for t in items]
