"""Purchases and payments through the service layer."""

from datetime import timedelta

import pytest

from cardflow.core.exceptions import BadRequestError, ConcurrencyError, ConflictError, NotFoundError
from cardflow.services.cards import cancel_card, request_card
from cardflow.services.transactions import list_transactions, make_payment, make_purchase

pytestmark = pytest.mark.asyncio


@pytest.fixture
def card_holder(container, make_user):
    async def _make(score: int = 750):
        user = await make_user(score=score)
        card_id = (await request_card(container, user, "req-1")).response["card_id"]
        return user, card_id

    return _make


async def test_purchase_reduces_available_credit(container, card_holder):
    user, card_id = await card_holder()
    result = await make_purchase(container, user, card_id, 250.0, "Coffee Shop", "p-1")

    assert result.status_code == 201
    assert result.response["new_balance"] == 250.0
    assert result.response["new_available_credit"] == 9750.0
    card = await container.repos.cards.get(user.user_id, card_id)
    assert card.balance == 250.0
    assert card.version == 2

    events = await container.repos.outbox.list_undelivered(limit=100)
    assert [e.event_type for e in events if e.entity_type == "transaction"] == ["transaction.purchase"]


async def test_purchase_over_limit_records_failed_transaction(container, card_holder):
    user, card_id = await card_holder()
    with pytest.raises(BadRequestError) as exc:
        await make_purchase(container, user, card_id, 20000.0, "Jeweller", "p-1")
    assert exc.value.code == "INVALID_AMOUNT"

    rows = await list_transactions(container.repos, user.user_id, card_id)
    assert len(rows) == 1
    assert rows[0]["status"] == "failed"
    assert "exceeds available credit" in rows[0]["failure_reason"]
    card = await container.repos.cards.get(user.user_id, card_id)
    assert card.balance == 0


async def test_purchase_on_cancelled_card(container, card_holder):
    user, card_id = await card_holder()
    await cancel_card(container, user, card_id, "c-1")
    with pytest.raises(ConflictError) as exc:
        await make_purchase(container, user, card_id, 10.0, "Shop", "p-1")
    assert exc.value.code == "CARD_NOT_ACTIVE"


async def test_purchase_replay_does_not_charge_twice(container, card_holder):
    user, card_id = await card_holder()
    first = await make_purchase(container, user, card_id, 100.0, "Shop", "p-1")
    second = await make_purchase(container, user, card_id, 100.0, "Shop", "p-1")
    assert second.replayed
    assert second.response == first.response
    card = await container.repos.cards.get(user.user_id, card_id)
    assert card.balance == 100.0


async def test_purchase_retries_on_version_conflict(container, card_holder, monkeypatch):
    user, card_id = await card_holder()
    real_update = container.repos.cards.update
    calls = []

    async def flaky_update(card, expected_version):
        calls.append(expected_version)
        if len(calls) == 1:
            raise ConcurrencyError(card.card_id, expected_version, expected_version + 1)
        await real_update(card, expected_version)

    monkeypatch.setattr(container.repos.cards, "update", flaky_update)
    result = await make_purchase(container, user, card_id, 50.0, "Shop", "p-1")
    assert len(calls) == 2
    assert result.response["new_balance"] == 50.0


async def test_purchase_gives_up_after_repeated_conflicts(container, card_holder, monkeypatch):
    user, card_id = await card_holder()

    async def always_conflict(card, expected_version):
        raise ConcurrencyError(card.card_id, expected_version, expected_version + 1)

    monkeypatch.setattr(container.repos.cards, "update", always_conflict)
    with pytest.raises(ConcurrencyError):
        await make_purchase(container, user, card_id, 50.0, "Shop", "p-1")


async def test_on_time_payment_raises_score(container, card_holder):
    user, card_id = await card_holder(score=750)
    await make_purchase(container, user, card_id, 1000.0, "Shop", "p-1")

    result = await make_payment(container, user, card_id, 500.0, "pay-1")
    assert result.response["payment_status"] == "on_time"
    assert result.response["score_impact"] == 30
    assert result.response["new_score"] == 780
    assert result.response["new_balance"] == 500.0

    refreshed = await container.repos.users.get(user.user_id)
    assert refreshed.current_score == 780
    history = await container.repos.scores.list_for_user(user.user_id)
    assert history[0].reason == "payment_on_time"
    assert history[0].delta == 30
    events = await container.repos.outbox.list_for_entity("score", user.user_id)
    assert events[-1].event_type == "score.changed"
    assert events[-1].payload["new_score"] == 780

    # one payment notice per admin phone
    tx_id = result.response["transaction_id"]
    assert len(await container.repos.notifications.list_for_entity(tx_id)) == 2


async def test_late_payment_penalty_can_drop_tier(container, card_holder):
    user, card_id = await card_holder(score=720)
    await make_purchase(container, user, card_id, 1000.0, "Shop", "p-1")
    card = await container.repos.cards.get(user.user_id, card_id)

    result = await make_payment(
        container, user, card_id, 100.0, "pay-1", paid_at=card.next_due_date + timedelta(days=10)
    )
    assert result.response["payment_status"] == "late"
    assert result.response["score_impact"] == -50
    assert result.response["new_score"] == 670

    refreshed = await container.repos.users.get(user.user_id)
    assert refreshed.tier == "medium"
    rows = await list_transactions(container.repos, user.user_id, card_id)
    payment = next(r for r in rows if r["type"] == "payment")
    assert payment["days_overdue"] == 10


async def test_payment_without_balance_is_rejected(container, card_holder):
    user, card_id = await card_holder()
    with pytest.raises(BadRequestError) as exc:
        await make_payment(container, user, card_id, 10.0, "pay-1")
    assert exc.value.code == "INVALID_AMOUNT"
    refreshed = await container.repos.users.get(user.user_id)
    assert refreshed.current_score == 750


async def test_unknown_card(container, make_user):
    user = await make_user()
    with pytest.raises(NotFoundError) as exc:
        await make_purchase(container, user, "missing", 10.0, "Shop", "p-1")
    assert exc.value.code == "CARD_NOT_FOUND"
