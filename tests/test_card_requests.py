"""Card request lifecycle through the service layer."""

import asyncio
from dataclasses import replace

import pytest

from cardflow.core.audit import AdminActor
from cardflow.core.exceptions import ConflictError, NotFoundError
from cardflow.models.card import Card
from cardflow.repositories.memory import MemoryCardRepository
from cardflow.services.approvals import admin_approve, admin_reject, list_pending_requests
from cardflow.services.cards import cancel_card, request_card

pytestmark = pytest.mark.asyncio

ADMIN = AdminActor(admin_id="admin-1", email="admin@example.com")


async def _events(container, event_type):
    events = await container.repos.outbox.list_undelivered(limit=1000)
    return [e for e in events if e.event_type == event_type]


async def test_high_score_is_auto_approved(container, make_user):
    user = await make_user(score=750)
    result = await request_card(container, user, "req-1")

    assert result.status_code == 201
    assert result.response["status"] == "approved"
    assert result.response["limit"] == 10000
    cards = await container.repos.cards.list_for_user(user.user_id)
    assert len(cards) == 1
    assert cards[0].approved_by == "auto"
    assert cards[0].available_credit == 10000
    assert len(await _events(container, "card.approved")) == 1
    assert await _events(container, "card.requested") == []

    refreshed = await container.repos.users.get(user.user_id)
    assert refreshed.card_summary.active_cards == 1
    assert refreshed.card_summary.total_limit == 10000


async def test_medium_score_gets_medium_limit(container, make_user):
    user = await make_user(score=500)
    result = await request_card(container, user, "req-1")
    assert result.response["limit"] == 5000


async def test_low_score_goes_to_review_and_notifies_admins(container, make_user):
    user = await make_user(score=400)
    result = await request_card(container, user, "req-1")

    assert result.response["status"] == "pending"
    assert await container.repos.cards.list_for_user(user.user_id) == []
    assert len(await _events(container, "card.requested")) == 1

    request_id = result.response["request_id"]
    tracker = await container.repos.pending_approvals.get(request_id)
    assert tracker is not None
    assert tracker.short_id == request_id[:8].upper()
    notifications = await container.repos.notifications.list_for_entity(request_id)
    assert len(notifications) == 2
    assert sorted(n.notification_id for n in notifications) == sorted(tracker.notification_ids)
    assert f"y {tracker.short_id}" in notifications[0].message_content


async def test_no_notifications_when_channel_disabled(container, make_user):
    container.whatsapp = replace(container.whatsapp, notifications_enabled=False)
    user = await make_user(score=400)
    result = await request_card(container, user, "req-1")
    request_id = result.response["request_id"]
    assert await container.repos.pending_approvals.get(request_id) is None
    assert await container.repos.notifications.list_for_entity(request_id) == []


async def test_replay_returns_same_response_without_new_events(container, make_user):
    user = await make_user(score=750)
    first = await request_card(container, user, "req-1")
    events_before = len(await container.repos.outbox.list_undelivered(limit=1000))

    second = await request_card(container, user, "req-1")
    assert second.replayed
    assert second.response == first.response
    assert len(await container.repos.outbox.list_undelivered(limit=1000)) == events_before
    assert len(await container.repos.cards.list_for_user(user.user_id)) == 1


async def test_second_request_while_pending_is_not_eligible(container, make_user):
    user = await make_user(score=400)
    await request_card(container, user, "req-1")
    with pytest.raises(ConflictError) as exc:
        await request_card(container, user, "req-2")
    assert exc.value.code == "NOT_ELIGIBLE"


async def test_second_request_with_active_card_is_not_eligible(container, make_user):
    user = await make_user(score=750)
    await request_card(container, user, "req-1")
    with pytest.raises(ConflictError) as exc:
        await request_card(container, user, "req-2")
    assert exc.value.code == "NOT_ELIGIBLE"


async def test_admin_approve_creates_card_and_closes_tracker(container, make_user):
    user = await make_user(score=400)
    request_id = (await request_card(container, user, "req-1")).response["request_id"]

    result = await admin_approve(container, ADMIN, user.user_id, request_id, 500, "approve-1")
    assert result.response["status"] == "approved"

    cards = await container.repos.cards.list_for_user(user.user_id)
    assert len(cards) == 1
    assert cards[0].limit == 500
    assert cards[0].approved_by == "admin"
    assert cards[0].approved_by_admin_id == "admin-1"

    request = await container.repos.card_requests.get(user.user_id, request_id)
    assert request.status == "approved"
    assert request.decision.source == "admin"
    assert request.resulting_card_id == cards[0].card_id

    tracker = await container.repos.pending_approvals.get(request_id)
    assert tracker.approval_status == "approved"

    audit = await container.repos.audit_logs.list_for_target_user(user.user_id)
    assert [a.action for a in audit] == ["card_request.approved"]
    assert len(await _events(container, "card.approved")) == 1


async def test_second_approval_is_rejected(container, make_user):
    user = await make_user(score=400)
    request_id = (await request_card(container, user, "req-1")).response["request_id"]
    await admin_approve(container, ADMIN, user.user_id, request_id, 500, "approve-1")

    with pytest.raises(ConflictError) as exc:
        await admin_approve(container, ADMIN, user.user_id, request_id, 500, "approve-2")
    assert exc.value.code == "REQUEST_NOT_PENDING"
    assert len(await container.repos.cards.list_for_user(user.user_id)) == 1


async def test_approval_limit_must_fit_tier(container, make_user):
    user = await make_user(score=400)
    request_id = (await request_card(container, user, "req-1")).response["request_id"]
    with pytest.raises(ConflictError) as exc:
        await admin_approve(container, ADMIN, user.user_id, request_id, 5000, "approve-1")
    assert exc.value.code == "LIMIT_EXCEEDS_POLICY"
    request = await container.repos.card_requests.get(user.user_id, request_id)
    assert request.is_pending


async def test_reject_then_cooldown(container, make_user):
    user = await make_user(score=400)
    request_id = (await request_card(container, user, "req-1")).response["request_id"]
    result = await admin_reject(container, ADMIN, user.user_id, request_id, "reject-1", reason="Too risky")
    assert result.response == {
        "request_id": request_id,
        "status": "rejected",
        "reason": "Too risky",
        "message": "Card request rejected",
    }
    assert len(await _events(container, "card.rejected")) == 1
    assert (await container.repos.pending_approvals.get(request_id)).approval_status == "rejected"

    with pytest.raises(ConflictError) as exc:
        await request_card(container, user, "req-2")
    assert exc.value.code == "NOT_ELIGIBLE"
    assert exc.value.details["days_remaining"] == 30


async def test_unknown_request_is_not_found(container, make_user):
    user = await make_user(score=400)
    with pytest.raises(NotFoundError) as exc:
        await admin_reject(container, ADMIN, user.user_id, "missing", "reject-1")
    assert exc.value.code == "REQUEST_NOT_FOUND"


async def test_pending_queue_includes_user_standing(container, make_user):
    user = await make_user(score=400, email="low@example.com")
    request_id = (await request_card(container, user, "req-1")).response["request_id"]
    items = await list_pending_requests(container.repos)
    assert len(items) == 1
    assert items[0]["request_id"] == request_id
    assert items[0]["short_id"] == request_id[:8].upper()
    assert items[0]["requires_attention"] is False
    assert items[0]["user"] == {"email": "low@example.com", "current_score": 400, "tier": "low"}


async def test_cancel_card(container, make_user):
    user = await make_user(score=750)
    card_id = (await request_card(container, user, "req-1")).response["card_id"]
    result = await cancel_card(container, user, card_id, "cancel-1")
    assert result.response["status"] == "cancelled"
    refreshed = await container.repos.users.get(user.user_id)
    assert refreshed.card_summary.active_cards == 0
    assert refreshed.card_summary.total_limit == 0
    assert len(await _events(container, "card.cancelled")) == 1


class SlowCardRepository(MemoryCardRepository):
    """Yields to the loop after every read, like a networked store."""

    async def list_for_user(self, user_id: str) -> list[Card]:
        cards = await super().list_for_user(user_id)
        await asyncio.sleep(0)
        return cards


async def test_concurrent_auto_approvals_issue_one_card(container, make_user):
    container.repos.cards = SlowCardRepository()
    user = await make_user(score=750)

    results = await asyncio.gather(
        request_card(container, user, "req-a"),
        request_card(container, user, "req-b"),
        return_exceptions=True,
    )

    approved = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(approved) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], ConflictError)
    assert failed[0].code == "NOT_ELIGIBLE"

    cards = await container.repos.cards.list_for_user(user.user_id)
    assert [c.card_id for c in cards] == [approved[0].response["card_id"]]
    # the losing request left no request row or event behind
    assert len(await _events(container, "card.approved")) == 1


async def test_second_active_card_is_refused_by_the_store(container, make_user):
    user = await make_user(score=750)
    await request_card(container, user, "req-1")
    with pytest.raises(ConflictError) as exc:
        await container.repos.cards.insert(Card.new(user.user_id, 500, approved_by="auto", score_at_approval=750))
    assert exc.value.code == "NOT_ELIGIBLE"


async def test_concurrent_retries_with_one_key_issue_one_card(container, make_user):
    container.repos.cards = SlowCardRepository()
    user = await make_user(score=620)

    results = await asyncio.gather(
        request_card(container, user, "req-1"),
        request_card(container, user, "req-1"),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, ConflictError)) == 1
    assert len(await container.repos.cards.list_for_user(user.user_id)) == 1
