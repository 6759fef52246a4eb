from datetime import timedelta

import pytest

from cardflow.core.audit import AdminActor
from cardflow.core.exceptions import BadRequestError, NotFoundError
from cardflow.services.admin import adjust_score, delete_account, issue_cleanup_token, run_system_cleanup
from cardflow.services.cards import request_card
from cardflow.services.idempotency import remember
from cardflow.services.outbox import drain_outbox

pytestmark = pytest.mark.asyncio

ADMIN = AdminActor(admin_id="admin-1", email="admin@example.com")


async def test_adjust_score_records_history_audit_and_event(container, make_user):
    user = await make_user(score=480)
    result = await adjust_score(container, ADMIN, user.user_id, 720, "Verified income", "adj-1")
    assert result.response == {
        "user_id": user.user_id,
        "previous_score": 480,
        "new_score": 720,
        "previous_tier": "low",
        "new_tier": "high",
    }

    history = await container.repos.scores.list_for_user(user.user_id)
    assert history[0].source == "admin"
    assert history[0].source_id == "admin-1"
    audit = await container.repos.audit_logs.list_for_target_user(user.user_id)
    assert audit[0].action == "score.adjusted"
    assert audit[0].previous_value == {"score": 480, "tier": "low"}
    events = await container.repos.outbox.list_for_entity("score", user.user_id)
    assert events[-1].payload["admin_id"] == "admin-1"
    assert events[-1].payload["new_tier"] == "high"


async def test_adjusted_score_unlocks_auto_approval(container, make_user):
    user = await make_user(score=300)
    await adjust_score(container, ADMIN, user.user_id, 700, "Manual review", "adj-1")
    user = await container.repos.users.get(user.user_id)
    result = await request_card(container, user, "req-1")
    assert result.response["status"] == "approved"
    assert result.response["limit"] == 10000


async def test_adjust_unknown_user(container):
    with pytest.raises(NotFoundError):
        await adjust_score(container, ADMIN, "missing", 600, "x", "adj-1")


async def test_delete_account_cascades_but_keeps_audit(container, make_user):
    user = await make_user(score=400)
    await request_card(container, user, "req-1")

    result = await delete_account(container, ADMIN, user.user_id, reason="GDPR request")
    assert result["deleted"]["card_requests"] == 1
    assert result["deleted"]["pending_approvals"] == 1
    assert result["deleted"]["idempotency_records"] == 1
    assert await container.repos.users.get(user.user_id) is None
    assert await container.repos.scores.list_for_user(user.user_id) == []

    audit = await container.repos.audit_logs.list_for_target_user(user.user_id)
    assert audit[0].action == "user.disabled"
    assert audit[0].reason == "GDPR request"


async def test_cleanup_removes_old_sent_events_and_expired_records(container, make_user):
    await make_user()
    await drain_outbox(container)
    await remember(container.repos, "someone", "stale", "make-purchase", {}, ttl=timedelta(seconds=-1))
    sent = await container.repos.outbox.list_by_status("sent")
    for event in sent:
        await container.repos.outbox.mark_sent(event.event_id, event.created_at - timedelta(days=8))

    token = (await issue_cleanup_token(container, ADMIN))["confirmation_token"]
    result = await run_system_cleanup(container, ADMIN, token)
    assert result["deleted"]["outbox_events"] == len(sent)
    assert result["deleted"]["idempotency_records"] == 1

    cleanup_events = await container.repos.outbox.list_for_entity("system", "cleanup")
    assert cleanup_events[0].payload["deleted_counts"] == result["deleted"]


async def test_cleanup_token_belongs_to_issuer(container):
    token = (await issue_cleanup_token(container, ADMIN))["confirmation_token"]
    other = AdminActor(admin_id="admin-2", email="other@example.com")
    with pytest.raises(BadRequestError):
        await run_system_cleanup(container, other, token)
