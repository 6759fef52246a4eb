from datetime import datetime, timedelta

from cardflow.domain.approval import (
    can_approve_with_limit,
    can_request_card,
    determine_approval_outcome,
    validate_limit_for_tier,
)
from cardflow.models.card import Card
from cardflow.models.card_request import AdminDecision, CardRequest
from cardflow.models.user import User


def _user(score: int = 400) -> User:
    return User.new(external_id="ext-1", email="u@example.com", score=score)


def _request(user: User, **kwargs) -> CardRequest:
    return CardRequest(
        user_id=user.user_id,
        idempotency_key=kwargs.pop("key", "key-1"),
        score_at_request=user.current_score,
        tier_at_request=user.tier,
        **kwargs,
    )


def _rejected(user: User, decided_at: datetime) -> CardRequest:
    decision = AdminDecision(outcome="rejected", admin_id="admin-1", reason="risk", decided_at=decided_at)
    return _request(user).decide(decision)


def test_determine_approval_outcome():
    high = determine_approval_outcome(750)
    assert high.approved and high.limit == 10000
    medium = determine_approval_outcome(500)
    assert medium.approved and medium.limit == 5000
    low = determine_approval_outcome(499)
    assert not low.approved
    assert low.requires_review
    assert low.limit == 2000


def test_validate_limit_for_tier():
    assert validate_limit_for_tier(100, "low").allowed
    assert validate_limit_for_tier(2000, "low").allowed
    assert not validate_limit_for_tier(2001, "low").allowed
    assert not validate_limit_for_tier(99, "high").allowed
    assert validate_limit_for_tier(10000, "high").allowed


def test_active_card_blocks_new_request():
    user = _user(750)
    card = Card.new(user.user_id, 1000, approved_by="auto", score_at_approval=750)
    result = can_request_card(user, [card], [], [])
    assert not result.allowed
    assert "active" in result.reason


def test_pending_request_blocks_new_request():
    user = _user()
    result = can_request_card(user, [], [_request(user)], [])
    assert not result.allowed


def test_cooldown_at_29_days_refuses_with_days_remaining():
    now = datetime(2026, 3, 1, 12, 0, 0)
    user = _user()
    result = can_request_card(user, [], [], [_rejected(user, now - timedelta(days=29))], now=now)
    assert not result.allowed
    assert result.days_remaining == 1


def test_cooldown_at_31_days_allows():
    now = datetime(2026, 3, 1, 12, 0, 0)
    user = _user()
    result = can_request_card(user, [], [], [_rejected(user, now - timedelta(days=31))], now=now)
    assert result.allowed


def test_cooldown_ends_exactly_at_30_days():
    now = datetime(2026, 3, 1, 12, 0, 0)
    user = _user()
    assert can_request_card(user, [], [], [_rejected(user, now - timedelta(days=30))], now=now).allowed


def test_can_approve_with_limit_requires_pending():
    user = _user()
    decided = _rejected(user, datetime.utcnow())
    result = can_approve_with_limit(decided, 500, "low")
    assert not result.allowed
    assert "not pending" in result.reason
    assert can_approve_with_limit(_request(user), 500, "low").allowed
    assert not can_approve_with_limit(_request(user), 5000, "low").allowed
