"""Entity invariants."""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from cardflow.core.exceptions import ConflictError
from cardflow.domain.payments import apply_purchase
from cardflow.models.card import Card
from cardflow.models.card_request import AdminDecision, AutoDecision, CardRequest
from cardflow.models.pending_approval import PendingApproval
from cardflow.models.score import ScoreEntry
from cardflow.models.user import User


def test_user_tier_must_match_score():
    with pytest.raises(ValidationError):
        User(external_id="x", email="x@example.com", current_score=750, tier="medium")
    user = User.new("x", "x@example.com", score=750)
    assert user.tier == "high"
    assert user.with_score(450).tier == "low"


def test_card_balance_invariants():
    card = Card.new("u1", 1000, approved_by="auto", score_at_approval=700)
    assert card.available_credit == 1000
    with pytest.raises(ValidationError):
        card.evolve(balance=1200, available_credit=-200)
    with pytest.raises(ValidationError):
        card.evolve(balance=100, available_credit=1000)


def test_admin_card_requires_admin_id():
    with pytest.raises(ValidationError):
        Card.new("u1", 1000, approved_by="admin", score_at_approval=600)


def test_card_cancellation_requires_zero_balance():
    card = apply_purchase(Card.new("u1", 1000, approved_by="auto", score_at_approval=700), 10)
    with pytest.raises(ConflictError) as exc:
        card.transition("cancelled")
    assert exc.value.code == "INVALID_STATUS_TRANSITION"


def test_cancelled_card_cannot_transition():
    card = Card.new("u1", 1000, approved_by="auto", score_at_approval=700).transition("cancelled")
    assert card.version == 2
    assert card.cancelled_at is not None
    with pytest.raises(ConflictError):
        card.transition("active")


def test_card_request_decision_must_match_status():
    request = CardRequest(user_id="u1", idempotency_key="k", score_at_request=400, tier_at_request="low")
    with pytest.raises(ValidationError):
        request.evolve(status="approved")
    with pytest.raises(ValidationError):
        # approved without a resulting card
        request.evolve(status="approved", decision=AutoDecision(outcome="approved").model_dump())


def test_decided_request_cannot_be_decided_again():
    request = CardRequest(user_id="u1", idempotency_key="k", score_at_request=400, tier_at_request="low")
    rejected = request.decide(AdminDecision(outcome="rejected", admin_id="a1"))
    assert rejected.decision.source == "admin"
    with pytest.raises(ConflictError) as exc:
        rejected.decide(AdminDecision(outcome="approved", admin_id="a1"), resulting_card_id="c1")
    assert exc.value.code == "REQUEST_NOT_PENDING"


def test_request_requires_attention_after_seven_days():
    request = CardRequest(user_id="u1", idempotency_key="k", score_at_request=400, tier_at_request="low")
    assert not request.requires_attention()
    assert request.requires_attention(now=request.created_at + timedelta(days=7))


def test_score_entry_delta_is_checked():
    entry = ScoreEntry.record("u1", 500, 530, reason="payment_on_time")
    assert entry.delta == 30
    with pytest.raises(ValidationError):
        ScoreEntry(user_id="u1", value=530, previous_value=500, delta=10, reason="payment_on_time", source="system")
    with pytest.raises(ValidationError):
        ScoreEntry.record("u1", 500, 600, reason="admin_adjustment", source="admin")


def test_pending_approval_lifecycle():
    tracker = PendingApproval.new("abcdef12-3456-7890-abcd-ef1234567890", "u1", ["n1", "n2"], timeout_hours=24)
    assert tracker.short_id == "ABCDEF12"
    assert tracker.can_process()
    assert tracker.is_expired(datetime.utcnow() + timedelta(hours=25))
    approved = tracker.mark_approved("5511987654321")
    assert approved.is_terminal
    assert approved.responding_admin_phone == "5511987654321"
    with pytest.raises(ConflictError):
        approved.mark_rejected("5511987654321")
