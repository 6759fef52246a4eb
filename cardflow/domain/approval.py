"""Auto-approval thresholds, tier limit policy and request eligibility."""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from cardflow.domain.scoring import HIGH_TIER_THRESHOLD, MEDIUM_TIER_THRESHOLD, Tier
from cardflow.models.card import Card
from cardflow.models.card_request import CardRequest
from cardflow.models.user import User

HIGH_TIER_LIMIT = 10000
MEDIUM_TIER_LIMIT = 5000
LOW_TIER_LIMIT = 2000
MINIMUM_LIMIT = 100
MAXIMUM_LIMIT = 10000

TIER_MAX_LIMITS: dict[str, int] = {
    "high": HIGH_TIER_LIMIT,
    "medium": MEDIUM_TIER_LIMIT,
    "low": LOW_TIER_LIMIT,
}

# Limit granted when an admin approves from the messaging channel
REMOTE_DEFAULT_LIMITS: dict[str, int] = {
    "low": 500,
    "medium": 1500,
    "high": 3000,
}

REJECTION_COOLDOWN_DAYS = 30


@dataclass(frozen=True)
class ApprovalOutcome:
    approved: bool
    limit: int
    requires_review: bool = False
    reason: str | None = None


@dataclass(frozen=True)
class Eligibility:
    allowed: bool
    reason: str | None = None
    days_remaining: int | None = None


ALLOWED = Eligibility(allowed=True)


def determine_approval_outcome(score: int) -> ApprovalOutcome:
    if score >= HIGH_TIER_THRESHOLD:
        return ApprovalOutcome(approved=True, limit=HIGH_TIER_LIMIT)
    if score >= MEDIUM_TIER_THRESHOLD:
        return ApprovalOutcome(approved=True, limit=MEDIUM_TIER_LIMIT)
    return ApprovalOutcome(
        approved=False,
        limit=LOW_TIER_LIMIT,
        requires_review=True,
        reason="Score below auto-approval threshold",
    )


def get_max_limit_for_tier(tier: Tier) -> int:
    return TIER_MAX_LIMITS[tier]


def default_remote_limit(tier: Tier) -> int:
    return REMOTE_DEFAULT_LIMITS[tier]


def validate_limit_for_tier(limit: int, tier: Tier) -> Eligibility:
    if limit < MINIMUM_LIMIT:
        return Eligibility(allowed=False, reason=f"Limit must be at least ${MINIMUM_LIMIT}")
    tier_max = min(get_max_limit_for_tier(tier), MAXIMUM_LIMIT)
    if limit > tier_max:
        return Eligibility(allowed=False, reason=f"Limit exceeds policy for {tier} tier (max: ${tier_max})")
    return ALLOWED


def can_request_card(
    user: User,
    existing_cards: Iterable[Card],
    pending_requests: Iterable[CardRequest],
    recent_rejections: Iterable[CardRequest],
    now: datetime | None = None,
) -> Eligibility:
    now = now or datetime.utcnow()
    if any(c.status == "active" for c in existing_cards):
        return Eligibility(allowed=False, reason="User already has an active credit card")
    if any(r.status == "pending" for r in pending_requests):
        return Eligibility(allowed=False, reason="User has a pending card request")

    cooldown = timedelta(days=REJECTION_COOLDOWN_DAYS)
    longest_wait: timedelta | None = None
    for request in recent_rejections:
        if request.status != "rejected" or request.decision is None:
            continue
        remaining = cooldown - (now - request.decision.decided_at)
        if remaining > timedelta(0) and (longest_wait is None or remaining > longest_wait):
            longest_wait = remaining
    if longest_wait is not None:
        days = math.ceil(longest_wait.total_seconds() / 86400)
        return Eligibility(
            allowed=False,
            reason=f"Card request rejected recently. Please wait {days} days before applying again.",
            days_remaining=days,
        )
    return ALLOWED


def can_approve_with_limit(request: CardRequest, limit: int, tier: Tier) -> Eligibility:
    if request.status != "pending":
        return Eligibility(allowed=False, reason=f"Request is not pending (status: {request.status})")
    return validate_limit_for_tier(limit, tier)
