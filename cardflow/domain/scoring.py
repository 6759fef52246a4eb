"""Score to tier mapping and payment score impact. Pure functions."""

import math
from dataclasses import dataclass
from typing import Literal

Tier = Literal["low", "medium", "high"]

MIN_SCORE = 0
MAX_SCORE = 1000
INITIAL_SCORE = 500
HIGH_TIER_THRESHOLD = 700
MEDIUM_TIER_THRESHOLD = 500

ON_TIME_MIN_BONUS = 10
ON_TIME_MAX_BONUS = 50

# (max days overdue, penalty); beyond the last bucket the flat penalty applies
LATE_PENALTY_BUCKETS = ((7, -20), (30, -50))
SEVERE_LATE_PENALTY = -100


@dataclass(frozen=True)
class ScoreImpact:
    delta: int
    reason: str


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def derive_tier(score: int) -> Tier:
    if score >= HIGH_TIER_THRESHOLD:
        return "high"
    if score >= MEDIUM_TIER_THRESHOLD:
        return "medium"
    return "low"


def clamp_score(value: float) -> int:
    if value is None or math.isnan(value):
        return MIN_SCORE
    if math.isinf(value):
        return MAX_SCORE if value > 0 else MIN_SCORE
    return max(MIN_SCORE, min(MAX_SCORE, round_half_up(value)))


def is_valid_score(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and MIN_SCORE <= value <= MAX_SCORE


def apply_score_delta(current: int, delta: int) -> int:
    return clamp_score(current + delta)


def calculate_payment_score_impact(
    amount: float,
    balance: float,
    on_time: bool,
    days_overdue: int = 0,
) -> ScoreImpact:
    """
    On-time payments earn 10..50 points scaled by the share of the balance paid.
    Late payments lose a fixed penalty by bucket. Inputs are clamped, never rejected.
    """
    if not on_time:
        days = max(0, int(days_overdue or 0))
        for max_days, penalty in LATE_PENALTY_BUCKETS:
            if days <= max_days:
                return ScoreImpact(delta=penalty, reason="payment_late")
        return ScoreImpact(delta=SEVERE_LATE_PENALTY, reason="payment_late")

    amount = max(0.0, float(amount or 0))
    if balance is None or balance <= 0:
        pct = 1.0
    else:
        pct = min(1.0, amount / balance)
    span = ON_TIME_MAX_BONUS - ON_TIME_MIN_BONUS
    return ScoreImpact(delta=round_half_up(ON_TIME_MIN_BONUS + span * pct), reason="payment_on_time")
