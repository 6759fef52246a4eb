"""Score/tier mapping and payment score impact."""

import pytest

from cardflow.domain.scoring import (
    apply_score_delta,
    calculate_payment_score_impact,
    clamp_score,
    derive_tier,
    is_valid_score,
)


@pytest.mark.parametrize(
    "score,tier",
    [(0, "low"), (499, "low"), (500, "medium"), (699, "medium"), (700, "high"), (1000, "high")],
)
def test_derive_tier_boundaries(score, tier):
    assert derive_tier(score) == tier


def test_tier_is_monotonic():
    order = {"low": 0, "medium": 1, "high": 2}
    ranks = [order[derive_tier(clamp_score(s))] for s in range(-50, 1100, 7)]
    assert ranks == sorted(ranks)


def test_clamp_score():
    assert clamp_score(-10) == 0
    assert clamp_score(1500) == 1000
    assert clamp_score(499.5) == 500
    assert clamp_score(float("nan")) == 0
    assert clamp_score(float("inf")) == 1000


def test_is_valid_score():
    assert is_valid_score(0)
    assert is_valid_score(1000)
    assert not is_valid_score(1001)
    assert not is_valid_score(500.0)
    assert not is_valid_score(True)


def test_on_time_payment_scales_with_share_paid():
    assert calculate_payment_score_impact(25, 1000, on_time=True).delta == 11
    assert calculate_payment_score_impact(500, 1000, on_time=True).delta == 30
    assert calculate_payment_score_impact(1000, 1000, on_time=True).delta == 50
    # overpaying never exceeds the full-payment bonus
    assert calculate_payment_score_impact(5000, 1000, on_time=True).delta == 50
    assert calculate_payment_score_impact(100, 0, on_time=True).delta == 50


@pytest.mark.parametrize("days,penalty", [(1, -20), (7, -20), (8, -50), (30, -50), (31, -100), (400, -100)])
def test_late_payment_penalty_buckets(days, penalty):
    impact = calculate_payment_score_impact(100, 1000, on_time=False, days_overdue=days)
    assert impact.delta == penalty
    assert impact.reason == "payment_late"


def test_apply_score_delta_clamps():
    assert apply_score_delta(990, 50) == 1000
    assert apply_score_delta(10, -100) == 0
