"""
Unit tests for the monthly payout rate formula
"""

from dataclasses import replace

import pytest

from config.economy_config import RateBands, tier_points, inverse_tier_points
from pimaze.services.monthly_rate import (
    MonthlyCounters,
    RateBreakdown,
    calc_monthly_rate,
    skill_points,
)


COUNTER_FIELDS = [
    "login_days",
    "levels_completed",
    "ads_watched",
    "valid_invites",
    "best_win_streak",
]


def test_empty_month_is_base_rate():
    """Test that an idle month pays exactly the base rate"""
    monthly_rate = calc_monthly_rate(MonthlyCounters())

    assert monthly_rate.rate == 50
    assert monthly_rate.breakdown == RateBreakdown(base=50)


def test_tier_points():
    tiers = ((20, 10), (10, 6), (5, 3))

    assert tier_points(0, tiers) == 0
    assert tier_points(5, tiers) == 3
    assert tier_points(19, tiers) == 6
    assert tier_points(200, tiers) == 10


def test_inverse_tier_points():
    tiers = ((0.1, 10), (0.25, 5), (0.5, 2))

    assert inverse_tier_points(0.0, tiers) == 10
    assert inverse_tier_points(0.2, tiers) == 5
    assert inverse_tier_points(0.5, tiers) == 2
    assert inverse_tier_points(0.9, tiers) == 0


def test_full_engagement_breakdown():
    counters = MonthlyCounters(
        login_days=25,
        levels_completed=120,
        ads_watched=100,
        valid_invites=5,
        best_win_streak=40,
    )

    monthly_rate = calc_monthly_rate(counters)

    assert monthly_rate.breakdown.to_dict() == {
        "base": 50,
        "login_days": 10,
        "levels": 10,
        "invites": 10,
        "skill": 10,
        "ads": 5,
        "win_streak": 5,
    }
    assert monthly_rate.rate == 100


def test_rate_clamped_to_100():
    """Test that generous bands never push the rate above 100"""
    bands = RateBands(base=90)
    counters = MonthlyCounters(login_days=30, levels_completed=200, valid_invites=10)

    monthly_rate = calc_monthly_rate(counters, bands)

    assert monthly_rate.breakdown.total > 100
    assert monthly_rate.rate == 100


def test_rate_clamped_to_zero():
    monthly_rate = calc_monthly_rate(MonthlyCounters(), RateBands(base=-20))

    assert monthly_rate.rate == 0


# ===========================
# SKILL FACTOR
# ===========================


def test_skill_needs_minimum_levels():
    """Test that a flawless but short month earns no skill points"""
    counters = MonthlyCounters(levels_completed=9)

    assert skill_points(counters, RateBands()) == 0


def test_skill_penalizes_consumables():
    bands = RateBands()
    clean = MonthlyCounters(levels_completed=20)
    sloppy = MonthlyCounters(levels_completed=20, skips_used=4, hints_used=4, restarts_used=2)

    assert skill_points(clean, bands) == 10
    # 10 consumables over 20 levels
    assert skill_points(sloppy, bands) == 2


# ===========================
# MONOTONICITY
# ===========================


@pytest.mark.parametrize("counter", COUNTER_FIELDS)
def test_rate_monotone_in_engagement(counter):
    """Test that raising any engagement counter never lowers the rate"""
    base = MonthlyCounters(levels_completed=10)
    previous = calc_monthly_rate(base).rate

    for value in range(0, 160, 3):
        if counter == "levels_completed" and value < 10:
            continue
        current = calc_monthly_rate(replace(base, **{counter: value})).rate
        assert current >= previous
        assert 0 <= current <= 100
        previous = current


def test_breakdown_from_dict_ignores_unknown_keys():
    breakdown = RateBreakdown.from_dict({"base": 50, "ads": "3", "legacy": 7})

    assert breakdown == RateBreakdown(base=50, ads=3)
    assert RateBreakdown.from_dict(None) == RateBreakdown()
