# coding: utf-8
"""
Monthly payout rate

Pure computation of the payout percentage from an account's monthly
counters. Band thresholds live in config/economy_config.py (RateBands).
"""

from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional

from config.economy_config import (
    RateBands,
    DEFAULT_RATE_BANDS,
    tier_points,
    inverse_tier_points,
)


@dataclass(frozen=True)
class RateBreakdown:
    """Points contributed by each factor; the rate is their clamped sum."""

    base: int = 0
    login_days: int = 0
    levels: int = 0
    invites: int = 0
    skill: int = 0
    ads: int = 0
    win_streak: int = 0

    @property
    def total(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RateBreakdown":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: int(v) for k, v in data.items() if k in known})


@dataclass(frozen=True)
class MonthlyCounters:
    """Inputs of the rate formula"""

    login_days: int = 0
    levels_completed: int = 0
    skips_used: int = 0
    hints_used: int = 0
    restarts_used: int = 0
    ads_watched: int = 0
    valid_invites: int = 0
    best_win_streak: int = 0

    @property
    def consumables_used(self) -> int:
        return self.skips_used + self.hints_used + self.restarts_used

    @classmethod
    def from_account(cls, account) -> "MonthlyCounters":
        return cls(
            login_days=account.monthly_login_days,
            levels_completed=account.monthly_levels_completed,
            skips_used=account.monthly_skips_used,
            hints_used=account.monthly_hints_used,
            restarts_used=account.monthly_restarts_used,
            ads_watched=account.monthly_ads_watched,
            valid_invites=account.monthly_valid_invites,
            best_win_streak=account.monthly_best_win_streak,
        )


@dataclass(frozen=True)
class MonthlyRate:
    rate: int
    breakdown: RateBreakdown


def skill_points(counters: MonthlyCounters, bands: RateBands) -> int:
    """Reward finishing levels with few skips/hints/restarts"""
    if counters.levels_completed < bands.skill_min_levels:
        return 0
    ratio = counters.consumables_used / counters.levels_completed
    return inverse_tier_points(ratio, bands.skill)


def calc_monthly_rate(
    counters: MonthlyCounters,
    bands: RateBands = DEFAULT_RATE_BANDS,
) -> MonthlyRate:
    """
    Compute the payout percentage for one month

    Args:
        counters: Monthly counters of the account
        bands: Base and tiered bands

    Returns:
        MonthlyRate with the rate clamped to [0, 100] and its breakdown
    """
    breakdown = RateBreakdown(
        base=bands.base,
        login_days=tier_points(counters.login_days, bands.login_days),
        levels=tier_points(counters.levels_completed, bands.levels),
        invites=tier_points(counters.valid_invites, bands.invites),
        skill=skill_points(counters, bands),
        ads=tier_points(counters.ads_watched, bands.ads),
        win_streak=tier_points(counters.best_win_streak, bands.win_streak),
    )

    rate = min(max(breakdown.total, 0), 100)
    return MonthlyRate(rate=rate, breakdown=breakdown)


def rate_for_account(account, bands: RateBands = DEFAULT_RATE_BANDS) -> MonthlyRate:
    return calc_monthly_rate(MonthlyCounters.from_account(account), bands)
