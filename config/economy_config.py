# coding: utf-8
"""
Coin Economy Configuration

Centralized policy for rewards, consumables and the monthly payout rate.
The numbers here are tunable business policy, not a contract: override them
through the environment or by constructing the dataclasses directly.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Tuple


# =======================
# CALENDAR TAGS (UTC)
# =======================


def day_tag(moment: datetime) -> str:
    """UTC calendar day, e.g. 2026-01-31"""
    return moment.strftime("%Y-%m-%d")


def month_tag(moment: datetime) -> str:
    """UTC calendar month, e.g. 2026-01"""
    return moment.strftime("%Y-%m")


def previous_month_tag(moment: datetime) -> str:
    """Month tag of the calendar month before `moment`"""
    first_of_month = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return month_tag(first_of_month - timedelta(days=1))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# =======================
# REWARDS & CONSUMABLES
# =======================


@dataclass
class RewardPolicy:
    """Coin amounts, allowances and limits used by the reward engine."""

    daily_login_bonus: int = 5
    level_complete_bonus: int = 1
    invite_bonus: int = 10

    # Ad rewards decay with every ad watched this month: max(base - watched, floor)
    ad_reward_base: int = 50
    ad_reward_floor: int = 2
    ad_reward_decay: bool = True
    ad_cooldown_seconds: int = 30

    # Lifetime free uses per consumable, then coins or an ad
    free_allowance: Dict[str, int] = field(
        default_factory=lambda: {"skip": 3, "hint": 3, "restart": 3}
    )
    consumable_cost: Dict[str, int] = field(
        default_factory=lambda: {"skip": 50, "hint": 50, "restart": 50}
    )

    def ad_reward_amount(self, ads_watched_this_month: int) -> int:
        if not self.ad_reward_decay:
            return self.ad_reward_base
        return max(self.ad_reward_base - ads_watched_this_month, self.ad_reward_floor)

    @classmethod
    def from_env(cls) -> "RewardPolicy":
        cost = _env_int("CONSUMABLE_COST", 50)
        allowance = _env_int("FREE_ALLOWANCE", 3)
        return cls(
            daily_login_bonus=_env_int("DAILY_LOGIN_BONUS", 5),
            level_complete_bonus=_env_int("LEVEL_COMPLETE_BONUS", 1),
            invite_bonus=_env_int("INVITE_BONUS", 10),
            ad_reward_base=_env_int("AD_REWARD_BASE", 50),
            ad_reward_floor=_env_int("AD_REWARD_FLOOR", 2),
            ad_reward_decay=os.getenv("AD_REWARD_DECAY", "true").lower() == "true",
            ad_cooldown_seconds=_env_int("AD_COOLDOWN_SECONDS", 30),
            free_allowance={"skip": allowance, "hint": allowance, "restart": allowance},
            consumable_cost={"skip": cost, "hint": cost, "restart": cost},
        )


# =======================
# MONTHLY PAYOUT RATE
# =======================

# Tiers are (threshold, points), checked from the highest threshold down
Tiers = Tuple[Tuple[float, int], ...]


@dataclass(frozen=True)
class RateBands:
    """Payout rate = base + one capped band per engagement factor, clamped to [0, 100]."""

    base: int = 50
    login_days: Tiers = ((20, 10), (10, 6), (5, 3))
    levels: Tiers = ((100, 10), (50, 6), (20, 3))
    invites: Tiers = ((5, 10), (3, 6), (1, 3))
    ads: Tiers = ((100, 5), (50, 3), (10, 1))
    win_streak: Tiers = ((30, 5), (15, 3), (5, 1))

    # Skill: consumables used per completed level (lower is better)
    skill_min_levels: int = 10
    skill: Tiers = ((0.1, 10), (0.25, 5), (0.5, 2))


def tier_points(value: float, tiers: Tiers) -> int:
    """Points of the highest tier whose threshold `value` reaches"""
    for threshold, points in sorted(tiers, key=lambda t: t[0], reverse=True):
        if value >= threshold:
            return points
    return 0


def inverse_tier_points(value: float, tiers: Tiers) -> int:
    """Points of the tightest tier whose ceiling `value` stays under"""
    for ceiling, points in sorted(tiers, key=lambda t: t[0]):
        if value <= ceiling:
            return points
    return 0


DEFAULT_REWARD_POLICY = RewardPolicy()
DEFAULT_RATE_BANDS = RateBands()
