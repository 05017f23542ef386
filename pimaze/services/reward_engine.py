# coding: utf-8
"""
Reward Engine

Business rules of the coin economy, every one built on the claim ledger:
- Daily login bonus (once per UTC day)
- Level complete bonus (once per level, ever)
- Rewarded ads with a decaying payout
- Valid invites (once per invitee)
- Consumables (skip/hint/restart): free allowance, coins or an ad
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.economy_config import RateBands, RewardPolicy, DEFAULT_RATE_BANDS, day_tag
from pimaze.core.exceptions import InvalidRequestError, NoFreeUsesLeftError, NotFoundError
from pimaze.database.engine import Database
from pimaze.database.models import (
    Account,
    CoinReason,
    ConsumableKind,
    LevelReward,
    Referral,
    RewardType,
    SpendMode,
    utcnow,
)
from pimaze.services.claim_ledger import ClaimResult, ClaimHook, as_utc, run_claim, try_claim
from pimaze.services.monthly_service import lock_current_account, store_rate


@dataclass
class ConsumeResult:
    """Outcome of a consumable use"""

    ok: bool
    mode: SpendMode
    already: bool
    account: Account
    free_left: Dict[str, int]


def free_uses_left(account: Account, policy: RewardPolicy) -> Dict[str, int]:
    """Remaining lifetime free uses per consumable kind"""
    return {
        kind.value: max(policy.free_allowance.get(kind.value, 0) - account.free_used(kind.value), 0)
        for kind in ConsumableKind
    }


def _parse_kind(kind) -> ConsumableKind:
    try:
        return ConsumableKind(kind)
    except ValueError:
        raise InvalidRequestError(f"Unknown consumable: {kind}")


def _parse_mode(mode) -> SpendMode:
    try:
        return SpendMode(mode)
    except ValueError:
        raise InvalidRequestError(f"Unknown spend mode: {mode}")


def _require_nonce(nonce: Optional[str]) -> str:
    nonce = (nonce or "").strip()
    if not nonce:
        raise InvalidRequestError("nonce is required")
    return nonce


def _bump_consumable(account: Account, kind: ConsumableKind) -> None:
    counter = f"monthly_{kind.value}s_used"
    setattr(account, counter, getattr(account, counter) + 1)
    if kind is ConsumableKind.SKIP:
        account.monthly_win_streak = 0


class RewardEngine:
    """
    Reward and consumable operations

    Each operation runs in one transaction: roll the account's month, apply
    the claim (exactly once per nonce) and refresh the stored monthly rate.
    """

    def __init__(
        self,
        db: Database,
        policy: Optional[RewardPolicy] = None,
        bands: RateBands = DEFAULT_RATE_BANDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.policy = policy or RewardPolicy()
        self.bands = bands
        self.clock = clock

    def free_uses_left(self, account: Account) -> Dict[str, int]:
        return free_uses_left(account, self.policy)

    async def _claim(
        self,
        uid: str,
        reward_type: RewardType,
        nonce: str,
        amount,
        *,
        cooldown_seconds: Optional[int] = None,
        on_applied: Optional[ClaimHook] = None,
        reason: CoinReason = CoinReason.REWARD,
    ) -> ClaimResult:
        """
        Claim inside a fresh transaction

        Args:
            amount: Coin delta, or a callable computing it from the locked account
        """
        now = self.clock()

        async def work(session: AsyncSession) -> ClaimResult:
            account = await lock_current_account(session, uid, now)
            value = amount(account) if callable(amount) else amount
            result = await try_claim(
                session,
                account,
                reward_type,
                nonce,
                value,
                now=now,
                cooldown_seconds=cooldown_seconds,
                on_applied=on_applied,
                reason=reason,
            )
            if result.applied:
                store_rate(account, self.bands)
            return result

        return await run_claim(self.db, uid, nonce, work)

    # ===========================
    # REWARDS
    # ===========================

    async def claim_daily_login(self, uid: str) -> ClaimResult:
        """
        Daily login bonus, once per UTC calendar day

        Returns:
            ClaimResult (already=True on a repeat the same day)
        """
        nonce = f"daily:{uid}:{day_tag(self.clock())}"

        async def bump(session: AsyncSession, account: Account) -> None:
            account.monthly_login_days += 1

        return await self._claim(
            uid,
            RewardType.DAILY_LOGIN,
            nonce,
            self.policy.daily_login_bonus,
            on_applied=bump,
        )

    async def claim_level_complete(self, uid: str, level: int) -> ClaimResult:
        """
        Level complete bonus, once per (uid, level) independent of date

        Raises:
            InvalidRequestError: If level < 1
        """
        if not isinstance(level, int) or isinstance(level, bool) or level < 1:
            raise InvalidRequestError(f"Invalid level: {level}")

        nonce = f"level:{uid}:{level}"
        now = self.clock()

        async def mark(session: AsyncSession, account: Account) -> None:
            session.add(LevelReward(uid=uid, level=level, claim_nonce=nonce, created_at=now))
            await session.flush()
            account.monthly_levels_completed += 1
            account.monthly_win_streak += 1
            if account.monthly_win_streak > account.monthly_best_win_streak:
                account.monthly_best_win_streak = account.monthly_win_streak

        async def work(session: AsyncSession) -> ClaimResult:
            account = await lock_current_account(session, uid, now)

            marker = await session.execute(
                select(LevelReward).where(LevelReward.uid == uid, LevelReward.level == level)
            )
            if marker.scalar_one_or_none() is not None:
                logger.debug(f"Level {level} of {uid} already rewarded")
                return ClaimResult(applied=False, account=account)

            result = await try_claim(
                session,
                account,
                RewardType.LEVEL_COMPLETE,
                nonce,
                self.policy.level_complete_bonus,
                now=now,
                on_applied=mark,
            )
            if result.applied:
                store_rate(account, self.bands)
            return result

        return await run_claim(self.db, uid, nonce, work)

    async def claim_ad_reward(self, uid: str, nonce: Optional[str]) -> ClaimResult:
        """
        Rewarded ad: max(base - ads watched this month, floor)

        Raises:
            InvalidRequestError: If nonce is missing
            CooldownError: If the previous ad claim is too recent
        """
        nonce = f"ad:{uid}:{_require_nonce(nonce)}"

        async def bump(session: AsyncSession, account: Account) -> None:
            account.monthly_ads_watched += 1

        return await self._claim(
            uid,
            RewardType.AD_REWARD,
            nonce,
            lambda account: self.policy.ad_reward_amount(account.monthly_ads_watched),
            cooldown_seconds=self.policy.ad_cooldown_seconds,
            on_applied=bump,
        )

    async def claim_invite(self, inviter_uid: str, invitee_uid: str) -> ClaimResult:
        """
        Invite bonus for the inviter, once per invitee

        The invitee must be a registered account that joined no earlier
        than the inviter. The inviter -> invitee link is recorded in
        referrals, keyed by invitee.

        Raises:
            InvalidRequestError: On a self-invite or an older invitee
            NotFoundError: If the inviter or the invitee is unknown
        """
        if not invitee_uid or inviter_uid == invitee_uid:
            raise InvalidRequestError("Invalid invite")

        nonce = f"invite:{invitee_uid}"
        now = self.clock()

        async def link(session: AsyncSession, account: Account) -> None:
            session.add(
                Referral(
                    invitee_uid=invitee_uid,
                    inviter_uid=account.uid,
                    claim_nonce=nonce,
                    created_at=now,
                )
            )
            await session.flush()
            account.monthly_valid_invites += 1

        async def work(session: AsyncSession) -> ClaimResult:
            account = await lock_current_account(session, inviter_uid, now)

            invitee = await session.get(Account, invitee_uid)
            if invitee is None:
                raise NotFoundError(f"Invitee {invitee_uid} not found")

            if await session.get(Referral, invitee_uid) is not None:
                logger.debug(f"Invitee {invitee_uid} already credited")
                return ClaimResult(applied=False, account=account)

            if as_utc(invitee.created_at) < as_utc(account.created_at):
                raise InvalidRequestError("Invitee joined before the inviter")

            result = await try_claim(
                session,
                account,
                RewardType.VALID_INVITE,
                nonce,
                self.policy.invite_bonus,
                now=now,
                on_applied=link,
            )
            if result.applied:
                store_rate(account, self.bands)
            return result

        return await run_claim(self.db, inviter_uid, nonce, work)

    # ===========================
    # CONSUMABLES
    # ===========================

    async def consume(
        self,
        uid: str,
        kind,
        mode,
        nonce: Optional[str] = None,
    ) -> ConsumeResult:
        """
        Use a consumable, paid the way the caller chose

        No fallback between modes: an exhausted free allowance must be
        retried explicitly with coins or an ad.

        Args:
            uid: Account uid
            kind: skip / hint / restart
            mode: free / coins / ad
            nonce: Required for ad, optional idempotency key for coins

        Raises:
            InvalidRequestError: Unknown kind/mode or missing ad nonce
            NoFreeUsesLeftError: Free allowance exhausted
            InsufficientFundsError: Not enough coins
        """
        kind = _parse_kind(kind)
        mode = _parse_mode(mode)

        if mode is SpendMode.FREE:
            account = await self._consume_free(uid, kind)
            return ConsumeResult(
                ok=True, mode=mode, already=False, account=account,
                free_left=self.free_uses_left(account),
            )

        async def bump(session: AsyncSession, account: Account) -> None:
            _bump_consumable(account, kind)
            if mode is SpendMode.AD:
                account.monthly_ads_watched += 1

        if mode is SpendMode.COINS:
            key = (nonce or "").strip() or uuid.uuid4().hex
            result = await self._claim(
                uid,
                RewardType(f"{kind.value}_coins"),
                f"{kind.value}_coins:{uid}:{key}",
                -self.policy.consumable_cost[kind.value],
                on_applied=bump,
                reason=CoinReason.CONSUME,
            )
        else:
            result = await self._claim(
                uid,
                RewardType(f"{kind.value}_ad"),
                f"{kind.value}_ad:{uid}:{_require_nonce(nonce)}",
                0,
                on_applied=bump,
            )

        return ConsumeResult(
            ok=True,
            mode=mode,
            already=result.already,
            account=result.account,
            free_left=self.free_uses_left(result.account),
        )

    async def _consume_free(self, uid: str, kind: ConsumableKind) -> Account:
        now = self.clock()
        allowance = self.policy.free_allowance.get(kind.value, 0)

        async with self.db.transaction() as session:
            account = await lock_current_account(session, uid, now)

            used = account.free_used(kind.value)
            if used >= allowance:
                logger.warning(f"No free {kind.value} left for {uid} ({used}/{allowance})")
                raise NoFreeUsesLeftError(kind.value)

            setattr(account, f"free_{kind.value}s_used", used + 1)
            _bump_consumable(account, kind)
            store_rate(account, self.bands)

        logger.info(f"Free {kind.value} used by {uid} ({used + 1}/{allowance})")
        return account
