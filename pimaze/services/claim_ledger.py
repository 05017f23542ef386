# coding: utf-8
"""
Idempotency Ledger

One primitive for every once-only reward: a claim row keyed by a unique
nonce is inserted together with the coin delta in the same transaction.
A repeated nonce is a successful no-op, never an error.
"""

import math
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from pimaze.core.exceptions import CooldownError
from pimaze.database.crud import (
    adjust_coins,
    get_account,
    get_claim_by_nonce,
    get_claims,
    get_latest_claim,
    spend_coins,
)
from pimaze.database.engine import Database
from pimaze.database.models import Account, CoinReason, RewardClaim, RewardType, utcnow
from pimaze.services.monthly_service import lock_current_account


ClaimHook = Callable[[AsyncSession, Account], Awaitable[None]]


@dataclass
class ClaimResult:
    """Outcome of a claim: applied once, or already applied before"""

    applied: bool
    account: Account
    amount: int = 0

    @property
    def already(self) -> bool:
        return not self.applied


def as_utc(moment: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


async def try_claim(
    session: AsyncSession,
    account: Account,
    reward_type: RewardType,
    nonce: str,
    amount: int,
    *,
    now: datetime,
    cooldown_seconds: Optional[int] = None,
    on_applied: Optional[ClaimHook] = None,
    reason: CoinReason = CoinReason.REWARD,
) -> ClaimResult:
    """
    Apply a reward exactly once per nonce

    The account must already be locked by the caller's transaction.
    Positive (or zero) amounts are credited; negative amounts are debited
    through spend_coins and fail with InsufficientFundsError instead of
    being clamped.

    Args:
        session: Session inside the caller's transaction
        account: Locked account
        reward_type: Reward category
        nonce: Globally unique idempotency key
        amount: Signed coin delta
        now: Claim timestamp
        cooldown_seconds: Minimum gap between claims of the same type
        on_applied: Counter bookkeeping, run only when the claim is applied
        reason: Coin ledger reason

    Returns:
        ClaimResult(applied=False) with the current account if the nonce exists

    Raises:
        CooldownError: Latest claim of this type is newer than the cooldown
        InsufficientFundsError: Debit exceeds the balance
    """
    existing = await get_claim_by_nonce(session, nonce)
    if existing is not None:
        if existing.uid != account.uid:
            logger.warning(f"Nonce {nonce} of {existing.uid} replayed by {account.uid}")
        logger.debug(f"Claim {nonce} already applied, skipping")
        return ClaimResult(applied=False, account=account)

    if cooldown_seconds:
        latest = await get_latest_claim(session, account.uid, reward_type.value)
        if latest is not None:
            elapsed = (now - as_utc(latest.created_at)).total_seconds()
            if elapsed < cooldown_seconds:
                retry_after = math.ceil(cooldown_seconds - elapsed)
                logger.warning(f"Cooldown hit for {reward_type.value}, account {account.uid} ({retry_after}s left)")
                raise CooldownError(reward_type.value, retry_after)

    claim = RewardClaim(
        uid=account.uid,
        type=reward_type.value,
        nonce=nonce,
        amount=amount,
        created_at=now,
    )
    session.add(claim)
    # Unique nonce fires here, before the balance is touched
    await session.flush()

    if amount >= 0:
        adjust_coins(session, account, amount, reason, now, reference=nonce)
    else:
        spend_coins(session, account, -amount, reason, now, reference=nonce)

    if on_applied is not None:
        await on_applied(session, account)

    logger.info(
        f"Claim applied: {reward_type.value} {amount:+d} for {account.uid} "
        f"(nonce: {nonce}, balance: {account.coins})"
    )
    return ClaimResult(applied=True, account=account, amount=amount)


async def run_claim(
    db: Database,
    uid: str,
    nonce: str,
    work: Callable[[AsyncSession], Awaitable[ClaimResult]],
) -> ClaimResult:
    """
    Run a claim in its own transaction

    A concurrent claim with the same nonce that committed first surfaces as
    an IntegrityError on the unique nonce; the loser then reports
    applied=False with the winner's post-mutation account state.
    """
    try:
        async with db.transaction() as session:
            return await work(session)
    except IntegrityError:
        async with db.session() as session:
            if await get_claim_by_nonce(session, nonce) is None:
                raise
            account = await get_account(session, uid)
        logger.debug(f"Claim {nonce} lost the race, already applied")
        return ClaimResult(applied=False, account=account)


class ClaimLedger:
    """Transactional facade over try_claim"""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def claim(
        self,
        uid: str,
        reward_type: RewardType,
        nonce: str,
        amount: int,
        cooldown_seconds: Optional[int] = None,
    ) -> ClaimResult:
        """
        Claim a reward for uid exactly once per nonce

        Raises:
            NotFoundError: If uid is unknown
            CooldownError: If rate-limited
        """
        now = self.clock()

        async def work(session: AsyncSession) -> ClaimResult:
            account = await lock_current_account(session, uid, now)
            return await try_claim(
                session,
                account,
                reward_type,
                nonce,
                amount,
                now=now,
                cooldown_seconds=cooldown_seconds,
            )

        return await run_claim(self.db, uid, nonce, work)

    async def history(self, uid: str, limit: int = 50, offset: int = 0) -> List[RewardClaim]:
        """Claims of uid, newest first"""
        async with self.db.session() as session:
            return await get_claims(session, uid, limit=limit, offset=offset)
