"""
CRUD operations for PiMaze Backend

Session-level primitives for the account store and the coin ledger. They run
inside the caller's transaction and never commit: the services own the
transaction boundary, so a failure anywhere rolls the whole operation back.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from pimaze.core.exceptions import InsufficientFundsError, NotFoundError
from pimaze.database.models import (
    Account,
    CoinReason,
    CoinTransaction,
    MonthlyPayout,
    RewardClaim,
    MONTHLY_COUNTERS,
)

logger = logging.getLogger(__name__)


# ===========================
# ACCOUNT OPERATIONS
# ===========================


async def get_account(session: AsyncSession, uid: str) -> Optional[Account]:
    """
    Get account by Pi uid

    Args:
        session: Database session
        uid: Pi Platform uid

    Returns:
        Account model or None
    """
    stmt = select(Account).where(Account.uid == uid)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_account_by_username(session: AsyncSession, username: str) -> Optional[Account]:
    stmt = select(Account).where(Account.username == username)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def lock_account(session: AsyncSession, uid: str) -> Account:
    """
    Load an account with a row lock (SELECT ... FOR UPDATE)

    Every balance or once-only mutation of the same account serializes on
    this lock; other accounts never contend.

    Raises:
        NotFoundError: If uid is unknown
    """
    stmt = (
        select(Account)
        .where(Account.uid == uid)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    account = result.scalar_one_or_none()

    if account is None:
        raise NotFoundError(f"Account {uid} not found")

    return account


def reset_monthly_counters(account: Account, month: str) -> None:
    """Zero every monthly counter and stamp the new month"""
    for counter in MONTHLY_COUNTERS:
        setattr(account, counter, 0)
    account.monthly_key = month


# ===========================
# COIN LEDGER
# ===========================


def record_coin_transaction(
    session: AsyncSession,
    account: Account,
    reason: CoinReason,
    amount: int,
    balance_before: int,
    reference: Optional[str],
    now: datetime,
) -> CoinTransaction:
    transaction = CoinTransaction(
        uid=account.uid,
        reason=reason.value,
        amount=amount,
        balance_before=balance_before,
        balance_after=account.coins,
        reference=reference,
        created_at=now,
    )
    session.add(transaction)
    return transaction


def adjust_coins(
    session: AsyncSession,
    account: Account,
    delta: int,
    reason: CoinReason,
    now: datetime,
    reference: Optional[str] = None,
) -> int:
    """
    Apply a signed delta to a locked account, clamping the result at zero

    Positive deltas count towards monthly_coins_earned. Returns the delta
    actually applied (after clamping).
    """
    balance_before = account.coins
    account.coins = max(balance_before + delta, 0)
    applied = account.coins - balance_before

    if applied > 0:
        account.monthly_coins_earned += applied

    if applied != 0:
        record_coin_transaction(session, account, reason, applied, balance_before, reference, now)

    return applied


def spend_coins(
    session: AsyncSession,
    account: Account,
    amount: int,
    reason: CoinReason,
    now: datetime,
    reference: Optional[str] = None,
) -> None:
    """
    Debit a locked account

    Raises:
        InsufficientFundsError: If balance < amount
    """
    if amount < 0:
        raise ValueError("spend amount must be non-negative")

    if account.coins < amount:
        logger.warning(f"Account {account.uid} has insufficient coins: {account.coins} < {amount}")
        raise InsufficientFundsError(balance=account.coins, required=amount)

    balance_before = account.coins
    account.coins = balance_before - amount

    if amount:
        record_coin_transaction(session, account, reason, -amount, balance_before, reference, now)


# ===========================
# CLAIMS & PAYOUTS
# ===========================


async def get_claim_by_nonce(session: AsyncSession, nonce: str) -> Optional[RewardClaim]:
    stmt = select(RewardClaim).where(RewardClaim.nonce == nonce)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_latest_claim(
    session: AsyncSession, uid: str, reward_type: str
) -> Optional[RewardClaim]:
    stmt = (
        select(RewardClaim)
        .where(RewardClaim.uid == uid, RewardClaim.type == reward_type)
        .order_by(RewardClaim.created_at.desc(), RewardClaim.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_claims(
    session: AsyncSession, uid: str, limit: int = 50, offset: int = 0
) -> List[RewardClaim]:
    stmt = (
        select(RewardClaim)
        .where(RewardClaim.uid == uid)
        .order_by(RewardClaim.created_at.desc(), RewardClaim.id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_claims(session: AsyncSession, uid: str) -> int:
    stmt = select(func.count()).select_from(RewardClaim).where(RewardClaim.uid == uid)
    return (await session.execute(stmt)).scalar_one()


async def get_payout(session: AsyncSession, uid: str, month: str) -> Optional[MonthlyPayout]:
    stmt = select(MonthlyPayout).where(
        MonthlyPayout.uid == uid, MonthlyPayout.month == month
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_payouts(session: AsyncSession, uid: str) -> List[MonthlyPayout]:
    stmt = (
        select(MonthlyPayout)
        .where(MonthlyPayout.uid == uid)
        .order_by(MonthlyPayout.month.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
