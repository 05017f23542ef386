# coding: utf-8
"""
Monthly Rollover & Payout Service

- Rollover: reset monthly counters when a new calendar month starts
- Rate: keep monthly_final_rate / monthly_rate_breakdown fresh
- Month close: snapshot balances into monthly_payouts and reset them
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.economy_config import RateBands, DEFAULT_RATE_BANDS, month_tag
from pimaze.core.exceptions import InvalidRequestError, NotFoundError
from pimaze.database.crud import (
    get_account,
    get_payout,
    get_payouts,
    lock_account,
    reset_monthly_counters,
    spend_coins,
)
from pimaze.database.engine import Database
from pimaze.database.models import (
    Account,
    CoinReason,
    MonthlyPayout,
    PayoutStatus,
    utcnow,
)
from pimaze.services.monthly_rate import MonthlyRate, rate_for_account


# ===========================
# SESSION-LEVEL HELPERS
# ===========================


def roll_month(account: Account, now: datetime) -> bool:
    """
    Reset monthly counters if the account's month tag is stale

    Returns:
        True if the counters were reset
    """
    current = month_tag(now)
    if account.monthly_key == current:
        return False

    previous = account.monthly_key
    reset_monthly_counters(account, current)
    logger.info(f"Monthly rollover for {account.uid}: {previous} -> {current}")
    return True


def store_rate(account: Account, bands: RateBands = DEFAULT_RATE_BANDS) -> MonthlyRate:
    """Recompute the payout rate from the account's counters and persist it on the row"""
    monthly_rate = rate_for_account(account, bands)
    account.monthly_final_rate = monthly_rate.rate
    account.monthly_rate_breakdown = monthly_rate.breakdown.to_dict()
    return monthly_rate


async def lock_current_account(session: AsyncSession, uid: str, now: datetime) -> Account:
    """Lock the account row and roll its counters into the current month"""
    account = await lock_account(session, uid)
    roll_month(account, now)
    return account


async def snapshot_payout(
    session: AsyncSession,
    account: Account,
    month: str,
    now: datetime,
    bands: RateBands = DEFAULT_RATE_BANDS,
) -> Optional[MonthlyPayout]:
    """
    Insert-if-absent the payout snapshot for (uid, month), then zero the
    balance and reset monthly counters. The account must be locked.

    Returns:
        Created MonthlyPayout, or None if the month was already snapshotted
    """
    if await get_payout(session, account.uid, month) is not None:
        return None

    monthly_rate = store_rate(account, bands)
    coins = account.coins

    payout = MonthlyPayout(
        uid=account.uid,
        month=month,
        coins_collected=coins,
        final_rate=monthly_rate.rate,
        status=PayoutStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    session.add(payout)
    # Unique (uid, month) fires here, before the balance is touched
    await session.flush()

    spend_coins(session, account, coins, CoinReason.MONTH_CLOSE, now, reference=f"month:{month}")
    reset_monthly_counters(account, month_tag(now))
    store_rate(account, bands)

    return payout


# ===========================
# RESULTS
# ===========================


@dataclass
class MonthCloseReport:
    month: str
    processed: int = 0
    skipped: int = 0
    total_coins: int = 0
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": not self.failed,
            "month": self.month,
            "processed": self.processed,
            "skipped": self.skipped,
            "total_coins": self.total_coins,
            "failed": self.failed,
        }


@dataclass
class MonthlyClaimResult:
    already: bool
    payout: MonthlyPayout
    account: Account


# ===========================
# SERVICE
# ===========================


class MonthlyService:
    """Monthly rollover, rate bookkeeping and month close"""

    def __init__(
        self,
        db: Database,
        bands: RateBands = DEFAULT_RATE_BANDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.bands = bands
        self.clock = clock

    async def ensure_monthly_key(self, uid: str) -> Account:
        """
        Reset monthly counters if the stored month tag is not the current
        month. Safe to call on every request: a no-op (and no write) once
        the account is on the current month.

        Raises:
            NotFoundError: If uid is unknown
        """
        now = self.clock()

        async with self.db.session() as session:
            account = await get_account(session, uid)
        if account is None:
            raise NotFoundError(f"Account {uid} not found")
        if account.monthly_key == month_tag(now):
            return account

        async with self.db.transaction() as session:
            account = await lock_account(session, uid)
            if roll_month(account, now):
                store_rate(account, self.bands)
        return account

    async def recalc_and_store_monthly_rate(self, uid: str) -> MonthlyRate:
        """Recompute and persist monthly_final_rate / monthly_rate_breakdown"""
        async with self.db.transaction() as session:
            account = await lock_current_account(session, uid, self.clock())
            monthly_rate = store_rate(account, self.bands)

        logger.debug(f"Monthly rate for {uid}: {monthly_rate.rate}")
        return monthly_rate

    async def close_month_and_reset_coins(self, month: Optional[str] = None) -> MonthCloseReport:
        """
        Snapshot every non-zero balance into monthly_payouts and reset it

        One transaction per account. Re-running for the same month is a
        no-op for accounts that already have a snapshot.

        Args:
            month: Month tag (YYYY-MM), defaults to the current month
        """
        now = self.clock()
        report = MonthCloseReport(month=month or month_tag(now))

        async with self.db.session() as session:
            result = await session.execute(
                select(Account.uid).where(Account.coins > 0).order_by(Account.uid)
            )
            uids = list(result.scalars().all())

        logger.info(f"Closing month {report.month}: {len(uids)} accounts with coins")

        for uid in uids:
            try:
                async with self.db.transaction() as session:
                    account = await lock_account(session, uid)
                    coins = account.coins
                    payout = None
                    if coins > 0:
                        payout = await snapshot_payout(session, account, report.month, now, self.bands)
            except IntegrityError:
                # A concurrent run inserted the same (uid, month) first
                report.skipped += 1
                continue
            except NotFoundError:
                # Purged between listing and locking
                report.skipped += 1
                continue
            except Exception as e:
                logger.error(f"Month close failed for {uid}: {e}", exc_info=True)
                report.failed.append(uid)
                continue

            if payout is None:
                report.skipped += 1
            else:
                report.processed += 1
                report.total_coins += coins

        logger.info(
            f"Month {report.month} closed: {report.processed} snapshotted, "
            f"{report.skipped} skipped, {len(report.failed)} failed, {report.total_coins} coins"
        )
        return report

    async def claim_monthly_rewards(self, uid: str, month: Optional[str] = None) -> MonthlyClaimResult:
        """
        Snapshot a single account's balance for `month` (player-initiated close)

        Raises:
            InvalidRequestError: If there is nothing to snapshot
        """
        now = self.clock()
        month = month or month_tag(now)

        try:
            async with self.db.transaction() as session:
                account = await lock_account(session, uid)
                existing = await get_payout(session, uid, month)
                if existing is not None:
                    return MonthlyClaimResult(already=True, payout=existing, account=account)

                if account.coins <= 0:
                    raise InvalidRequestError("No coins to claim this month")

                payout = await snapshot_payout(session, account, month, now, self.bands)
        except IntegrityError:
            async with self.db.session() as session:
                account = await get_account(session, uid)
                existing = await get_payout(session, uid, month)
            return MonthlyClaimResult(already=True, payout=existing, account=account)

        logger.info(f"Monthly rewards claimed by {uid} for {month}: {payout.coins_collected} coins")
        return MonthlyClaimResult(already=False, payout=payout, account=account)

    async def list_payouts(self, uid: str) -> List[MonthlyPayout]:
        async with self.db.session() as session:
            return await get_payouts(session, uid)
