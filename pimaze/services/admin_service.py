# coding: utf-8
"""
Admin reporting

Read paths over the economy tables (user listing, online users, stats,
daily charts) plus the two admin mutations: purge an account and reset its
free consumable allowance.
"""

from datetime import datetime, timedelta, date
from typing import Any, Callable, Dict, List

from sqlalchemy import select, func, delete, or_
from loguru import logger

from pimaze.core.exceptions import NotFoundError
from pimaze.database import crud
from pimaze.database.engine import Database
from pimaze.database.models import (
    Account,
    CoinTransaction,
    LevelReward,
    MonthlyPayout,
    PayoutStatus,
    Referral,
    RewardClaim,
    UserSession,
    utcnow,
)


USER_ORDERS = {
    "updated_at_desc": Account.updated_at.desc(),
    "created_at_desc": Account.created_at.desc(),
    "coins_desc": Account.coins.desc(),
    "username_asc": Account.username.asc(),
}


def _day_key(value: Any) -> str:
    """func.date() is a string on SQLite and a date on PostgreSQL"""
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value)[:10]


def _day_range(today: date, days: int) -> List[str]:
    return [(today - timedelta(days=offset)).isoformat() for offset in range(days - 1, -1, -1)]


class AdminService:
    """Admin panel queries"""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    # ===========================
    # USERS
    # ===========================

    async def list_users(
        self,
        search: str = "",
        limit: int = 25,
        offset: int = 0,
        order: str = "updated_at_desc",
    ) -> Dict[str, Any]:
        """
        List accounts with optional search by uid/username

        Args:
            search: Substring of uid or username
            limit: Page size (1-200)
            offset: Page offset
            order: One of USER_ORDERS

        Returns:
            Dict with rows and total count
        """
        limit = max(1, min(200, limit))
        offset = max(0, offset)

        conditions = []
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(Account.username.ilike(pattern), Account.uid.ilike(pattern)))

        async with self.db.session() as session:
            total = (
                await session.execute(select(func.count()).select_from(Account).where(*conditions))
            ).scalar_one()

            stmt = (
                select(Account)
                .where(*conditions)
                .order_by(USER_ORDERS.get(order, USER_ORDERS["updated_at_desc"]), Account.uid)
                .limit(limit)
                .offset(offset)
            )
            rows = list((await session.execute(stmt)).scalars().all())

        return {"rows": rows, "total": total, "limit": limit, "offset": offset}

    async def get_user(self, uid: str, claims_limit: int = 20) -> Dict[str, Any]:
        """
        Account with its latest claims, payouts and online session

        Raises:
            NotFoundError: If uid is unknown
        """
        async with self.db.session() as session:
            account = await crud.get_account(session, uid)
            if account is None:
                raise NotFoundError(f"Account {uid} not found")

            claims = await crud.get_claims(session, uid, limit=claims_limit)
            claims_total = await crud.count_claims(session, uid)
            payouts = await crud.get_payouts(session, uid)
            online = (
                await session.execute(select(UserSession).where(UserSession.uid == uid))
            ).scalar_one_or_none()
            levels = (
                await session.execute(
                    select(func.count()).select_from(LevelReward).where(LevelReward.uid == uid)
                )
            ).scalar_one()

        return {
            "account": account,
            "claims": claims,
            "claims_total": claims_total,
            "payouts": payouts,
            "session": online,
            "levels_rewarded": levels,
        }

    async def delete_user(self, uid: str) -> None:
        """
        Purge an account and everything it owns

        Raises:
            NotFoundError: If uid is unknown
        """
        async with self.db.transaction() as session:
            await crud.lock_account(session, uid)

            for model in (RewardClaim, LevelReward, CoinTransaction, MonthlyPayout, UserSession):
                await session.execute(delete(model).where(model.uid == uid))
            await session.execute(
                delete(Referral).where(or_(Referral.inviter_uid == uid, Referral.invitee_uid == uid))
            )
            await session.execute(delete(Account).where(Account.uid == uid))

        logger.warning(f"Account {uid} purged by admin")

    async def reset_free_counters(self, uid: str) -> Account:
        """Give the account its full free allowance back"""
        async with self.db.transaction() as session:
            account = await crud.lock_account(session, uid)
            account.free_skips_used = 0
            account.free_hints_used = 0
            account.free_restarts_used = 0

        logger.info(f"Free consumable counters reset for {uid}")
        return account

    # ===========================
    # STATS
    # ===========================

    async def get_stats(self, online_minutes: int = 5) -> Dict[str, int]:
        """
        Overall economy statistics

        Returns:
            Dict with users, online, total_coins, claims_today, pending_payouts
        """
        now = self.clock()
        online_since = now - timedelta(minutes=online_minutes)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        async with self.db.session() as session:
            users = (await session.execute(select(func.count()).select_from(Account))).scalar_one()
            online = (
                await session.execute(
                    select(func.count()).select_from(UserSession).where(UserSession.last_seen_at > online_since)
                )
            ).scalar_one()
            total_coins = (await session.execute(select(func.sum(Account.coins)))).scalar()
            claims_today = (
                await session.execute(
                    select(func.count()).select_from(RewardClaim).where(RewardClaim.created_at >= day_start)
                )
            ).scalar_one()
            pending_payouts = (
                await session.execute(
                    select(func.count())
                    .select_from(MonthlyPayout)
                    .where(MonthlyPayout.status == PayoutStatus.PENDING.value)
                )
            ).scalar_one()

        return {
            "users": users,
            "online": online,
            "online_minutes": online_minutes,
            "total_coins": int(total_coins or 0),
            "claims_today": claims_today,
            "pending_payouts": pending_payouts,
        }

    async def list_online_users(
        self, minutes: int = 5, limit: int = 50, offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Accounts seen within the last `minutes`, most recent first"""
        online_since = self.clock() - timedelta(minutes=minutes)

        stmt = (
            select(
                Account.uid,
                Account.username,
                Account.coins,
                UserSession.last_seen_at,
                UserSession.started_at,
                UserSession.user_agent,
            )
            .join(Account, Account.uid == UserSession.uid)
            .where(UserSession.last_seen_at > online_since)
            .order_by(UserSession.last_seen_at.desc())
            .limit(limit)
            .offset(offset)
        )

        async with self.db.session() as session:
            rows = (await session.execute(stmt)).all()

        return [dict(row._mapping) for row in rows]

    # ===========================
    # CHARTS
    # ===========================

    async def chart_coins(self, days: int = 7) -> List[Dict[str, Any]]:
        """
        Coins earned and spent per day for the last `days` days

        Returns:
            One row per day (oldest first), zero-filled
        """
        days = max(1, min(365, days))
        now = self.clock()
        today = now.date()
        start = datetime.combine(today - timedelta(days=days - 1), datetime.min.time(), tzinfo=now.tzinfo)
        day = func.date(CoinTransaction.created_at)

        stmt = (
            select(
                day.label("date"),
                func.sum(CoinTransaction.amount).filter(CoinTransaction.amount > 0).label("earned"),
                func.sum(CoinTransaction.amount).filter(CoinTransaction.amount < 0).label("spent"),
            )
            .where(CoinTransaction.created_at >= start)
            .group_by(day)
        )

        async with self.db.session() as session:
            rows = (await session.execute(stmt)).all()

        by_day = {_day_key(row.date): row for row in rows}
        chart = []
        for key in _day_range(today, days):
            row = by_day.get(key)
            chart.append({
                "date": key,
                "earned": int(row.earned or 0) if row else 0,
                "spent": -int(row.spent or 0) if row else 0,
            })
        return chart

    async def chart_active_users(self, days: int = 7) -> List[Dict[str, Any]]:
        """
        Distinct accounts with at least one claim per day

        Returns:
            One row per day (oldest first), zero-filled
        """
        days = max(1, min(365, days))
        now = self.clock()
        today = now.date()
        start = datetime.combine(today - timedelta(days=days - 1), datetime.min.time(), tzinfo=now.tzinfo)
        day = func.date(RewardClaim.created_at)

        stmt = (
            select(day.label("date"), func.count(func.distinct(RewardClaim.uid)).label("active"))
            .where(RewardClaim.created_at >= start)
            .group_by(day)
        )

        async with self.db.session() as session:
            rows = (await session.execute(stmt)).all()

        by_day = {_day_key(row.date): int(row.active) for row in rows}
        return [{"date": key, "active": by_day.get(key, 0)} for key in _day_range(today, days)]
