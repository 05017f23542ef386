"""
Pytest configuration and fixtures for PiMaze Backend tests
"""

from datetime import datetime, timedelta, UTC
from typing import AsyncGenerator

import pytest

from config.economy_config import RewardPolicy
from pimaze.database.engine import Database
from pimaze.database.models import Account
from pimaze.services.account_store import AccountStore
from pimaze.services.monthly_service import MonthlyService
from pimaze.services.reward_engine import RewardEngine


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Mid-month, so month boundaries are always explicit in tests
FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Controllable UTC clock passed to services"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> RewardPolicy:
    """Default economy numbers with the ad cooldown disabled"""
    return RewardPolicy(ad_cooldown_seconds=0)


@pytest.fixture(scope="function")
async def db() -> AsyncGenerator[Database, None]:
    """
    Create test database (in-memory, fresh schema per test)
    """
    database = Database(TEST_DATABASE_URL, environment="testing")
    await database.init()
    await database.create_all()

    yield database

    await database.drop_all()
    await database.close()


@pytest.fixture(scope="function")
async def file_db(tmp_path) -> AsyncGenerator[Database, None]:
    """
    File-backed test database: every session gets its own connection,
    so concurrent requests really contend
    """
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'pimaze_test.db'}", environment="testing")
    await database.init()
    await database.create_all()

    yield database

    await database.close()


@pytest.fixture
def accounts(db, clock) -> AccountStore:
    return AccountStore(db, clock=clock)


@pytest.fixture
def engine(db, policy, clock) -> RewardEngine:
    return RewardEngine(db, policy=policy, clock=clock)


@pytest.fixture
def monthly(db, clock) -> MonthlyService:
    return MonthlyService(db, clock=clock)


@pytest.fixture
async def account(accounts) -> Account:
    """Fresh account u1 (@alice) with zero coins"""
    return await accounts.get_or_create("u1", "alice")


@pytest.fixture
def set_coins(db):
    """Set a balance directly, bypassing the coin ledger"""

    async def _set(uid: str, coins: int) -> None:
        async with db.transaction() as session:
            account = await session.get(Account, uid)
            account.coins = coins

    return _set
