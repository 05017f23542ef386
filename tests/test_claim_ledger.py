"""
Tests for the idempotency ledger (claim primitive)
"""

import asyncio

import pytest
from sqlalchemy import func, select

from pimaze.core.exceptions import CooldownError, InsufficientFundsError, NotFoundError
from pimaze.database.models import CoinTransaction, RewardClaim, RewardType
from pimaze.services.account_store import AccountStore
from pimaze.services.claim_ledger import ClaimLedger


@pytest.fixture
def ledger(db, clock) -> ClaimLedger:
    return ClaimLedger(db, clock=clock)


async def count_rows(db, model, **filters) -> int:
    stmt = select(func.count()).select_from(model)
    for column, value in filters.items():
        stmt = stmt.where(getattr(model, column) == value)
    async with db.session() as session:
        return (await session.execute(stmt)).scalar_one()


# ===========================
# EXACTLY ONCE
# ===========================


@pytest.mark.asyncio
async def test_first_claim_applies(db, ledger, account):
    """Test that a new nonce credits the balance and records the claim"""
    result = await ledger.claim("u1", RewardType.DAILY_LOGIN, "daily:u1:2026-01-15", 5)

    assert result.applied is True
    assert result.already is False
    assert result.amount == 5
    assert result.account.coins == 5
    assert await count_rows(db, RewardClaim, nonce="daily:u1:2026-01-15") == 1
    assert await count_rows(db, CoinTransaction, uid="u1") == 1


@pytest.mark.asyncio
async def test_repeated_nonce_is_noop(db, ledger, account):
    """Test that a repeated nonce succeeds without touching the balance"""
    await ledger.claim("u1", RewardType.DAILY_LOGIN, "daily:u1:2026-01-15", 5)

    result = await ledger.claim("u1", RewardType.DAILY_LOGIN, "daily:u1:2026-01-15", 5)

    assert result.applied is False
    assert result.already is True
    assert result.account.coins == 5
    assert await count_rows(db, RewardClaim) == 1
    assert await count_rows(db, CoinTransaction) == 1


@pytest.mark.asyncio
async def test_repeated_nonce_with_other_amount(ledger, account):
    """Test that the first applied amount wins for a nonce"""
    await ledger.claim("u1", RewardType.AD_REWARD, "ad:u1:n1", 50)

    result = await ledger.claim("u1", RewardType.AD_REWARD, "ad:u1:n1", 500)

    assert result.applied is False
    assert result.account.coins == 50


@pytest.mark.asyncio
async def test_claim_unknown_account(ledger):
    with pytest.raises(NotFoundError):
        await ledger.claim("ghost", RewardType.DAILY_LOGIN, "daily:ghost:2026-01-15", 5)


# ===========================
# DEBITS
# ===========================


@pytest.mark.asyncio
async def test_negative_claim_debits(ledger, account, set_coins):
    """Test that a negative amount is a debit"""
    await set_coins("u1", 60)

    result = await ledger.claim("u1", RewardType.SKIP_COINS, "skip_coins:u1:k1", -50)

    assert result.applied is True
    assert result.account.coins == 10


@pytest.mark.asyncio
async def test_negative_claim_insufficient_rolls_back(db, ledger, account, set_coins):
    """Test that a failed debit leaves neither a claim row nor a balance change"""
    await set_coins("u1", 49)

    with pytest.raises(InsufficientFundsError):
        await ledger.claim("u1", RewardType.SKIP_COINS, "skip_coins:u1:k1", -50)

    assert await count_rows(db, RewardClaim) == 0
    assert (await AccountStore(db).get("u1")).coins == 49

    # The nonce was not consumed, so it can be retried once funded
    await set_coins("u1", 50)
    result = await ledger.claim("u1", RewardType.SKIP_COINS, "skip_coins:u1:k1", -50)
    assert result.applied is True
    assert result.account.coins == 0


# ===========================
# COOLDOWN
# ===========================


@pytest.mark.asyncio
async def test_cooldown_rejects_new_nonce(ledger, account, clock):
    """Test that a second claim of the same type inside the cooldown is rate-limited"""
    await ledger.claim("u1", RewardType.AD_REWARD, "ad:u1:n1", 50, cooldown_seconds=30)
    clock.advance(seconds=10)

    with pytest.raises(CooldownError) as exc_info:
        await ledger.claim("u1", RewardType.AD_REWARD, "ad:u1:n2", 49, cooldown_seconds=30)

    assert exc_info.value.retry_after == 20
    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_cooldown_repeat_nonce_still_noop(ledger, account, clock):
    """Test that a retried nonce inside the cooldown is a no-op, not a rate limit"""
    await ledger.claim("u1", RewardType.AD_REWARD, "ad:u1:n1", 50, cooldown_seconds=30)
    clock.advance(seconds=1)

    result = await ledger.claim("u1", RewardType.AD_REWARD, "ad:u1:n1", 50, cooldown_seconds=30)

    assert result.already is True
    assert result.account.coins == 50


@pytest.mark.asyncio
async def test_cooldown_expires(ledger, account, clock):
    await ledger.claim("u1", RewardType.AD_REWARD, "ad:u1:n1", 50, cooldown_seconds=30)
    clock.advance(seconds=30)

    result = await ledger.claim("u1", RewardType.AD_REWARD, "ad:u1:n2", 49, cooldown_seconds=30)

    assert result.applied is True
    assert result.account.coins == 99


@pytest.mark.asyncio
async def test_cooldown_is_per_type(ledger, account):
    """Test that a cooldown on one reward type does not block another"""
    await ledger.claim("u1", RewardType.AD_REWARD, "ad:u1:n1", 50, cooldown_seconds=30)

    result = await ledger.claim("u1", RewardType.DAILY_LOGIN, "daily:u1:2026-01-15", 5, cooldown_seconds=30)

    assert result.applied is True


# ===========================
# HISTORY
# ===========================


@pytest.mark.asyncio
async def test_history_newest_first(ledger, account, clock):
    for index in range(3):
        await ledger.claim("u1", RewardType.AD_REWARD, f"ad:u1:n{index}", 10)
        clock.advance(minutes=1)

    claims = await ledger.history("u1", limit=2)

    assert [claim.nonce for claim in claims] == ["ad:u1:n2", "ad:u1:n1"]


# ===========================
# CONCURRENCY
# ===========================


@pytest.mark.asyncio
async def test_concurrent_same_nonce_applies_once(file_db, clock):
    """Test that racing claims with one nonce credit exactly once"""
    await AccountStore(file_db, clock=clock).get_or_create("u1", "alice")
    ledger = ClaimLedger(file_db, clock=clock)

    results = await asyncio.gather(
        *[ledger.claim("u1", RewardType.DAILY_LOGIN, "daily:u1:2026-01-15", 5) for _ in range(8)]
    )

    assert sum(1 for result in results if result.applied) == 1
    assert all(result.account.coins == 5 for result in results if result.already)
    assert await count_rows(file_db, RewardClaim) == 1
    assert await count_rows(file_db, CoinTransaction) == 1
    assert (await AccountStore(file_db, clock=clock).get("u1")).coins == 5


@pytest.mark.asyncio
async def test_concurrent_distinct_nonces_no_lost_update(file_db, clock):
    """Test that concurrent credits to one account all land"""
    await AccountStore(file_db, clock=clock).get_or_create("u1", "alice")
    ledger = ClaimLedger(file_db, clock=clock)

    await asyncio.gather(
        *[ledger.claim("u1", RewardType.AD_REWARD, f"ad:u1:n{index}", 10) for index in range(6)]
    )

    assert (await AccountStore(file_db, clock=clock).get("u1")).coins == 60


@pytest.mark.asyncio
async def test_concurrent_spends_never_overdraw(file_db, clock):
    """Test that two debits racing for one balance cannot both succeed"""
    accounts = AccountStore(file_db, clock=clock)
    await accounts.get_or_create("u1", "alice")
    await accounts.adjust_coins("u1", 50)
    ledger = ClaimLedger(file_db, clock=clock)

    results = await asyncio.gather(
        ledger.claim("u1", RewardType.SKIP_COINS, "skip_coins:u1:a", -50),
        ledger.claim("u1", RewardType.HINT_COINS, "hint_coins:u1:b", -50),
        return_exceptions=True,
    )

    applied = [r for r in results if not isinstance(r, Exception) and r.applied]
    failed = [r for r in results if isinstance(r, InsufficientFundsError)]
    assert len(applied) == 1
    assert len(failed) == 1
    assert (await accounts.get("u1")).coins == 0
