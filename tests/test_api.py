"""
API tests: authentication, error mapping and the game/admin endpoints
"""

from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from api_server import create_app
from config.economy_config import RewardPolicy
from pimaze.core.exceptions import AuthError
from pimaze.services.pi_auth import PiIdentity


class FakeAuthClient:
    """Pi identity stand-in: tok-<uid> is valid"""

    USERS = {"u1": "alice", "u2": "bob"}

    async def verify_access_token(self, token):
        uid = (token or "").replace("tok-", "", 1)
        if not token or uid not in self.USERS:
            raise AuthError("Invalid Pi access token")
        return PiIdentity(uid=uid, username=self.USERS[uid])


ALICE = {"Authorization": "Bearer tok-u1"}
BOB = {"Authorization": "Bearer tok-u2"}
ADMIN = {"X-Admin-Secret": "secret"}


def build_app(db, clock, policy, **overrides):
    options = dict(
        auth_client=FakeAuthClient(),
        policy=policy,
        clock=clock,
        admin_secret="secret",
        rate_limit="10000/minute",
        start_scheduler=False,
    )
    options.update(overrides)
    return create_app(database=db, **options)


@pytest.fixture
async def client(db, clock, policy):
    app = build_app(db, clock, policy)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ===========================
# HEALTH
# ===========================


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"


# ===========================
# AUTH
# ===========================


@pytest.mark.asyncio
async def test_me_requires_token(client):
    """Test that a missing bearer token is 401 with a machine-readable reason"""
    response = await client.get("/api/me")

    assert response.status_code == 401
    assert response.json()["ok"] is False
    assert response.json()["error"] == "unauthorized"


@pytest.mark.asyncio
async def test_me_invalid_token(client):
    response = await client.get("/api/me", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_pi_verify_creates_account(client):
    """Test Pi login with the token in the body"""
    response = await client.post("/api/pi/verify", json={"accessToken": "tok-u1"})

    assert response.status_code == 200
    user = response.json()["user"]
    assert user["uid"] == "u1"
    assert user["username"] == "alice"
    assert user["coins"] == 0
    assert user["monthly_key"] == "2026-01"


@pytest.mark.asyncio
async def test_pi_verify_with_header(client):
    response = await client.post("/api/pi/verify", headers=BOB)

    assert response.status_code == 200
    assert response.json()["user"]["uid"] == "u2"


@pytest.mark.asyncio
async def test_me(client):
    response = await client.get("/api/me", headers=ALICE)

    assert response.status_code == 200
    assert response.json()["user"]["username"] == "alice"


# ===========================
# PROFILE
# ===========================


@pytest.mark.asyncio
async def test_update_username(client):
    response = await client.patch("/api/user/username", json={"username": "maze_queen"}, headers=ALICE)

    assert response.status_code == 200
    assert response.json()["user"]["username"] == "maze_queen"


@pytest.mark.asyncio
async def test_update_username_taken(client):
    """Test that a name owned by another account maps to 409"""
    await client.post("/api/pi/verify", headers=BOB)

    response = await client.patch("/api/user/username", json={"username": "bob"}, headers=ALICE)

    assert response.status_code == 409
    assert response.json()["error"] == "username_taken"


@pytest.mark.asyncio
async def test_update_username_too_short(client):
    response = await client.patch("/api/user/username", json={"username": "ab"}, headers=ALICE)

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


# ===========================
# REWARDS
# ===========================


@pytest.mark.asyncio
async def test_daily_login_idempotent(client):
    first = await client.post("/api/rewards/daily-login", headers=ALICE)
    second = await client.post("/api/rewards/daily-login", headers=ALICE)

    assert first.status_code == 200
    assert first.json()["already"] is False
    assert first.json()["amount"] == 5
    assert first.json()["user"]["coins"] == 5
    assert second.status_code == 200
    assert second.json()["already"] is True
    assert second.json()["user"]["coins"] == 5


@pytest.mark.asyncio
async def test_level_complete(client):
    response = await client.post("/api/rewards/level-complete", json={"level": 7}, headers=ALICE)

    assert response.json()["user"]["coins"] == 1
    assert response.json()["user"]["monthly_levels_completed"] == 1


@pytest.mark.asyncio
async def test_level_complete_malformed(client):
    """Test that a malformed body maps to 400 invalid_request"""
    response = await client.post("/api/rewards/level-complete", json={"level": "abc"}, headers=ALICE)

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "invalid_request", "detail": "Malformed request"}


@pytest.mark.asyncio
async def test_ad_reward_cooldown(db, clock):
    """Test that the ad cooldown maps to 429 with Retry-After"""
    app = build_app(db, clock, RewardPolicy())
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post("/api/rewards/ad", json={"nonce": "imp-1"}, headers=ALICE)
        second = await client.post("/api/rewards/ad", json={"nonce": "imp-2"}, headers=ALICE)
        retry = await client.post("/api/rewards/ad", json={"nonce": "imp-1"}, headers=ALICE)

    assert first.status_code == 200
    assert first.json()["amount"] == 50
    assert second.status_code == 429
    assert second.json()["error"] == "cooldown"
    assert second.json()["retry_after"] == 30
    assert second.headers["Retry-After"] == "30"
    assert retry.status_code == 200
    assert retry.json()["already"] is True


@pytest.mark.asyncio
async def test_ad_reward_missing_nonce(client):
    response = await client.post("/api/rewards/ad", json={}, headers=ALICE)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_invite(client):
    await client.get("/api/me", headers=BOB)

    response = await client.post("/api/rewards/invite", json={"inviteeUid": "u2"}, headers=ALICE)
    self_invite = await client.post("/api/rewards/invite", json={"invitee_uid": "u1"}, headers=ALICE)

    assert response.json()["user"]["coins"] == 10
    assert self_invite.status_code == 400


@pytest.mark.asyncio
async def test_invite_unknown_player(client):
    response = await client.post("/api/rewards/invite", json={"inviteeUid": "u9"}, headers=ALICE)
    me = await client.get("/api/me", headers=ALICE)

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
    assert me.json()["user"]["coins"] == 0


@pytest.mark.asyncio
async def test_claim_history(client):
    await client.post("/api/rewards/daily-login", headers=ALICE)
    await client.post("/api/rewards/level-complete", json={"level": 1}, headers=ALICE)

    response = await client.get("/api/rewards/history?limit=10", headers=ALICE)

    rows = response.json()["rows"]
    assert len(rows) == 2
    assert {row["type"] for row in rows} == {"daily_login", "level_complete"}


@pytest.mark.asyncio
async def test_unhandled_error_is_500(db, clock, policy):
    """Test that unexpected failures return a generic 500 without internals"""
    app = build_app(db, clock, policy)
    transport = ASGITransport(app=app, raise_app_exceptions=False)

    with patch(
        "pimaze.services.reward_engine.RewardEngine.claim_daily_login",
        side_effect=RuntimeError("db exploded"),
    ):
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/api/rewards/daily-login", headers=ALICE)

    assert response.status_code == 500
    assert response.json()["error"] == "internal_error"
    assert "exploded" not in response.text


# ===========================
# CONSUMABLES
# ===========================


@pytest.mark.asyncio
async def test_consume_free_then_exhausted(client):
    """Test the free allowance and the explicit errors once it runs out"""
    for _ in range(3):
        response = await client.post("/api/consume", json={"kind": "skip", "mode": "free"}, headers=ALICE)
        assert response.status_code == 200

    assert response.json()["free"]["skip"] == 0

    exhausted = await client.post("/api/consume", json={"item": "skip", "mode": "free"}, headers=ALICE)
    broke = await client.post("/api/consume", json={"kind": "skip", "mode": "coins"}, headers=ALICE)

    assert exhausted.status_code == 400
    assert exhausted.json()["error"] == "no_free_uses_left"
    assert broke.status_code == 400
    assert broke.json()["error"] == "insufficient_funds"


@pytest.mark.asyncio
async def test_consume_shortcut_endpoint(client):
    response = await client.post("/api/hint", headers=ALICE)

    assert response.status_code == 200
    assert response.json()["mode"] == "free"
    assert response.json()["free"]["hint"] == 2


@pytest.mark.asyncio
async def test_consume_with_coins(client):
    await client.post("/api/pi/verify", headers=ALICE)
    await client.post("/admin/users/u1/adjust-coins", json={"delta": 60}, headers=ADMIN)

    response = await client.post(
        "/api/restart", json={"mode": "coins", "nonce": "buy-1"}, headers=ALICE
    )
    repeat = await client.post(
        "/api/restart", json={"mode": "coins", "nonce": "buy-1"}, headers=ALICE
    )

    assert response.json()["user"]["coins"] == 10
    assert repeat.json()["already"] is True
    assert repeat.json()["user"]["coins"] == 10


# ===========================
# MONTHLY
# ===========================


@pytest.mark.asyncio
async def test_monthly_rate(client):
    response = await client.get("/api/monthly/rate", headers=ALICE)

    assert response.status_code == 200
    assert response.json()["month"] == "2026-01"
    assert response.json()["rate"] == 50
    assert response.json()["breakdown"]["base"] == 50


@pytest.mark.asyncio
async def test_monthly_claim_and_payouts(client):
    await client.post("/api/rewards/daily-login", headers=ALICE)

    claim = await client.post("/api/monthly/claim", headers=ALICE)
    again = await client.post("/api/monthly/claim", headers=ALICE)
    payouts = await client.get("/api/monthly/payouts", headers=ALICE)

    assert claim.status_code == 200
    assert claim.json()["payout"]["coins_collected"] == 5
    assert claim.json()["payout"]["status"] == "pending"
    assert claim.json()["user"]["coins"] == 0
    assert again.json()["already"] is True
    assert len(payouts.json()["rows"]) == 1


# ===========================
# SESSIONS
# ===========================


@pytest.mark.asyncio
async def test_session_lifecycle(client):
    started = await client.post(
        "/api/session/start",
        json={"sessionId": "s-1"},
        headers={**ALICE, "User-Agent": "PiBrowser/2.0"},
    )
    pinged = await client.post("/api/session/ping", headers=ALICE)
    ended = await client.post("/api/session/end", headers=ALICE)

    assert started.json()["session"]["session_id"] == "s-1"
    assert started.json()["session"]["user_agent"] == "PiBrowser/2.0"
    assert pinged.json()["session"]["session_id"] == "s-1"
    assert ended.json()["session"] is None


# ===========================
# ADMIN
# ===========================


@pytest.mark.asyncio
async def test_admin_requires_secret(client):
    missing = await client.get("/admin/stats")
    wrong = await client.get("/admin/stats", headers={"X-Admin-Secret": "guess"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert wrong.json()["error"] == "unauthorized"


@pytest.mark.asyncio
async def test_admin_not_configured(db, clock, policy):
    """Test that admin endpoints are disabled without a configured secret"""
    app = build_app(db, clock, policy, admin_secret="")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/admin/stats", headers=ADMIN)

    assert response.status_code == 500


@pytest.mark.asyncio
async def test_admin_stats_and_users(client):
    await client.post("/api/rewards/daily-login", headers=ALICE)
    await client.post("/api/pi/verify", headers=BOB)

    stats = await client.get("/admin/stats", headers=ADMIN)
    users = await client.get("/admin/users?search=bo", headers=ADMIN)
    detail = await client.get("/admin/users/u1", headers=ADMIN)

    assert stats.json()["data"]["users"] == 2
    assert stats.json()["data"]["total_coins"] == 5
    assert stats.json()["data"]["online"] == 2
    assert users.json()["total"] == 1
    assert users.json()["rows"][0]["uid"] == "u2"
    assert detail.json()["data"]["claims_total"] == 1
    assert detail.json()["data"]["session"]["session_id"] == "auto"


@pytest.mark.asyncio
async def test_admin_unknown_user(client):
    response = await client.get("/admin/users/ghost", headers=ADMIN)

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_admin_adjust_coins_clamps(client):
    await client.post("/api/pi/verify", headers=ALICE)

    response = await client.post("/admin/users/u1/adjust-coins", json={"delta": -100}, headers=ADMIN)

    assert response.status_code == 200
    assert response.json()["user"]["coins"] == 0


@pytest.mark.asyncio
async def test_admin_month_close(client):
    await client.post("/api/rewards/daily-login", headers=ALICE)

    first = await client.post("/admin/month-close", json={"month": "2026-01"}, headers=ADMIN)
    second = await client.post("/admin/month-close", json={"month": "2026-01"}, headers=ADMIN)

    assert first.json()["processed"] == 1
    assert first.json()["total_coins"] == 5
    assert second.json()["processed"] == 0


@pytest.mark.asyncio
async def test_admin_month_close_bad_month(client):
    response = await client.post("/admin/month-close", json={"month": "2026-13"}, headers=ADMIN)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_admin_delete_and_reset(client):
    await client.post("/api/consume", json={"kind": "skip"}, headers=ALICE)

    reset = await client.post("/admin/users/u1/reset-free", headers=ADMIN)
    deleted = await client.delete("/admin/users/u1", headers=ADMIN)
    gone = await client.get("/admin/users/u1", headers=ADMIN)

    assert reset.json()["user"]["free_skips_used"] == 0
    assert deleted.json() == {"ok": True}
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_admin_charts(client):
    await client.post("/api/rewards/daily-login", headers=ALICE)

    coins = await client.get("/admin/charts/coins?days=2", headers=ADMIN)
    active = await client.get("/admin/charts/active?days=2", headers=ADMIN)

    assert coins.json()["rows"][-1] == {"date": "2026-01-15", "earned": 5, "spent": 0}
    assert active.json()["rows"] == [
        {"date": "2026-01-14", "active": 0},
        {"date": "2026-01-15", "active": 1},
    ]


# ===========================
# RATE LIMIT
# ===========================


@pytest.mark.asyncio
async def test_rate_limit(db, clock, policy):
    app = build_app(db, clock, policy, rate_limit="2/minute")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        responses = [await client.get("/health") for _ in range(3)]

    assert [r.status_code for r in responses] == [200, 200, 429]
