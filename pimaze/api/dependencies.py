# coding: utf-8
"""
FastAPI dependencies

Services are built per request from the collaborators the application
factory stores on app.state (database, Pi client, economy policy, clock).

Usage:
    @router.get("/me")
    async def me(account: Account = Depends(get_current_identity)):
        ...
"""
import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from loguru import logger

from config.sentry import set_user_context
from pimaze.core.exceptions import AuthError
from pimaze.database.engine import Database
from pimaze.database.models import Account
from pimaze.services.account_store import AccountStore
from pimaze.services.admin_service import AdminService
from pimaze.services.claim_ledger import ClaimLedger
from pimaze.services.monthly_service import MonthlyService
from pimaze.services.pi_auth import PiAuthClient
from pimaze.services.reward_engine import RewardEngine
from pimaze.services.session_service import SessionService


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_auth_client(request: Request) -> PiAuthClient:
    return request.app.state.auth_client


def get_account_store(request: Request, db: Database = Depends(get_database)) -> AccountStore:
    return AccountStore(db, clock=request.app.state.clock)


def get_claim_ledger(request: Request, db: Database = Depends(get_database)) -> ClaimLedger:
    return ClaimLedger(db, clock=request.app.state.clock)


def get_reward_engine(request: Request, db: Database = Depends(get_database)) -> RewardEngine:
    state = request.app.state
    return RewardEngine(db, policy=state.reward_policy, bands=state.rate_bands, clock=state.clock)


def get_monthly_service(request: Request, db: Database = Depends(get_database)) -> MonthlyService:
    state = request.app.state
    return MonthlyService(db, bands=state.rate_bands, clock=state.clock)


def get_session_service(request: Request, db: Database = Depends(get_database)) -> SessionService:
    return SessionService(db, clock=request.app.state.clock)


def get_admin_service(request: Request, db: Database = Depends(get_database)) -> AdminService:
    return AdminService(db, clock=request.app.state.clock)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Strip the "Bearer " prefix (case-insensitive)"""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


async def get_current_identity(
    authorization: Optional[str] = Header(None),
    auth_client: PiAuthClient = Depends(get_auth_client),
    accounts: AccountStore = Depends(get_account_store),
    monthly: MonthlyService = Depends(get_monthly_service),
    sessions: SessionService = Depends(get_session_service),
) -> Account:
    """
    Authenticate the request with a Pi access token

    Bearer token -> Pi /v2/me -> account upsert -> monthly rollover ->
    online heartbeat.

    Returns:
        Account: Current account, counters on the current month

    Raises:
        AuthError: Missing, invalid or unverifiable token
    """
    token = bearer_token(authorization)
    if not token:
        raise AuthError("Missing bearer token")

    identity = await auth_client.verify_access_token(token)
    set_user_context(identity.uid, identity.username)

    await accounts.get_or_create(identity.uid, identity.username)
    account = await monthly.ensure_monthly_key(identity.uid)
    await sessions.touch_online(identity.uid)

    return account


async def verify_admin_secret(
    request: Request,
    x_admin_secret: Optional[str] = Header(None, description="Admin secret"),
) -> None:
    """
    Verify the admin secret header

    Headers:
        X-Admin-Secret: your-admin-secret

    Raises:
        HTTPException 401: If the secret is missing or invalid
        HTTPException 500: If no admin secret is configured
    """
    expected = request.app.state.admin_secret

    if not expected:
        logger.error("ADMIN_SECRET not configured in .env")
        raise HTTPException(status_code=500, detail="Admin authentication not configured")

    if not x_admin_secret:
        logger.warning("Admin secret missing in request")
        raise HTTPException(status_code=401, detail="Missing X-Admin-Secret header")

    if not hmac.compare_digest(x_admin_secret.encode(), expected.encode()):
        logger.warning("Invalid admin secret attempt")
        raise HTTPException(status_code=401, detail="Invalid admin secret")
