# coding: utf-8
"""
Profile API Endpoints
Pi login, current account and username change
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header

from loguru import logger

from pimaze.api.dependencies import (
    bearer_token,
    get_account_store,
    get_auth_client,
    get_current_identity,
    get_session_service,
)
from pimaze.api.schemas import AccountView, PiVerifyRequest, UserResponse, UsernameUpdateRequest
from pimaze.core.exceptions import AuthError
from pimaze.database.models import Account
from pimaze.services.account_store import AccountStore
from pimaze.services.pi_auth import PiAuthClient
from pimaze.services.session_service import SessionService

# Create router
router = APIRouter(tags=["profile"])


@router.post("/pi/verify", response_model=UserResponse)
async def verify_pi_user(
    request: Optional[PiVerifyRequest] = None,
    authorization: Optional[str] = Header(None),
    auth_client: PiAuthClient = Depends(get_auth_client),
    accounts: AccountStore = Depends(get_account_store),
    sessions: SessionService = Depends(get_session_service),
):
    """
    Verify a Pi access token (body accessToken or bearer header) and
    create/refresh the account

    Returns:
        The account of the verified Pi user
    """
    token = (request.access_token if request else None) or bearer_token(authorization)
    if not token:
        raise AuthError("Missing access token")

    identity = await auth_client.verify_access_token(token)
    account = await accounts.get_or_create(identity.uid, identity.username)
    await sessions.touch_online(account.uid)

    logger.info(f"Pi user verified: {identity.uid} (@{identity.username})")
    return UserResponse(user=AccountView.model_validate(account))


@router.get("/me", response_model=UserResponse)
async def get_me(account: Account = Depends(get_current_identity)):
    """Current account, counters rolled into the current month"""
    return UserResponse(user=AccountView.model_validate(account))


@router.patch("/user/username", response_model=UserResponse)
async def update_username(
    request: UsernameUpdateRequest,
    account: Account = Depends(get_current_identity),
    accounts: AccountStore = Depends(get_account_store),
):
    """
    Change the display name (3-20 characters, unique)

    Raises:
        400 invalid_request: Bad length
        409 username_taken: Name belongs to another account
    """
    account = await accounts.rename(account.uid, request.username)
    return UserResponse(user=AccountView.model_validate(account))
