# coding: utf-8
"""
Rewards API Endpoints
Idempotent coin rewards: daily login, level complete, rewarded ads, invites
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from loguru import logger

from pimaze.api.dependencies import get_claim_ledger, get_current_identity, get_reward_engine
from pimaze.api.schemas import (
    AccountView,
    AdRewardRequest,
    ClaimHistoryResponse,
    ClaimResponse,
    ClaimView,
    InviteRequest,
    LevelCompleteRequest,
)
from pimaze.core.exceptions import EconomyError
from pimaze.database.models import Account
from pimaze.services.claim_ledger import ClaimLedger, ClaimResult
from pimaze.services.reward_engine import RewardEngine

# Create router
router = APIRouter(prefix="/rewards", tags=["rewards"])


def claim_response(result: ClaimResult) -> ClaimResponse:
    return ClaimResponse(
        already=result.already,
        amount=result.amount,
        user=AccountView.model_validate(result.account),
    )


# ===========================
# ENDPOINTS
# ===========================


@router.post("/daily-login", response_model=ClaimResponse)
async def claim_daily_login(
    account: Account = Depends(get_current_identity),
    engine: RewardEngine = Depends(get_reward_engine),
):
    """
    Daily login bonus (once per UTC day)

    Returns:
        already=True with an unchanged balance on a repeat the same day
    """
    result = await engine.claim_daily_login(account.uid)
    return claim_response(result)


@router.post("/level-complete", response_model=ClaimResponse)
async def claim_level_complete(
    request: LevelCompleteRequest,
    account: Account = Depends(get_current_identity),
    engine: RewardEngine = Depends(get_reward_engine),
):
    """Level bonus, paid once per level"""
    result = await engine.claim_level_complete(account.uid, request.level)
    return claim_response(result)


@router.post("/ad", response_model=ClaimResponse)
async def claim_ad_reward(
    request: AdRewardRequest,
    account: Account = Depends(get_current_identity),
    engine: RewardEngine = Depends(get_reward_engine),
):
    """
    Rewarded ad impression

    Body:
        nonce: Client-generated id of the ad impression
    """
    result = await engine.claim_ad_reward(account.uid, request.nonce)
    return claim_response(result)


@router.post("/invite", response_model=ClaimResponse)
async def claim_invite(
    request: InviteRequest,
    account: Account = Depends(get_current_identity),
    engine: RewardEngine = Depends(get_reward_engine),
):
    """Invite bonus for the current account, once per invited player"""
    result = await engine.claim_invite(account.uid, request.invitee_uid)
    return claim_response(result)


@router.get("/history", response_model=ClaimHistoryResponse)
async def get_claim_history(
    account: Account = Depends(get_current_identity),
    ledger: ClaimLedger = Depends(get_claim_ledger),
    limit: int = Query(50, ge=1, le=100, description="Number of claims to return"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
):
    """Reward claims of the current account, newest first"""
    try:
        claims = await ledger.history(account.uid, limit=limit, offset=offset)
        return ClaimHistoryResponse(
            rows=[ClaimView.model_validate(claim) for claim in claims],
            limit=limit,
            offset=offset,
        )

    except EconomyError:
        raise
    except Exception as e:
        logger.exception(f"Error fetching claim history for {account.uid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch claim history")
