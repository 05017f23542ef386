# coding: utf-8
"""
Monthly API Endpoints
Payout rate of the current month, player-initiated month close, payouts
"""

from typing import Optional

from fastapi import APIRouter, Depends

from loguru import logger

from pimaze.api.dependencies import get_current_identity, get_monthly_service
from pimaze.api.schemas import (
    AccountView,
    MonthlyClaimRequest,
    MonthlyClaimResponse,
    MonthlyRateResponse,
    PayoutListResponse,
    PayoutView,
)
from pimaze.database.models import Account
from pimaze.services.monthly_service import MonthlyService

# Create router
router = APIRouter(prefix="/monthly", tags=["monthly"])


@router.get("/rate", response_model=MonthlyRateResponse)
async def get_monthly_rate(
    account: Account = Depends(get_current_identity),
    monthly: MonthlyService = Depends(get_monthly_service),
):
    """Recompute and return the payout rate with its per-factor breakdown"""
    monthly_rate = await monthly.recalc_and_store_monthly_rate(account.uid)
    return MonthlyRateResponse(
        month=account.monthly_key,
        rate=monthly_rate.rate,
        breakdown=monthly_rate.breakdown.to_dict(),
    )


@router.post("/claim", response_model=MonthlyClaimResponse)
async def claim_monthly_rewards(
    request: Optional[MonthlyClaimRequest] = None,
    account: Account = Depends(get_current_identity),
    monthly: MonthlyService = Depends(get_monthly_service),
):
    """
    Snapshot the balance into a pending payout and reset it

    Returns:
        already=True with the existing payout if the month was snapshotted
    """
    month = request.month if request else None
    result = await monthly.claim_monthly_rewards(account.uid, month)

    if not result.already:
        logger.info(f"Monthly payout requested by {account.uid}: {result.payout.month}")

    return MonthlyClaimResponse(
        already=result.already,
        payout=PayoutView.model_validate(result.payout) if result.payout else None,
        user=AccountView.model_validate(result.account),
    )


@router.get("/payouts", response_model=PayoutListResponse)
async def list_payouts(
    account: Account = Depends(get_current_identity),
    monthly: MonthlyService = Depends(get_monthly_service),
):
    """Monthly payouts of the current account, newest month first"""
    payouts = await monthly.list_payouts(account.uid)
    return PayoutListResponse(rows=[PayoutView.model_validate(p) for p in payouts])
