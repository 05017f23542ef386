# coding: utf-8
"""
Consumables API Endpoints
Skip / hint / restart, paid with the free allowance, coins or an ad
"""

from typing import Optional

from fastapi import APIRouter, Depends

from pimaze.api.dependencies import get_current_identity, get_reward_engine
from pimaze.api.schemas import AccountView, ConsumeRequest, ConsumeResponse, SpendRequest
from pimaze.database.models import Account, ConsumableKind
from pimaze.services.reward_engine import ConsumeResult, RewardEngine

# Create router
router = APIRouter(tags=["consumables"])


def consume_response(result: ConsumeResult) -> ConsumeResponse:
    return ConsumeResponse(
        ok=result.ok,
        mode=result.mode.value,
        already=result.already,
        user=AccountView.model_validate(result.account),
        free=result.free_left,
    )


@router.post("/consume", response_model=ConsumeResponse)
async def consume(
    request: ConsumeRequest,
    account: Account = Depends(get_current_identity),
    engine: RewardEngine = Depends(get_reward_engine),
):
    """
    Use a consumable

    Body:
        kind (or item): skip / hint / restart
        mode: free / coins / ad (no automatic fallback)
        nonce: Required for ad, optional idempotency key for coins

    Raises:
        400 no_free_uses_left / insufficient_funds / invalid_request
    """
    result = await engine.consume(account.uid, request.kind, request.mode, request.nonce)
    return consume_response(result)


def _kind_endpoint(kind: ConsumableKind):
    async def endpoint(
        request: Optional[SpendRequest] = None,
        account: Account = Depends(get_current_identity),
        engine: RewardEngine = Depends(get_reward_engine),
    ):
        request = request or SpendRequest()
        result = await engine.consume(account.uid, kind, request.mode, request.nonce)
        return consume_response(result)

    endpoint.__name__ = f"use_{kind.value}"
    endpoint.__doc__ = f"Use a {kind.value} (shortcut for /consume)"
    return endpoint


for _kind in ConsumableKind:
    router.add_api_route(
        f"/{_kind.value}",
        _kind_endpoint(_kind),
        methods=["POST"],
        response_model=ConsumeResponse,
    )
