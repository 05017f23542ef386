# coding: utf-8
"""
Admin API Endpoints
Stats, online users, user management, month close and charts.
All endpoints require the X-Admin-Secret header.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from loguru import logger

from pimaze.api.dependencies import (
    get_account_store,
    get_admin_service,
    get_monthly_service,
    verify_admin_secret,
)
from pimaze.api.schemas import (
    AccountView,
    AdjustCoinsRequest,
    ClaimView,
    MonthCloseRequest,
    PayoutView,
    SessionView,
    UserResponse,
)
from pimaze.services.account_store import AccountStore
from pimaze.services.admin_service import AdminService
from pimaze.services.monthly_service import MonthlyService

# Create router
router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(verify_admin_secret)],
)


# ===========================
# STATS
# ===========================


@router.get("/stats")
async def get_stats(
    minutes: int = Query(5, ge=1, le=1440, description="Online window in minutes"),
    admin: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    return {"ok": True, "data": await admin.get_stats(online_minutes=minutes)}


@router.get("/online")
async def list_online(
    minutes: int = Query(5, ge=1, le=1440),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    rows = await admin.list_online_users(minutes=minutes, limit=limit, offset=offset)
    return {"ok": True, "rows": rows, "count": len(rows)}


# ===========================
# USERS
# ===========================


@router.get("/users")
async def list_users(
    search: str = Query("", description="Substring of uid or username"),
    limit: int = Query(25, ge=1, le=200),
    offset: int = Query(0, ge=0),
    order: str = Query("updated_at_desc"),
    admin: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    page = await admin.list_users(search=search, limit=limit, offset=offset, order=order)
    return {
        "ok": True,
        "rows": [AccountView.model_validate(account).model_dump(mode="json") for account in page["rows"]],
        "total": page["total"],
        "limit": page["limit"],
        "offset": page["offset"],
    }


@router.get("/users/{uid}")
async def get_user(uid: str, admin: AdminService = Depends(get_admin_service)) -> Dict[str, Any]:
    """Account with its latest claims, payouts and online session"""
    data = await admin.get_user(uid)
    online = data["session"]
    return {
        "ok": True,
        "data": {
            "user": AccountView.model_validate(data["account"]).model_dump(mode="json"),
            "claims": [ClaimView.model_validate(c).model_dump(mode="json") for c in data["claims"]],
            "claims_total": data["claims_total"],
            "payouts": [PayoutView.model_validate(p).model_dump(mode="json") for p in data["payouts"]],
            "session": SessionView.model_validate(online).model_dump(mode="json") if online else None,
            "levels_rewarded": data["levels_rewarded"],
        },
    }


@router.delete("/users/{uid}")
async def delete_user(uid: str, admin: AdminService = Depends(get_admin_service)) -> Dict[str, Any]:
    """Purge an account and everything it owns"""
    await admin.delete_user(uid)
    return {"ok": True}


@router.post("/users/{uid}/reset-free", response_model=UserResponse)
async def reset_free(uid: str, admin: AdminService = Depends(get_admin_service)):
    account = await admin.reset_free_counters(uid)
    return UserResponse(user=AccountView.model_validate(account))


@router.post("/users/{uid}/adjust-coins", response_model=UserResponse)
async def adjust_coins(
    uid: str,
    request: AdjustCoinsRequest,
    accounts: AccountStore = Depends(get_account_store),
):
    """Signed coin adjustment, clamped at zero"""
    account = await accounts.adjust_coins(uid, request.delta)
    logger.warning(f"Admin adjusted coins of {uid} by {request.delta:+d}")
    return UserResponse(user=AccountView.model_validate(account))


# ===========================
# MONTH CLOSE
# ===========================


@router.post("/month-close")
async def month_close(
    request: Optional[MonthCloseRequest] = None,
    monthly: MonthlyService = Depends(get_monthly_service),
) -> Dict[str, Any]:
    """
    Snapshot every non-zero balance of `month` (default: current month)
    into pending payouts and reset it. Safe to re-run.
    """
    month = request.month if request else None
    report = await monthly.close_month_and_reset_coins(month)
    return report.to_dict()


# ===========================
# CHARTS
# ===========================


@router.get("/charts/coins")
async def chart_coins(
    days: int = Query(7, ge=1, le=365),
    admin: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    return {"ok": True, "rows": await admin.chart_coins(days=days)}


@router.get("/charts/active")
async def chart_active(
    days: int = Query(7, ge=1, le=365),
    admin: AdminService = Depends(get_admin_service),
) -> Dict[str, Any]:
    return {"ok": True, "rows": await admin.chart_active_users(days=days)}
