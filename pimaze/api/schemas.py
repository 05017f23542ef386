# coding: utf-8
"""
Request / response models of the game API
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ===========================
# VIEWS
# ===========================


class AccountView(BaseModel):
    """Account as seen by the game client"""

    model_config = ConfigDict(from_attributes=True)

    uid: str
    username: str
    coins: int

    free_skips_used: int
    free_hints_used: int
    free_restarts_used: int

    monthly_key: Optional[str]
    monthly_coins_earned: int
    monthly_login_days: int
    monthly_levels_completed: int
    monthly_skips_used: int
    monthly_hints_used: int
    monthly_restarts_used: int
    monthly_ads_watched: int
    monthly_valid_invites: int
    monthly_win_streak: int
    monthly_best_win_streak: int
    monthly_final_rate: int
    monthly_rate_breakdown: Optional[Dict[str, int]] = None

    created_at: datetime
    updated_at: datetime


class ClaimView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    nonce: str
    amount: int
    created_at: datetime


class PayoutView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month: str
    coins_collected: int
    final_rate: int
    pi_amount_equivalent: Optional[Decimal] = None
    status: str
    txid: Optional[str] = None
    created_at: datetime


class SessionView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    started_at: datetime
    last_seen_at: datetime


# ===========================
# RESPONSES
# ===========================


class UserResponse(BaseModel):
    ok: bool = True
    user: AccountView


class ClaimResponse(BaseModel):
    """Idempotent claim outcome"""

    ok: bool = True
    already: bool
    amount: int = 0
    user: AccountView


class ConsumeResponse(BaseModel):
    """Consumable use outcome"""

    ok: bool
    mode: str
    already: bool
    user: AccountView
    free: Dict[str, int]


class ClaimHistoryResponse(BaseModel):
    ok: bool = True
    rows: List[ClaimView]
    limit: int
    offset: int


class MonthlyRateResponse(BaseModel):
    ok: bool = True
    month: Optional[str]
    rate: int
    breakdown: Dict[str, int]


class MonthlyClaimResponse(BaseModel):
    ok: bool = True
    already: bool
    payout: Optional[PayoutView]
    user: AccountView


class PayoutListResponse(BaseModel):
    ok: bool = True
    rows: List[PayoutView]


class SessionResponse(BaseModel):
    ok: bool = True
    session: Optional[SessionView]


# ===========================
# REQUESTS
# ===========================


class PiVerifyRequest(BaseModel):
    access_token: Optional[str] = Field(
        None, validation_alias=AliasChoices("accessToken", "access_token")
    )


class UsernameUpdateRequest(BaseModel):
    username: str


class LevelCompleteRequest(BaseModel):
    level: int


class AdRewardRequest(BaseModel):
    nonce: Optional[str] = None


class InviteRequest(BaseModel):
    invitee_uid: str = Field(validation_alias=AliasChoices("inviteeUid", "invitee_uid"))


class ConsumeRequest(BaseModel):
    kind: str = Field(validation_alias=AliasChoices("kind", "item"))
    mode: str = "free"
    nonce: Optional[str] = None


class SpendRequest(BaseModel):
    """Body of /skip, /hint, /restart"""

    mode: str = "free"
    nonce: Optional[str] = None


class MonthlyClaimRequest(BaseModel):
    month: Optional[str] = Field(None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


class SessionStartRequest(BaseModel):
    session_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("sessionId", "session_id")
    )


class AdjustCoinsRequest(BaseModel):
    delta: int


class MonthCloseRequest(BaseModel):
    month: Optional[str] = Field(None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
