"""
Database models for PiMaze Backend

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, UTC
from decimal import Decimal
from typing import Any, Dict, Optional
from enum import Enum

from sqlalchemy import (
    JSON,
    String,
    Integer,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Numeric,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


def utcnow() -> datetime:
    return datetime.now(UTC)


# ===========================
# ENUMS
# ===========================


class RewardType(str, Enum):
    """Categories of idempotent reward claims"""

    DAILY_LOGIN = "daily_login"
    LEVEL_COMPLETE = "level_complete"
    AD_REWARD = "ad_reward"
    VALID_INVITE = "valid_invite"

    # Consumables paid by watching an ad (amount 0)
    SKIP_AD = "skip_ad"
    HINT_AD = "hint_ad"
    RESTART_AD = "restart_ad"

    # Consumables paid with coins (negative amount)
    SKIP_COINS = "skip_coins"
    HINT_COINS = "hint_coins"
    RESTART_COINS = "restart_coins"


class ConsumableKind(str, Enum):
    """In-game consumables"""

    SKIP = "skip"
    HINT = "hint"
    RESTART = "restart"


class SpendMode(str, Enum):
    """How a consumable use is paid for"""

    FREE = "free"  # Lifetime free allowance
    COINS = "coins"  # Fixed coin cost
    AD = "ad"  # Rewarded ad impression


class CoinReason(str, Enum):
    """Why a coin balance changed (coin ledger)"""

    REWARD = "reward"
    CONSUME = "consume"
    ADMIN_ADJUST = "admin_adjust"
    MONTH_CLOSE = "month_close"


class PayoutStatus(str, Enum):
    """Monthly payout pipeline status"""

    PENDING = "pending"  # Snapshot taken, awaiting conversion
    PROCESSING = "processing"  # Picked up by the payout pipeline
    SENT = "sent"  # Transferred (txid set)
    FAILED = "failed"


# Counters reset at every monthly rollover
MONTHLY_COUNTERS = (
    "monthly_coins_earned",
    "monthly_login_days",
    "monthly_levels_completed",
    "monthly_skips_used",
    "monthly_hints_used",
    "monthly_restarts_used",
    "monthly_ads_watched",
    "monthly_valid_invites",
    "monthly_win_streak",
    "monthly_best_win_streak",
)


# ===========================
# MODELS
# ===========================


class Account(Base):
    """
    Player account - one per Pi identity

    Tracks:
    - Coin balance (never negative)
    - Lifetime free consumable usage
    - Monthly engagement counters and the derived payout rate
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("coins >= 0", name="ck_accounts_coins_non_negative"),
        CheckConstraint("free_skips_used >= 0", name="ck_accounts_free_skips"),
        CheckConstraint("free_hints_used >= 0", name="ck_accounts_free_hints"),
        CheckConstraint("free_restarts_used >= 0", name="ck_accounts_free_restarts"),
        CheckConstraint(
            "monthly_final_rate >= 0 AND monthly_final_rate <= 100",
            name="ck_accounts_rate_range",
        ),
    )

    uid: Mapped[str] = mapped_column(
        String(128), primary_key=True, comment="Pi Platform user uid"
    )

    username: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False, comment="Pi username"
    )

    coins: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False, comment="Current coin balance"
    )

    # Lifetime free allowance usage
    free_skips_used: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    free_hints_used: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    free_restarts_used: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    # Monthly engagement counters
    monthly_coins_earned: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    monthly_login_days: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    monthly_levels_completed: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    monthly_skips_used: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    monthly_hints_used: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    monthly_restarts_used: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    monthly_ads_watched: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    monthly_valid_invites: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    monthly_win_streak: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False,
        comment="Levels completed in a row without a skip",
    )
    monthly_best_win_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    monthly_key: Mapped[Optional[str]] = mapped_column(
        String(7), nullable=True, comment="Calendar month of the counters (YYYY-MM)"
    )

    monthly_final_rate: Mapped[int] = mapped_column(
        Integer, default=50, server_default="50", nullable=False,
        comment="Derived payout percentage (0-100)",
    )

    monthly_rate_breakdown: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
        comment="Serialized RateBreakdown (points per factor)",
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships (purging an account cascades to everything it owns)
    claims = relationship("RewardClaim", back_populates="account", cascade="all, delete-orphan")
    level_rewards = relationship("LevelReward", cascade="all, delete-orphan")
    coin_transactions = relationship("CoinTransaction", cascade="all, delete-orphan")
    payouts = relationship("MonthlyPayout", back_populates="account", cascade="all, delete-orphan")
    online_session = relationship("UserSession", uselist=False, cascade="all, delete-orphan")

    def free_used(self, kind: str) -> int:
        return getattr(self, f"free_{kind}s_used")

    def __repr__(self) -> str:
        return f"<Account(uid={self.uid}, username={self.username}, coins={self.coins})>"


class RewardClaim(Base):
    """
    Reward claim - append-only idempotency record

    The unique nonce is the single source of truth for
    "has this event already been paid out".
    """

    __tablename__ = "reward_claims"
    __table_args__ = (
        Index("ix_reward_claims_uid_type_created", "uid", "type", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    uid: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("accounts.uid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    type: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="RewardType value"
    )

    nonce: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        comment="Idempotency key (daily:{uid}:{date}, level:{uid}:{n}, client ad nonce, ...)",
    )

    amount: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Signed coin delta applied"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    account = relationship("Account", back_populates="claims")

    def __repr__(self) -> str:
        return f"<RewardClaim(uid={self.uid}, type={self.type}, nonce={self.nonce}, amount={self.amount})>"


class LevelReward(Base):
    """Once-only marker: level bonus paid for (uid, level)"""

    __tablename__ = "level_rewards"

    uid: Mapped[str] = mapped_column(
        String(128), ForeignKey("accounts.uid", ondelete="CASCADE"), primary_key=True
    )

    level: Mapped[int] = mapped_column(Integer, primary_key=True)

    claim_nonce: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<LevelReward(uid={self.uid}, level={self.level})>"


class Referral(Base):
    """
    Inviter -> invitee link

    An invitee can be credited to one inviter only, ever.
    """

    __tablename__ = "referrals"

    invitee_uid: Mapped[str] = mapped_column(
        String(128), ForeignKey("accounts.uid", ondelete="CASCADE"), primary_key=True
    )

    inviter_uid: Mapped[str] = mapped_column(
        String(128), ForeignKey("accounts.uid", ondelete="CASCADE"), index=True, nullable=False
    )

    claim_nonce: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Referral(inviter={self.inviter_uid}, invitee={self.invitee_uid})>"


class CoinTransaction(Base):
    """
    Coin ledger - one row per balance-affecting operation

    Balance snapshots make every row auditable on its own and feed the
    admin coin charts.
    """

    __tablename__ = "coin_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    uid: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("accounts.uid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    reason: Mapped[str] = mapped_column(
        String(32), nullable=False, index=True, comment="CoinReason value"
    )

    amount: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Applied delta (after clamping)"
    )

    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    reference: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="Claim nonce or month tag"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<CoinTransaction(uid={self.uid}, reason={self.reason}, amount={self.amount})>"


class MonthlyPayout(Base):
    """
    Month-close snapshot of a balance, pending external conversion

    Created at most once per (uid, month); afterwards only the external
    payout pipeline updates status/txid/pi_amount_equivalent.
    """

    __tablename__ = "monthly_payouts"
    __table_args__ = (
        UniqueConstraint("uid", "month", name="uq_monthly_payouts_uid_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    uid: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("accounts.uid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    month: Mapped[str] = mapped_column(String(7), nullable=False, index=True)

    coins_collected: Mapped[int] = mapped_column(Integer, nullable=False)

    final_rate: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Payout rate at snapshot time"
    )

    pi_amount_equivalent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(20, 7), nullable=True, comment="Filled by the payout pipeline"
    )

    status: Mapped[str] = mapped_column(
        String(16),
        default=PayoutStatus.PENDING.value,
        server_default=PayoutStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    txid: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    account = relationship("Account", back_populates="payouts")

    def __repr__(self) -> str:
        return f"<MonthlyPayout(uid={self.uid}, month={self.month}, coins={self.coins_collected}, status={self.status})>"


class UserSession(Base):
    """Online heartbeat - one row per account, refreshed on every request"""

    __tablename__ = "user_sessions"

    uid: Mapped[str] = mapped_column(
        String(128), ForeignKey("accounts.uid", ondelete="CASCADE"), primary_key=True
    )

    session_id: Mapped[str] = mapped_column(String(128), default="auto", nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<UserSession(uid={self.uid}, last_seen_at={self.last_seen_at})>"
