"""Coin economy services"""
from .account_store import AccountStore
from .claim_ledger import ClaimLedger, ClaimResult
from .reward_engine import RewardEngine, ConsumeResult
from .monthly_service import MonthlyService
from .session_service import SessionService
from .admin_service import AdminService
from .pi_auth import PiAuthClient, PiIdentity

__all__ = [
    'AccountStore',
    'ClaimLedger',
    'ClaimResult',
    'RewardEngine',
    'ConsumeResult',
    'MonthlyService',
    'SessionService',
    'AdminService',
    'PiAuthClient',
    'PiIdentity',
]
