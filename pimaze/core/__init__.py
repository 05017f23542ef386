"""
Core module - shared exceptions for the coin economy.
"""

from pimaze.core.exceptions import (
    EconomyError,
    NotFoundError,
    ConflictError,
    InsufficientFundsError,
    NoFreeUsesLeftError,
    CooldownError,
    AuthError,
    InvalidRequestError,
)

__all__ = [
    "EconomyError",
    "NotFoundError",
    "ConflictError",
    "InsufficientFundsError",
    "NoFreeUsesLeftError",
    "CooldownError",
    "AuthError",
    "InvalidRequestError",
]
