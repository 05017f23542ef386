"""
Typed failures of the coin economy.

Every error carries a machine-readable `reason` that the API layer returns
to clients, and the HTTP status it maps to. Idempotent duplicates are not
errors: they come back as results with `already=True`.
"""

from typing import Optional


class EconomyError(Exception):
    """Base class for all coin economy failures."""

    reason: str = "error"
    status_code: int = 400

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.reason)
        self.message = message or self.reason


class NotFoundError(EconomyError):
    """Unknown uid (or other missing row)."""

    reason = "not_found"
    status_code = 404


class ConflictError(EconomyError):
    """Username already claimed by a different uid."""

    reason = "username_taken"
    status_code = 409


class InsufficientFundsError(EconomyError):
    """Spend exceeds the current coin balance."""

    reason = "insufficient_funds"

    def __init__(self, balance: int, required: int):
        super().__init__(f"Insufficient coins: balance {balance} < required {required}")
        self.balance = balance
        self.required = required


class NoFreeUsesLeftError(EconomyError):
    """Lifetime free allowance of a consumable is exhausted."""

    reason = "no_free_uses_left"

    def __init__(self, kind: str):
        super().__init__(f"No free {kind} uses left")
        self.kind = kind


class CooldownError(EconomyError):
    """Reward claimed again inside its rate-limit window."""

    reason = "cooldown"
    status_code = 429

    def __init__(self, reward_type: str, retry_after: int):
        super().__init__(f"{reward_type} is on cooldown, retry in {retry_after}s")
        self.reward_type = reward_type
        self.retry_after = retry_after


class AuthError(EconomyError):
    """Identity verification failed, or the token is missing/expired."""

    reason = "unauthorized"
    status_code = 401


class InvalidRequestError(EconomyError):
    """Malformed input: unknown consumable, missing nonce, bad level number."""

    reason = "invalid_request"
