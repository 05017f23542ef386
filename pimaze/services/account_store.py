# coding: utf-8
"""
Account Store

Persistent record per Pi identity: created on first successful identity
verification, mutated by every reward/consume operation.
"""

from datetime import datetime
from typing import Callable

from sqlalchemy.exc import IntegrityError
from loguru import logger

from config.economy_config import month_tag
from pimaze.core.exceptions import ConflictError, InvalidRequestError, NotFoundError
from pimaze.database import crud
from pimaze.database.engine import Database
from pimaze.database.models import Account, CoinReason, utcnow
from pimaze.services.monthly_service import lock_current_account

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20


class AccountStore:
    """Account lifecycle and direct balance operations"""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def get(self, uid: str) -> Account:
        """
        Raises:
            NotFoundError: If uid is unknown
        """
        async with self.db.session() as session:
            account = await crud.get_account(session, uid)
        if account is None:
            raise NotFoundError(f"Account {uid} not found")
        return account

    async def get_or_create(self, uid: str, username: str) -> Account:
        """
        Upsert by uid; follows Pi username changes

        Raises:
            ConflictError: If username belongs to a different uid
        """
        try:
            async with self.db.transaction() as session:
                owner = await crud.get_account_by_username(session, username)
                if owner is not None and owner.uid != uid:
                    raise ConflictError(f"Username {username} is taken by another account")

                account = await crud.get_account(session, uid)
                if account is not None:
                    if account.username != username:
                        logger.info(f"Account {uid} renamed: {account.username} -> {username}")
                        account.username = username
                    return account

                now = self.clock()
                account = Account(
                    uid=uid,
                    username=username,
                    monthly_key=month_tag(now),
                    created_at=now,
                    updated_at=now,
                )
                session.add(account)
        except IntegrityError:
            # Lost an insert race: same uid (fine) or same username (conflict)
            async with self.db.session() as session:
                account = await crud.get_account(session, uid)
            if account is not None and account.username == username:
                return account
            raise ConflictError(f"Username {username} is taken by another account")

        logger.info(f"Account created: {uid} (@{username})")
        return account

    async def rename(self, uid: str, username: str) -> Account:
        """
        Change the display name

        Raises:
            InvalidRequestError: If length is not 3-20 characters
            ConflictError: If username belongs to a different uid
        """
        username = (username or "").strip()
        if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
            raise InvalidRequestError(
                f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters"
            )

        try:
            async with self.db.transaction() as session:
                owner = await crud.get_account_by_username(session, username)
                if owner is not None and owner.uid != uid:
                    raise ConflictError(f"Username {username} is taken by another account")
                account = await crud.lock_account(session, uid)
                account.username = username
        except IntegrityError:
            raise ConflictError(f"Username {username} is taken by another account")

        return account

    async def adjust_coins(self, uid: str, delta: int) -> Account:
        """
        Apply a signed delta, clamping the balance at zero

        Raises:
            NotFoundError: If uid is unknown
        """
        now = self.clock()
        async with self.db.transaction() as session:
            account = await lock_current_account(session, uid, now)
            applied = crud.adjust_coins(session, account, delta, CoinReason.ADMIN_ADJUST, now)

        logger.info(f"Adjusted coins of {uid} by {applied:+d} (requested {delta:+d}, balance: {account.coins})")
        return account

    async def spend_coins(self, uid: str, amount: int) -> Account:
        """
        Debit atomically

        Raises:
            NotFoundError: If uid is unknown
            InsufficientFundsError: If balance < amount
        """
        now = self.clock()
        async with self.db.transaction() as session:
            account = await lock_current_account(session, uid, now)
            crud.spend_coins(session, account, amount, CoinReason.CONSUME, now)

        logger.info(f"Spent {amount} coins of {uid} (balance: {account.coins})")
        return account
