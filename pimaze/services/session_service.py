# coding: utf-8
"""
Online sessions

One heartbeat row per account: refreshed on every authenticated request,
explicitly started/pinged/ended by the game client.
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from loguru import logger

from pimaze.database.engine import Database
from pimaze.database.models import UserSession, utcnow


class SessionService:
    """Online presence tracking"""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def _upsert(
        self,
        uid: str,
        session_id: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
        restart: bool = False,
    ) -> UserSession:
        now = self.clock()

        try:
            async with self.db.transaction() as session:
                result = await session.execute(
                    select(UserSession).where(UserSession.uid == uid).with_for_update()
                )
                row = result.scalar_one_or_none()

                if row is None:
                    row = UserSession(
                        uid=uid,
                        session_id=session_id or "auto",
                        user_agent=user_agent,
                        ip=ip,
                        started_at=now,
                        last_seen_at=now,
                    )
                    session.add(row)
                else:
                    row.last_seen_at = now
                    if session_id:
                        row.session_id = session_id
                    if restart:
                        row.started_at = now
                        row.user_agent = user_agent
                        row.ip = ip
        except IntegrityError:
            # Concurrent first request inserted the row
            async with self.db.transaction() as session:
                await session.execute(
                    update(UserSession).where(UserSession.uid == uid).values(last_seen_at=now)
                )
                row = (
                    await session.execute(select(UserSession).where(UserSession.uid == uid))
                ).scalar_one()

        return row

    async def touch_online(self, uid: str) -> UserSession:
        """Mark uid as seen now"""
        return await self._upsert(uid)

    async def start_session(
        self,
        uid: str,
        session_id: str,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> UserSession:
        row = await self._upsert(uid, session_id, user_agent, ip, restart=True)
        logger.info(f"Session started for {uid} ({session_id})")
        return row

    async def ping_session(self, uid: str) -> Optional[UserSession]:
        """
        Refresh last_seen_at of an open session

        Returns:
            UserSession or None if no session is open
        """
        async with self.db.transaction() as session:
            result = await session.execute(
                select(UserSession).where(UserSession.uid == uid).with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is not None:
                row.last_seen_at = self.clock()
        return row

    async def end_session(self, uid: str) -> bool:
        """
        Returns:
            True if a session was closed
        """
        async with self.db.transaction() as session:
            result = await session.execute(delete(UserSession).where(UserSession.uid == uid))
            ended = result.rowcount > 0

        if ended:
            logger.info(f"Session ended for {uid}")
        return ended
