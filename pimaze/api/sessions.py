# coding: utf-8
"""
Session API Endpoints
Online presence of the game client
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from pimaze.api.dependencies import get_current_identity, get_session_service
from pimaze.api.schemas import SessionResponse, SessionStartRequest, SessionView
from pimaze.database.models import Account
from pimaze.services.session_service import SessionService

# Create router
router = APIRouter(prefix="/session", tags=["session"])


def _view(row) -> Optional[SessionView]:
    return SessionView.model_validate(row) if row is not None else None


@router.post("/start", response_model=SessionResponse)
async def start_session(
    http_request: Request,
    request: Optional[SessionStartRequest] = None,
    user_agent: Optional[str] = Header(None),
    account: Account = Depends(get_current_identity),
    sessions: SessionService = Depends(get_session_service),
):
    """Open (or reopen) the online session of the current account"""
    session_id = (request.session_id if request else None) or uuid.uuid4().hex
    ip = http_request.client.host if http_request.client else None

    row = await sessions.start_session(account.uid, session_id, user_agent, ip)
    return SessionResponse(session=_view(row))


@router.post("/ping", response_model=SessionResponse)
async def ping_session(
    account: Account = Depends(get_current_identity),
    sessions: SessionService = Depends(get_session_service),
):
    """Heartbeat"""
    row = await sessions.ping_session(account.uid)
    return SessionResponse(session=_view(row))


@router.post("/end", response_model=SessionResponse)
async def end_session(
    account: Account = Depends(get_current_identity),
    sessions: SessionService = Depends(get_session_service),
):
    await sessions.end_session(account.uid)
    return SessionResponse(session=None)
