"""
Tests for Pi Platform identity verification
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from pimaze.core.exceptions import AuthError
from pimaze.services.pi_auth import PiAuthClient, PiIdentity


def mock_client_session(status=200, payload=None, error=None):
    """aiohttp.ClientSession stand-in returning one canned response"""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)

    session = MagicMock()
    session.__aenter__.return_value = session
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value.__aenter__.return_value = response
    return session


@pytest.fixture
def client():
    return PiAuthClient(api_base="https://pi.test/", api_key="server-key", timeout_seconds=3)


# ===========================
# SUCCESS
# ===========================


@pytest.mark.asyncio
async def test_verify_access_token_success(client):
    """Test that a valid token resolves to uid and username"""
    session = mock_client_session(payload={"uid": "u1", "username": "alice", "roles": []})

    with patch("aiohttp.ClientSession", return_value=session):
        identity = await client.verify_access_token("token-123")

    assert identity == PiIdentity(uid="u1", username="alice")

    url = session.get.call_args[0][0]
    headers = session.get.call_args[1]["headers"]
    assert url == "https://pi.test/v2/me"
    assert headers["Authorization"] == "Bearer token-123"
    assert headers["X-Pi-Api-Key"] == "server-key"


@pytest.mark.asyncio
async def test_verify_without_api_key():
    client = PiAuthClient(api_base="https://pi.test")
    session = mock_client_session(payload={"uid": "u1", "username": "alice"})

    with patch("aiohttp.ClientSession", return_value=session):
        await client.verify_access_token("token-123")

    assert "X-Pi-Api-Key" not in session.get.call_args[1]["headers"]


# ===========================
# FAILURES
# ===========================


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, "", "   "])
async def test_missing_token(client, token):
    """Test that a missing token fails without calling the platform"""
    with patch("aiohttp.ClientSession") as session_cls:
        with pytest.raises(AuthError):
            await client.verify_access_token(token)

    session_cls.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403, 500])
async def test_rejected_token(client, status):
    session = mock_client_session(status=status)

    with patch("aiohttp.ClientSession", return_value=session):
        with pytest.raises(AuthError) as exc_info:
            await client.verify_access_token("bad-token")

    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_timeout_is_auth_error(client):
    """Test that a slow platform surfaces as AuthError, not a hang"""
    session = mock_client_session(error=asyncio.TimeoutError())

    with patch("aiohttp.ClientSession", return_value=session):
        with pytest.raises(AuthError):
            await client.verify_access_token("token-123")

    # Timeouts are not retried
    assert session.get.call_count == 1


@pytest.mark.asyncio
async def test_connection_error_retried_once(client):
    """Test that a refused connection is retried once, then reported as AuthError"""
    error = aiohttp.ClientConnectorError(MagicMock(), OSError(111, "Connection refused"))
    session = mock_client_session(error=error)

    with patch("aiohttp.ClientSession", return_value=session):
        with pytest.raises(AuthError):
            await client.verify_access_token("token-123")

    assert session.get.call_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        None,
        ["u1", "alice"],
        {"uid": "u1"},
        {"username": "alice"},
        {"uid": "", "username": "alice"},
    ],
)
async def test_malformed_payload(client, payload):
    session = mock_client_session(payload=payload)

    with patch("aiohttp.ClientSession", return_value=session):
        with pytest.raises(AuthError):
            await client.verify_access_token("token-123")


@pytest.mark.asyncio
async def test_invalid_json(client):
    session = mock_client_session()
    response = session.get.return_value.__aenter__.return_value
    response.json = AsyncMock(side_effect=ValueError("not json"))

    with patch("aiohttp.ClientSession", return_value=session):
        with pytest.raises(AuthError):
            await client.verify_access_token("token-123")
