# coding: utf-8
"""
Pi Platform identity verification

Resolves a Pi access token to {uid, username} via GET /v2/me. The call is
bounded by a short timeout; every failure surfaces as AuthError so a slow
or unreachable platform can never hang a request.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import aiohttp
from loguru import logger
from tenacity import (
    retry,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log,
)

from pimaze.core.exceptions import AuthError


# Create standard logger for tenacity
std_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PiIdentity:
    """Verified identity, trusted as-is by the coin economy"""

    uid: str
    username: str


class PiAuthClient:
    """
    Client for the Pi Platform user endpoint

    Authentication:
    - Bearer access token of the player (from the Pi SDK)
    - Optional server API key (X-Pi-Api-Key)
    """

    def __init__(
        self,
        api_base: str = "https://api.minepi.com",
        api_key: Optional[str] = None,
        timeout_seconds: float = 3,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def _headers(self, token: str) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["X-Pi-Api-Key"] = self.api_key
        return headers

    # Connection refused/reset only; timeouts are not retried
    @retry(
        retry=retry_if_exception_type(aiohttp.ClientConnectorError),
        stop=stop_after_attempt(2),
        wait=wait_fixed(0.2),
        before_sleep=before_sleep_log(std_logger, logging.WARNING),
        reraise=True,
    )
    async def _fetch_me(self, token: str) -> Tuple[int, Any]:
        url = f"{self.api_base}/v2/me"
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers=self._headers(token)) as response:
                if response.status != 200:
                    return response.status, None
                return response.status, await response.json()

    async def verify_access_token(self, token: Optional[str]) -> PiIdentity:
        """
        Verify a Pi access token

        Args:
            token: Access token from the client

        Returns:
            PiIdentity(uid, username)

        Raises:
            AuthError: Missing token, rejected token, timeout, transport
                error or malformed payload
        """
        token = (token or "").strip()
        if not token:
            raise AuthError("Missing access token")

        try:
            status, payload = await self._fetch_me(token)
        except asyncio.TimeoutError:
            logger.warning(f"Pi verification timed out after {self.timeout_seconds}s")
            raise AuthError("Pi verification timed out")
        except aiohttp.ClientError as e:
            logger.warning(f"Pi verification transport error: {e}")
            raise AuthError("Pi verification unavailable")
        except ValueError:
            raise AuthError("Malformed Pi user payload")

        if status != 200:
            logger.info(f"Pi verification rejected token (status {status})")
            raise AuthError("Invalid Pi access token")

        if not isinstance(payload, dict):
            raise AuthError("Malformed Pi user payload")

        uid = payload.get("uid")
        username = payload.get("username")
        if not uid or not username:
            raise AuthError("Pi user payload missing uid/username")

        return PiIdentity(uid=str(uid), username=str(username))
