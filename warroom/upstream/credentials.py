"""
Twitch App Access Token Cache

Issues an app access token through the client-credentials grant and caches it
in the key-value store together with its expiry (epoch ms). A cached token is
reused while ``now < expiresAt - safety_margin``.

Concurrent renewals are allowed: each issued token is valid on its own and the
last writer's token wins in the cache.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import httpx

from warroom.errors import UpstreamAuthError
from warroom.memory.kv import KeyValueStore
from warroom.utils.logging import get_logger

logger = get_logger(__name__, category="upstream")

TOKEN_KEY = "twitch:app_token"
TOKEN_EXP_KEY = "twitch:app_token_exp"  # epoch ms
TOKEN_URL = "https://id.twitch.tv/oauth2/token"


class CredentialCache:
    """Caches the upstream app access token with expiry."""

    def __init__(
        self,
        kv: KeyValueStore,
        http_client: httpx.AsyncClient,
        client_id: Optional[str],
        client_secret: Optional[str],
        token_url: str = TOKEN_URL,
        safety_margin_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            kv: Store holding the token and expiry keys
            http_client: Client used for the issuance request
            client_id: Twitch application client id
            client_secret: Twitch application client secret
            token_url: Credential issuance endpoint
            safety_margin_seconds: Renew this long before the token expires
            clock: Seconds since the epoch
        """
        self.kv = kv
        self.http_client = http_client
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.safety_margin_ms = safety_margin_seconds * 1000
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _cached_token(self) -> Optional[str]:
        token = await self.kv.get(TOKEN_KEY)
        raw_exp = await self.kv.get(TOKEN_EXP_KEY)
        if not token or not raw_exp:
            return None
        try:
            expires_at = int(float(raw_exp))
        except ValueError:
            logger.warning("Unreadable cached token expiry %r; renewing", raw_exp)
            return None
        if self._now_ms() < expires_at - self.safety_margin_ms:
            return token
        return None

    async def get_token(self) -> str:
        """
        Return a usable app access token, issuing a new one if needed.

        Raises:
            UpstreamAuthError: credentials missing or issuance failed
        """
        cached = await self._cached_token()
        if cached:
            return cached

        if not self.client_id:
            raise UpstreamAuthError("Missing env: TWITCH_CLIENT_ID")
        if not self.client_secret:
            raise UpstreamAuthError("Missing env: TWITCH_CLIENT_SECRET")

        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }

        try:
            response = await self.http_client.post(self.token_url, data=data)
        except httpx.RequestError as exc:
            raise UpstreamAuthError(f"Token fetch failed: {exc}") from exc

        if response.is_error:
            raise UpstreamAuthError(
                f"Token fetch failed: {response.status_code} {response.text}",
                status=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
            token = str(payload["access_token"])
            expires_in = int(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamAuthError(
                f"Token fetch returned a malformed body: {exc}",
                status=response.status_code,
                body=response.text,
            ) from exc

        expires_at = self._now_ms() + expires_in * 1000
        await self.kv.set(TOKEN_KEY, token)
        await self.kv.set(TOKEN_EXP_KEY, str(expires_at))
        logger.info("Issued new app access token (expires in %ss)", expires_in)
        return token
