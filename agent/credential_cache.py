"""Self-refreshing bearer-token cache for the Battle.net client-credentials flow.

Concurrency contract:
    - acquire() returns the cached token without any I/O while now < expires_at
    - when the token is missing or stale, callers queue on one asyncio.Lock;
      the first one in refreshes, the rest re-check and reuse its token
    - exactly one credential-exchange round-trip per refresh cycle
    - a failed refresh leaves the previously cached token (if any) in place
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable, Optional

import httpx

from agent.errors import NotConfigured, UpstreamAuthFailure
from relay_constants import BATTLENET_TOKEN_URL, TOKEN_SAFETY_MARGIN_SECONDS

logger = logging.getLogger(__name__)


class CredentialCache:
    """Holds one bearer token and refreshes it lazily on expiry.

    Args:
        client_id: OAuth client identity. Empty/None disables the cache.
        client_secret: OAuth client secret. Empty/None disables the cache.
        http_client: Shared httpx.AsyncClient (owns the request timeout).
        token_url: Credential-exchange endpoint.
        safety_margin: Seconds shaved off the reported lifetime.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        *,
        http_client: httpx.AsyncClient,
        token_url: str = BATTLENET_TOKEN_URL,
        safety_margin: float = TOKEN_SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client_id = client_id or ""
        self._client_secret = client_secret or ""
        self._http = http_client
        self._token_url = token_url
        self._safety_margin = safety_margin
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None
        self._refresh_lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    def _valid_token(self) -> Optional[str]:
        if self._token is None or self._expires_at is None:
            return None
        if self._clock() >= self._expires_at:
            return None
        return self._token

    def invalidate(self) -> None:
        """Drop the cached token so the next acquire() refreshes."""
        self._token = None
        self._expires_at = None

    async def acquire(self) -> str:
        """Return a usable bearer token, refreshing it at most once per cycle.

        Raises:
            NotConfigured: client identity or secret missing.
            UpstreamAuthFailure: the credential exchange failed.
        """
        if not self.configured:
            raise NotConfigured("Battle.net")

        token = self._valid_token()
        if token is not None:
            return token

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited
            token = self._valid_token()
            if token is not None:
                return token
            return await self._refresh()

    async def _refresh(self) -> str:
        self.refresh_count += 1
        try:
            resp = await self._http.post(
                self._token_url,
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as e:
            logger.warning("OAuth request failed: %s", e)
            raise UpstreamAuthFailure(f"OAuth request failed: {e}") from e

        if not resp.is_success:
            logger.warning("OAuth returned status %s", resp.status_code)
            raise UpstreamAuthFailure(f"OAuth returned status {resp.status_code}")

        try:
            payload = resp.json()
            access_token = payload["access_token"]
            expires_in = float(payload["expires_in"])
        except (ValueError, KeyError, TypeError, OverflowError) as e:
            raise UpstreamAuthFailure(f"Failed to parse OAuth response: {e}") from e
        if not isinstance(access_token, str) or not access_token:
            raise UpstreamAuthFailure("Failed to parse OAuth response: empty access_token")
        # NaN would never compare as expired
        if not math.isfinite(expires_in) or expires_in < 0:
            raise UpstreamAuthFailure(
                f"Failed to parse OAuth response: invalid expires_in {expires_in!r}"
            )

        lifetime = max(expires_in - self._safety_margin, 0.0)
        self._token = access_token
        self._expires_at = self._clock() + lifetime
        logger.info("Refreshed Battle.net token (valid for %.0fs)", lifetime)
        return access_token
