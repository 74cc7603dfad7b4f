"""Battle.net character-profile client.

Every fetch goes through the CredentialCache, so concurrent fetches share one
token and at most one refresh. A 404 is reported as ResourceNotFound, kept
apart from transport and status failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

import httpx

from agent.credential_cache import CredentialCache
from agent.errors import (
    MalformedResponse,
    ResourceNotFound,
    UpstreamError,
    UpstreamUnreachable,
)
from relay_constants import BATTLENET_PROFILE_URL_TEMPLATE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceSnapshot:
    """Attributes of one tracked character."""

    name: str
    rank: int
    primary_label: str
    secondary_label: str

    @property
    def label(self) -> str:
        return f"{self.primary_label} {self.secondary_label}"

    @classmethod
    def from_profile(cls, data: Dict[str, Any]) -> "ResourceSnapshot":
        """Parse ``{name, level, race: {name}, character_class: {name}}``."""
        try:
            return cls(
                name=str(data["name"]),
                rank=int(data["level"]),
                primary_label=str(data["race"]["name"]),
                secondary_label=str(data["character_class"]["name"]),
            )
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise MalformedResponse(f"Failed to parse character data: {e}") from e


class ResourceClient:
    """Fetches character snapshots from the profile API.

    Args:
        credentials: Token cache for bearer auth.
        http_client: Shared httpx.AsyncClient (owns the request timeout).
        profile_url_template: URL with a ``{name}`` placeholder.
    """

    def __init__(
        self,
        credentials: CredentialCache,
        *,
        http_client: httpx.AsyncClient,
        profile_url_template: str = BATTLENET_PROFILE_URL_TEMPLATE,
    ):
        self._credentials = credentials
        self._http = http_client
        self._url_template = profile_url_template

    @property
    def configured(self) -> bool:
        return self._credentials.configured

    def profile_url(self, name: str) -> str:
        return self._url_template.format(name=name.lower())

    async def fetch(self, name: str) -> ResourceSnapshot:
        """Fetch one character.

        Raises:
            NotConfigured / UpstreamAuthFailure: from the credential cache.
            ResourceNotFound: the API does not know ``name``, or ``name``
                cannot be placed in a profile URL.
            UpstreamUnreachable / UpstreamError / MalformedResponse.
        """
        token = await self._credentials.acquire()

        try:
            resp = await self._http.get(
                self.profile_url(name),
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.InvalidURL as e:
            # Names that cannot form a profile URL can never match a character
            logger.debug("Rejected profile URL for %r: %s", name, e)
            raise ResourceNotFound(name) from e
        except httpx.HTTPError as e:
            raise UpstreamUnreachable(f"API request failed: {e}") from e

        if resp.status_code == 404:
            raise ResourceNotFound(name)

        if not resp.is_success:
            if resp.status_code == 401:
                # Token revoked upstream before its reported expiry
                self._credentials.invalidate()
            raise UpstreamError(
                resp.status_code, f"Blizzard API returned status {resp.status_code}"
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponse(f"Failed to parse character data: {e}") from e
        if not isinstance(data, dict):
            raise MalformedResponse("Failed to parse character data: not an object")

        snapshot = ResourceSnapshot.from_profile(data)
        logger.debug("Fetched %s (level %d)", snapshot.name, snapshot.rank)
        return snapshot
