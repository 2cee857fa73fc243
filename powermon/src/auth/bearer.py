"""
Bearer token authentication for the report API.

API_TOKENS lists the clients allowed to use the API as comma-separated
``token:client`` pairs, e.g. ``"k3y-1:dashboard,k3y-2:phone"``. Only the
SHA-256 digest of each token is kept in memory. An incoming token is hashed
and compared with every registered digest via secrets.compare_digest, so
neither a matching prefix nor the token length shows in the response time.

The resolved client name is returned to the route and also stored on
``request.state.client`` so handlers and logs can name who asked.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-013)
- 2026-10-19: Keep token digests only, build from MonitorSettings (STORY-017)

TODO:
- None
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from typing import TYPE_CHECKING

from fastapi import HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from powermon.src.config import MonitorSettings

logger = logging.getLogger(__name__)


def _digest(token: str) -> bytes:
    return hashlib.sha256(token.encode("utf-8")).digest()


def parse_api_tokens(raw: str) -> dict[str, str]:
    """Map each token of an API_TOKENS value to its client name.

    Blank entries are ignored. Entries without a colon, or with an empty
    token or client, are skipped with a warning naming their position (never
    their content). The client part may itself contain colons.
    """
    token_map: dict[str, str] = {}
    for position, entry in enumerate(raw.split(",")):
        if not entry.strip():
            continue
        token, sep, client = (part.strip() for part in entry.partition(":"))
        if not sep or not token or not client:
            logger.warning("Skipping malformed API_TOKENS entry at position %d", position)
            continue
        token_map[token] = client
    return token_map


class BearerAuth:
    """FastAPI dependency resolving a bearer token to an API client name.

    Args:
        token_map: Mapping of token -> client name. Tokens are hashed on
            construction and the plain values are not retained.

    Usage::

        auth = BearerAuth.from_settings(settings)

        @app.get("/v1/realtime")
        async def realtime(client: str = Depends(auth.verify)): ...
    """

    def __init__(self, token_map: dict[str, str]) -> None:
        self._digests = [(_digest(token), client) for token, client in token_map.items()]
        self.scheme = HTTPBearer(auto_error=False)

    @classmethod
    def from_settings(cls, settings: MonitorSettings) -> BearerAuth:
        """Build the dependency from ``settings.api_tokens``.

        Raises:
            ValueError: If API_TOKENS holds no valid ``token:client`` entry.
        """
        token_map = parse_api_tokens(settings.api_tokens)
        if not token_map:
            raise ValueError("API_TOKENS contains no valid token:client entries")
        logger.info("Loaded %d API client(s) from API_TOKENS", len(token_map))
        return cls(token_map)

    @property
    def clients(self) -> list[str]:
        """Registered client names, in configuration order."""
        return [client for _, client in self._digests]

    def lookup(self, token: str) -> str | None:
        """Return the client owning *token*, or ``None``.

        Every registered digest is compared, matched or not, so the time
        taken does not depend on which entry matches.
        """
        if not token:
            return None
        candidate = _digest(token)
        found: str | None = None
        for digest, client in self._digests:
            if secrets.compare_digest(candidate, digest) and found is None:
                found = client
        return found

    async def verify(self, request: Request) -> str:
        """Resolve the request's bearer token to a client name.

        Raises:
            HTTPException: 401 if the token is missing or unknown.
        """
        credentials: HTTPAuthorizationCredentials | None = await self.scheme(request)
        if credentials is None:
            raise HTTPException(
                status_code=401,
                detail="Missing authorization credentials.",
                headers={"WWW-Authenticate": "Bearer"},
            )

        client = self.lookup(credentials.credentials)
        if client is None:
            logger.warning("Rejected bearer token for %s", request.url.path)
            raise HTTPException(
                status_code=401,
                detail="Invalid or expired token.",
                headers={"WWW-Authenticate": "Bearer"},
            )

        request.state.client = client
        return client
