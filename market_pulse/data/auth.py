"""Cached bearer-token lifecycle for token-authenticated providers."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from market_pulse.data.exceptions import AuthError

logger = logging.getLogger(__name__)

# Returns (access_token, lifetime_seconds)
TokenRefresher = Callable[[], Awaitable[tuple[str, float]]]


class TokenManager:
    """Holds one access token and refreshes it shortly before it expires.

    Concurrent callers that find the token missing or near expiry share a
    single refresh. A failed refresh raises AuthError and leaves no token.
    """

    def __init__(
        self,
        provider: str,
        refresher: TokenRefresher,
        margin_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self._refresher = refresher
        self._margin = margin_seconds
        self._clock = clock
        self._token: str | None = None
        self._refresh_at: float = 0.0
        self._lock = asyncio.Lock()

    @property
    def is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._refresh_at

    async def get_token(self) -> str:
        if self.is_valid:
            return self._token  # type: ignore[return-value]
        async with self._lock:
            if self.is_valid:
                return self._token  # type: ignore[return-value]
            self._token = None
            try:
                token, lifetime = await self._refresher()
            except AuthError:
                logger.error("%s token refresh failed", self.provider)
                raise
            if not token:
                logger.error("%s token refresh returned no token", self.provider)
                raise AuthError(self.provider, "", "empty access token")
            self._token = token
            self._refresh_at = self._clock() + max(0.0, lifetime - self._margin)
            logger.info("%s access token refreshed (valid %.0fs)", self.provider, lifetime)
            return token

    def invalidate(self) -> None:
        self._token = None
        self._refresh_at = 0.0
