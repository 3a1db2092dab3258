"""ProviderClient abstract base class."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from datetime import date
from typing import Any

import httpx
import pandas as pd

from market_pulse.config import ProviderSettings, TimeframeDef
from market_pulse.data.cache import ResourceCache
from market_pulse.data.exceptions import Throttled, UpstreamError
from market_pulse.data.rate_limit import RateLimiter
from market_pulse.models.data import DataType, ProviderType, Timeframe
from market_pulse.models.fundamentals import FundamentalsSnapshot, SentimentSnapshot
from market_pulse.models.market import Quote
from market_pulse.models.options import Greeks, OptionChain

logger = logging.getLogger(__name__)


class ProviderClient(ABC):
    """Base class for all upstream market-data vendors.

    Each client owns its rate limiter and resource cache; nothing is shared
    between clients. Resource methods return a payload or raise a
    ``ProviderError`` subclass.
    """

    def __init__(
        self,
        settings: ProviderSettings,
        limiter: RateLimiter | None = None,
        cache: ResourceCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._clock = clock
        self.limiter = limiter or RateLimiter.from_settings(self.name, settings, clock=clock)
        self.cache: ResourceCache = cache if cache is not None else ResourceCache(self.name, clock=clock)

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType: ...

    @property
    @abstractmethod
    def supported_data_types(self) -> list[DataType]: ...

    @property
    def name(self) -> str:
        return self.provider_type.value

    @property
    def is_configured(self) -> bool:
        """Enabled and holding every credential it needs."""
        return self.settings.enabled and self._has_credentials()

    def _has_credentials(self) -> bool:
        return True

    def supports(self, data_type: DataType) -> bool:
        return data_type in self.supported_data_types

    async def fetch_quote(self, symbol: str) -> Quote:
        raise NotImplementedError(f"{self.name} does not serve quotes")

    async def fetch_bars(
        self, symbol: str, timeframe: Timeframe, tf_def: TimeframeDef
    ) -> pd.DataFrame:
        raise NotImplementedError(f"{self.name} does not serve bars")

    async def fetch_option_chain(self, symbol: str, expiry: date | None = None) -> OptionChain:
        raise NotImplementedError(f"{self.name} does not serve option chains")

    async def fetch_greeks(self, osi_symbols: list[str]) -> dict[str, Greeks]:
        raise NotImplementedError(f"{self.name} does not serve greeks")

    async def fetch_fundamentals(self, symbol: str) -> FundamentalsSnapshot:
        raise NotImplementedError(f"{self.name} does not serve fundamentals")

    async def fetch_sentiment(self, symbol: str) -> SentimentSnapshot:
        raise NotImplementedError(f"{self.name} does not serve sentiment")

    async def aclose(self) -> None:
        """Release network resources."""

    async def _cached(
        self, key: tuple, ttl: float, fetcher: Callable[[], Awaitable[Any]]
    ) -> Any:
        value, _ = await self.cache.get_or_fetch(key, ttl, fetcher)
        return value


class HttpProviderClient(ProviderClient):
    """ProviderClient that talks to a JSON-over-HTTPS API via httpx."""

    def __init__(
        self,
        settings: ProviderSettings,
        http: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        cache: ResourceCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(settings, limiter=limiter, cache=cache, clock=clock)
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _auth_headers(self, symbol: str) -> dict[str, str]:
        """Headers added to every request. Token clients refresh here."""
        return {}

    def _on_unauthorized(self) -> None:
        """Hook for a 401 response, e.g. to drop a cached token."""

    async def _request(
        self,
        method: str,
        url: str,
        symbol: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Execute one upstream call and classify the outcome.

        Raises:
            Throttled / WindowExceeded: local cooldown or window refused the call,
                or the vendor answered 429 (which starts the cooldown).
            AuthError: token refresh failed.
            UpstreamError: any other non-2xx, transport error or bad JSON.
        """
        self.limiter.acquire(symbol)
        headers = await self._auth_headers(symbol)
        try:
            response = await self._http.request(
                method, url, params=params, json=json, headers=headers,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(self.name, symbol, str(e) or type(e).__name__) from e

        if response.status_code == 429:
            self.limiter.trip()
            raise Throttled(
                self.name, symbol, "vendor returned 429",
                retry_after=self.limiter.cooldown_seconds,
            )
        if response.status_code == 401:
            self._on_unauthorized()
        if not response.is_success:
            raise UpstreamError(
                self.name, symbol, response.text[:200], status=response.status_code
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(self.name, symbol, "malformed JSON payload") from e

    @contextmanager
    def _parsing(self, symbol: str) -> Iterator[None]:
        """Report a payload with the wrong shape or bad values as UpstreamError."""
        try:
            yield
        except (ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
            raise UpstreamError(self.name, symbol, f"malformed payload: {e}") from e
