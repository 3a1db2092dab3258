"""AlpacaClient: IEX-feed bars and latest quotes from Alpaca Market Data v2."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import httpx
import pandas as pd

from market_pulse.config import ProviderSettings, TimeframeDef, get_settings
from market_pulse.data.cache import ResourceCache
from market_pulse.data.exceptions import NotFound, UpstreamError
from market_pulse.data.providers._helpers import frame_from_records, parse_timestamp, safe_float
from market_pulse.data.providers.base import HttpProviderClient
from market_pulse.data.rate_limit import RateLimiter
from market_pulse.macro.session import market_session
from market_pulse.models.data import DataType, ProviderType, Timeframe
from market_pulse.models.market import Quote

# The free IEX feed sometimes serves intraday bars that stopped updating days ago.
_MAX_INTRADAY_AGE = timedelta(hours=24)


class AlpacaClient(HttpProviderClient):
    """Retail feed authenticated with an API key/secret header pair."""

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        http: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        cache: ResourceCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or get_settings().providers.alpaca
        super().__init__(settings, http=http, limiter=limiter, cache=cache, clock=clock)

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.ALPACA

    @property
    def supported_data_types(self) -> list[DataType]:
        return [DataType.QUOTE, DataType.OHLCV]

    def _has_credentials(self) -> bool:
        return bool(self.settings.credential("api_key") and self.settings.credential("api_secret"))

    async def _auth_headers(self, symbol: str) -> dict[str, str]:
        return {
            "APCA-API-KEY-ID": self.settings.credential("api_key"),
            "APCA-API-SECRET-KEY": self.settings.credential("api_secret"),
        }

    async def fetch_quote(self, symbol: str) -> Quote:
        data = await self._request(
            "GET", f"/stocks/{symbol}/quotes/latest", symbol, params={"feed": "iex"},
        )
        with self._parsing(symbol):
            q = (data or {}).get("quote") or {}
            ask, bid = safe_float(q.get("ap")), safe_float(q.get("bp"))
            if not ask or not bid:
                raise UpstreamError(self.name, symbol, "quote missing bid/ask")
            return Quote(
                symbol=symbol,
                price=(ask + bid) / 2,
                timestamp=parse_timestamp(q.get("t")),
                session=market_session(),
                source=self.name,
            )

    async def fetch_bars(
        self, symbol: str, timeframe: Timeframe, tf_def: TimeframeDef
    ) -> pd.DataFrame:
        start = datetime.now(timezone.utc) - timedelta(days=tf_def.lookback_days)
        data = await self._request(
            "GET",
            f"/stocks/{symbol}/bars",
            symbol,
            params={
                "timeframe": tf_def.alpaca,
                "limit": tf_def.limit,
                "start": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "adjustment": "raw",
                "feed": "iex",
                "sort": "desc",
            },
        )
        with self._parsing(symbol):
            df = frame_from_records(
                (data or {}).get("bars") or [], "t", ("o", "h", "l", "c", "v"),
            )
        if df.empty:
            raise NotFound(self.name, symbol, f"no {timeframe} bars")
        if timeframe.is_intraday:
            age = pd.Timestamp.now(tz="UTC").tz_localize(None) - df.index[-1]
            if age > _MAX_INTRADAY_AGE:
                raise UpstreamError(self.name, symbol, f"stale intraday data ({age})")
        return df
