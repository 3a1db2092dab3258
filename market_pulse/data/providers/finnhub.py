"""FinnhubClient: basic financials and news sentiment."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx

from market_pulse.config import ProviderSettings, get_settings
from market_pulse.data.cache import ResourceCache
from market_pulse.data.exceptions import NotFound
from market_pulse.data.providers._helpers import safe_float, safe_int
from market_pulse.data.providers.base import HttpProviderClient
from market_pulse.data.rate_limit import RateLimiter
from market_pulse.models.data import DataType, ProviderType
from market_pulse.models.fundamentals import FundamentalsSnapshot, SentimentSnapshot


def _first(metric: dict[str, Any], *keys: str) -> float | None:
    for key in keys:
        value = safe_float(metric.get(key))
        if value is not None:
            return value
    return None


class FinnhubClient(HttpProviderClient):
    """Fundamentals (cached 24h) and news sentiment (cached 30min)."""

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        http: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        cache: ResourceCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or get_settings().providers.finnhub
        super().__init__(settings, http=http, limiter=limiter, cache=cache, clock=clock)

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.FINNHUB

    @property
    def supported_data_types(self) -> list[DataType]:
        return [DataType.FUNDAMENTALS, DataType.SENTIMENT]

    def _has_credentials(self) -> bool:
        return bool(self.settings.credential("api_key"))

    async def _get(self, path: str, symbol: str, /, **params: str) -> Any:
        params["token"] = self.settings.credential("api_key")
        return await self._request("GET", path, symbol, params=params)

    async def fetch_fundamentals(self, symbol: str) -> FundamentalsSnapshot:
        ttl = get_settings().cache.fundamentals_ttl_seconds
        return await self._cached(
            ("fundamentals", symbol), ttl, lambda: self._fetch_fundamentals(symbol)
        )

    async def _fetch_fundamentals(self, symbol: str) -> FundamentalsSnapshot:
        data = await self._get("/stock/metric", symbol, symbol=symbol, metric="all")
        with self._parsing(symbol):
            return self._parse_fundamentals(symbol, data)

    def _parse_fundamentals(self, symbol: str, data: Any) -> FundamentalsSnapshot:
        metric = (data or {}).get("metric") or {}
        if not metric:
            raise NotFound(self.name, symbol, "no financial metrics")
        market_cap = safe_float(metric.get("marketCapitalization"))
        return FundamentalsSnapshot(
            symbol=symbol,
            week52_high=safe_float(metric.get("52WeekHigh")),
            week52_low=safe_float(metric.get("52WeekLow")),
            beta=safe_float(metric.get("beta")),
            market_cap=market_cap * 1_000_000 if market_cap is not None else None,
            pe=_first(metric, "peTTM", "peBasicExclExtraTTM", "peNormalizedAnnual"),
            peg=_first(metric, "pegTTM", "pegRatio"),
            roe=_first(metric, "roeTTM", "roeRfy"),
            eps_growth=_first(metric, "epsGrowthTTMYoy", "epsGrowthQuarterlyYoy"),
            debt_to_equity=_first(
                metric,
                "totalDebt/totalEquityQuarterly",
                "totalDebt/totalEquityAnnual",
                "totalDebt/totalEquityTTM",
            ),
            free_cash_flow=_first(metric, "freeCashFlowTTM", "freeCashFlowAnnual"),
            source=self.name,
            as_of=datetime.now(timezone.utc),
        )

    async def fetch_sentiment(self, symbol: str) -> SentimentSnapshot:
        ttl = get_settings().cache.sentiment_ttl_seconds
        return await self._cached(
            ("sentiment", symbol), ttl, lambda: self._fetch_sentiment(symbol)
        )

    async def _fetch_sentiment(self, symbol: str) -> SentimentSnapshot:
        data = await self._get("/news-sentiment", symbol, symbol=symbol)
        with self._parsing(symbol):
            return self._parse_sentiment(symbol, data)

    def _parse_sentiment(self, symbol: str, data: Any) -> SentimentSnapshot:
        if not data or not data.get("sentiment"):
            raise NotFound(self.name, symbol, "no news sentiment")
        sentiment = data.get("sentiment") or {}
        buzz = data.get("buzz") or {}
        return SentimentSnapshot(
            symbol=symbol,
            bullish_percent=safe_float(sentiment.get("bullishPercent")),
            bearish_percent=safe_float(sentiment.get("bearishPercent")),
            company_news_score=safe_float(data.get("companyNewsScore")),
            sector_news_score=safe_float(data.get("sectorAverageNewsScore")),
            buzz=safe_float(buzz.get("buzz")),
            articles_last_week=safe_int(buzz.get("articlesInLastWeek")),
            source=self.name,
            as_of=datetime.now(timezone.utc),
        )
