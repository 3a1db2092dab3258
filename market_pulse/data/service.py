"""DataService: orchestrates caches, waterfall and providers for every resource."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Hashable
from datetime import date, datetime, timezone
from typing import TypeVar

import pandas as pd

from market_pulse.config import Settings, get_settings
from market_pulse.data.cache import ResourceCache
from market_pulse.data.providers.alpaca import AlpacaClient
from market_pulse.data.providers.base import ProviderClient
from market_pulse.data.providers.finnhub import FinnhubClient
from market_pulse.data.providers.public import PublicClient
from market_pulse.data.providers.schwab import SchwabClient
from market_pulse.data.providers.yfinance import YFinanceProvider
from market_pulse.data.registry import ProviderRegistry
from market_pulse.data.waterfall import Resolved, WaterfallResolver
from market_pulse.features.technicals import aggregate
from market_pulse.models.data import DataResult, DataType, ProviderType, Timeframe
from market_pulse.models.fundamentals import FundamentalsSnapshot, SentimentSnapshot
from market_pulse.models.market import Quote
from market_pulse.models.options import Greeks, OptionChain

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DataService:
    """Entry point for all market-data access.

    Cache-first: every resource has its own ResourceCache keyed by symbol,
    so concurrent identical requests share one waterfall run. When every
    provider fails, the last value ever cached is served with ``stale=True``.
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        waterfall: WaterfallResolver | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self._registry = registry if registry is not None else self._default_registry(self.settings)
        self._waterfall = waterfall or WaterfallResolver(self.settings.waterfall.timeout_seconds)
        self._quotes: ResourceCache[str, Resolved[Quote]] = ResourceCache("quotes", clock)
        self._bars: ResourceCache[tuple, Resolved[pd.DataFrame]] = ResourceCache("bars", clock)
        self._chains: ResourceCache[tuple, Resolved[OptionChain]] = ResourceCache("chains", clock)
        self._greeks: ResourceCache[tuple, Resolved[dict]] = ResourceCache("greeks", clock)
        self._fundamentals: ResourceCache[str, Resolved[FundamentalsSnapshot]] = ResourceCache(
            "fundamentals", clock,
        )
        self._sentiment: ResourceCache[str, Resolved[SentimentSnapshot]] = ResourceCache(
            "sentiment", clock,
        )

    @staticmethod
    def _default_registry(settings: Settings) -> ProviderRegistry:
        reg = ProviderRegistry()
        reg.register(PublicClient(settings.providers.public))
        reg.register(SchwabClient(settings.providers.schwab))
        reg.register(AlpacaClient(settings.providers.alpaca))
        reg.register(FinnhubClient(settings.providers.finnhub))
        reg.register(YFinanceProvider(settings.providers.yfinance))
        return reg

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def aclose(self) -> None:
        for provider in self._registry:
            await provider.aclose()

    async def __aenter__(self) -> DataService:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # -- shared plumbing --

    async def _resolve(
        self,
        cache: ResourceCache,
        key: Hashable,
        ttl: float,
        symbol: str,
        data_type: DataType,
        order: list[ProviderType],
        fetch: Callable[[ProviderClient], Awaitable[T]],
    ) -> tuple[Resolved[T] | None, bool, bool]:
        """Return (resolved, from_cache, stale)."""
        resolved, from_cache = await cache.get_or_fetch(
            key,
            ttl,
            lambda: self._waterfall.resolve(
                symbol, data_type, self._registry.ordered(order), fetch,
            ),
        )
        if resolved is not None:
            return resolved, from_cache, False
        stale = cache.get_stale(key)
        if stale is not None:
            logger.warning("%s %s: serving stale value from %s", symbol, data_type, stale.source)
            return stale, True, True
        return None, False, False

    # -- resources --

    async def fetch_live_price(self, symbol: str) -> Quote | None:
        """Latest quote from the first provider that answers, or None."""
        symbol = symbol.upper()
        resolved, _, stale = await self._resolve(
            self._quotes, symbol, self.settings.cache.quote_ttl_seconds,
            symbol, DataType.QUOTE, self.settings.waterfall.live_price,
            lambda p: p.fetch_quote(symbol),
        )
        if resolved is None:
            return None
        return resolved.payload.model_copy(update={"stale": True}) if stale else resolved.payload

    async def fetch_historical_series(
        self, symbol: str, timeframe: Timeframe
    ) -> tuple[pd.DataFrame, DataResult] | None:
        """OHLCV bars for one timeframe with provenance, or None.

        Timeframes with ``aggregate_from`` are built by resampling another
        timeframe's series; ``resample_rule`` normalises vendor bar sizes
        that differ from the requested one.
        """
        symbol = symbol.upper()
        tf_def = self.settings.timeframes.get(timeframe)
        if tf_def is None:
            raise ValueError(f"No timeframe definition for {timeframe}")

        if tf_def.aggregate_from is not None:
            base = await self.fetch_historical_series(symbol, tf_def.aggregate_from)
            if base is None:
                return None
            df, result = base
            if tf_def.resample_rule:
                df = aggregate(df, tf_def.resample_rule)
            return df, result.model_copy(update={"row_count": len(df)})

        async def fetch(provider: ProviderClient) -> pd.DataFrame | None:
            df = await provider.fetch_bars(symbol, timeframe, tf_def)
            if tf_def.resample_rule:
                df = aggregate(df, tf_def.resample_rule)
            return df if not df.empty else None

        cache_cfg = self.settings.cache
        ttl = (
            cache_cfg.intraday_bars_ttl_seconds
            if timeframe.is_intraday
            else cache_cfg.daily_bars_ttl_seconds
        )
        resolved, from_cache, stale = await self._resolve(
            self._bars, (symbol, timeframe), ttl,
            symbol, DataType.OHLCV, self.settings.waterfall.historical, fetch,
        )
        if resolved is None:
            return None
        df = resolved.payload.copy()
        result = DataResult(
            ticker=symbol,
            data_type=DataType.OHLCV,
            provider=resolved.source,
            from_cache=from_cache,
            stale=stale,
            fetched_at=datetime.now(timezone.utc),
            row_count=len(df),
        )
        return df, result

    async def fetch_option_chain(
        self, symbol: str, expiry: date | None = None
    ) -> OptionChain | None:
        symbol = symbol.upper()
        resolved, _, stale = await self._resolve(
            self._chains, (symbol, expiry), self.settings.cache.option_chain_ttl_seconds,
            symbol, DataType.OPTIONS_CHAIN, self.settings.waterfall.options_chain,
            lambda p: p.fetch_option_chain(symbol, expiry),
        )
        if resolved is None:
            return None
        chain = resolved.payload
        if chain.is_empty:
            return None
        return chain.model_copy(update={"stale": True}) if stale else chain

    async def fetch_greeks(self, osi_symbols: list[str]) -> dict[str, Greeks]:
        """Greeks keyed by OSI symbol; empty when no greeks provider answers."""
        if not osi_symbols:
            return {}
        key = tuple(sorted(osi_symbols))
        resolved, _, _ = await self._resolve(
            self._greeks, key, self.settings.cache.option_chain_ttl_seconds,
            osi_symbols[0], DataType.GREEKS, self.settings.waterfall.greeks,
            lambda p: p.fetch_greeks(list(key)),
        )
        return resolved.payload if resolved is not None else {}

    async def fetch_fundamentals(self, symbol: str) -> FundamentalsSnapshot | None:
        symbol = symbol.upper()
        resolved, _, stale = await self._resolve(
            self._fundamentals, symbol, self.settings.cache.fundamentals_ttl_seconds,
            symbol, DataType.FUNDAMENTALS, self.settings.waterfall.fundamentals,
            lambda p: p.fetch_fundamentals(symbol),
        )
        if resolved is None:
            return None
        return resolved.payload.model_copy(update={"stale": True}) if stale else resolved.payload

    async def fetch_sentiment(self, symbol: str) -> SentimentSnapshot | None:
        symbol = symbol.upper()
        resolved, _, stale = await self._resolve(
            self._sentiment, symbol, self.settings.cache.sentiment_ttl_seconds,
            symbol, DataType.SENTIMENT, self.settings.waterfall.sentiment,
            lambda p: p.fetch_sentiment(symbol),
        )
        if resolved is None:
            return None
        return resolved.payload.model_copy(update={"stale": True}) if stale else resolved.payload

    def invalidate_cache(self, data_type: DataType | None = None) -> None:
        """Force re-fetch on next request."""
        caches = {
            DataType.QUOTE: self._quotes,
            DataType.OHLCV: self._bars,
            DataType.OPTIONS_CHAIN: self._chains,
            DataType.GREEKS: self._greeks,
            DataType.FUNDAMENTALS: self._fundamentals,
            DataType.SENTIMENT: self._sentiment,
        }
        targets = [caches[data_type]] if data_type else list(caches.values())
        for cache in targets:
            cache.invalidate()
