"""MarketAnalyzer: top-level facade composing data, indicators and options signals."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime, timezone

import pandas as pd

from market_pulse.config import Settings, get_settings
from market_pulse.data.exceptions import InsufficientData
from market_pulse.data.service import DataService
from market_pulse.data.stitcher import reconcile
from market_pulse.features.flow import gamma_squeeze_score, scan_unusual_activity
from market_pulse.features.fundamentals import quality_score
from market_pulse.features.technicals import (
    confluence_score,
    ema_distances,
    historical_volatility,
    latest_snapshot,
)
from market_pulse.macro.session import market_session
from market_pulse.models.analysis import SymbolAnalysis, SymbolMetrics, TimeframeAnalysis
from market_pulse.models.data import DataResult, Timeframe
from market_pulse.models.fundamentals import FundamentalsSnapshot
from market_pulse.models.market import MarketSession, Quote
from market_pulse.models.technicals import IndicatorSnapshot
from market_pulse.service.options_signal import OptionsSignalService

logger = logging.getLogger(__name__)


class MarketAnalyzer:
    """Multi-timeframe analysis for one or many symbols.

    Usage::

        from market_pulse import MarketAnalyzer

        async with DataService() as data:
            ma = MarketAnalyzer(data_service=data)
            analysis = await ma.analyze("AAPL")
            batch = await ma.analyze_many(["AAPL", "MSFT", "NVDA"])
    """

    def __init__(
        self,
        data_service: DataService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.data = data_service or DataService(settings=self.settings)
        self.options = OptionsSignalService(self.data)

    async def analyze(
        self,
        symbol: str,
        timeframes: Iterable[Timeframe | str] | None = None,
    ) -> SymbolAnalysis | None:
        """Combined analysis, or None when the symbol lacks enough daily history."""
        symbol = symbol.upper()
        try:
            return await self._analyze(symbol, timeframes)
        except InsufficientData as e:
            logger.warning("%s", e)
            return None

    async def analyze_many(
        self,
        symbols: Iterable[str],
        timeframes: Iterable[Timeframe | str] | None = None,
    ) -> dict[str, SymbolAnalysis | None]:
        """Analyze symbols concurrently, at most ``max_concurrent_symbols`` at a time."""
        symbols = [s.upper() for s in symbols]
        tfs = list(timeframes) if timeframes is not None else None
        semaphore = asyncio.Semaphore(self.settings.orchestrator.max_concurrent_symbols)

        async def bounded(sym: str) -> SymbolAnalysis | None:
            async with semaphore:
                return await self.analyze(sym, tfs)

        results = await asyncio.gather(*(bounded(s) for s in symbols))
        return dict(zip(symbols, results))

    # -- internals --

    async def _analyze(
        self, symbol: str, timeframes: Iterable[Timeframe | str] | None
    ) -> SymbolAnalysis:
        orch = self.settings.orchestrator
        tfs = [Timeframe(t) for t in timeframes] if timeframes is not None else list(orch.timeframes)

        quote, daily = await asyncio.gather(
            self.data.fetch_live_price(symbol),
            self.data.fetch_historical_series(symbol, Timeframe.DAY_1),
        )
        if daily is None:
            raise InsufficientData(symbol, 0, orch.min_daily_bars)
        daily_df, daily_result = daily
        if len(daily_df) < orch.min_daily_bars:
            raise InsufficientData(symbol, len(daily_df), orch.min_daily_bars)

        live_price = quote.price if quote is not None else None
        last_close = float(daily_df["Close"].iloc[-1])
        price = live_price if live_price is not None else last_close
        session = market_session()
        now = pd.Timestamp.now(tz="UTC")

        others = [tf for tf in tfs if tf != Timeframe.DAY_1]
        fetched = await asyncio.gather(
            *(self.data.fetch_historical_series(symbol, tf) for tf in others)
        )
        series: dict[Timeframe, tuple[pd.DataFrame, DataResult] | None] = {Timeframe.DAY_1: daily}
        series.update(zip(others, fetched))

        analyses: dict[Timeframe, TimeframeAnalysis] = {}
        for tf in tfs:
            entry = series.get(tf)
            if entry is None:
                logger.info("%s %s: no bars from any provider", symbol, tf)
                continue
            tfa = self._timeframe_analysis(tf, entry[0], entry[1], live_price, now)
            if tfa is not None:
                analyses[tf] = tfa

        daily_stitched = self._stitch(Timeframe.DAY_1, daily_df, live_price, now)
        daily_snap = latest_snapshot(
            daily_stitched, vwap_anchor=self.settings.timeframes[Timeframe.DAY_1].vwap_anchor,
        )

        chain, fundamentals, sentiment = await asyncio.gather(
            self.data.fetch_option_chain(symbol),
            self.data.fetch_fundamentals(symbol),
            self.data.fetch_sentiment(symbol),
        )

        metrics = self._metrics(
            daily_df, daily_stitched, daily_snap, quote, price, last_close, session, fundamentals,
        )

        recommendation = await self.options.recommend(
            symbol, price, metrics.atr, daily_snap.trend, daily_snap.rsi,
            snapshot=daily_snap, fundamentals=fundamentals, sentiment=sentiment,
            session=session, chain=chain, fetch=False,
        )
        pcr = await self.options.put_call_ratio(symbol, chain=chain, fetch=False)
        gamma = gamma_squeeze_score(
            chain, price,
            atr=metrics.atr,
            week52_high=metrics.week52_high,
            week52_low=metrics.week52_low,
            historical_vol=metrics.historical_vol,
        ).model_copy(update={"symbol": symbol})

        return SymbolAnalysis(
            symbol=symbol,
            as_of=datetime.now(timezone.utc),
            session=session,
            data_source=quote.source if quote is not None else daily_result.provider.value,
            price_stale=quote is None or quote.stale,
            metrics=metrics,
            timeframes=analyses,
            recommendation=recommendation,
            put_call_ratio=pcr,
            gamma_squeeze=gamma,
            unusual_activity=scan_unusual_activity(chain),
            fundamentals=fundamentals,
            quality=quality_score(fundamentals) if fundamentals is not None else None,
            sentiment=sentiment,
        )

    def _stitch(
        self,
        timeframe: Timeframe,
        df: pd.DataFrame,
        live_price: float | None,
        now: pd.Timestamp,
    ) -> pd.DataFrame:
        tf_def = self.settings.timeframes[timeframe]
        stitcher = self.settings.stitcher
        staleness = tf_def.staleness_days if tf_def.staleness_days is not None else stitcher.staleness_days
        return reconcile(
            df, live_price, now=now,
            staleness_days=staleness, scale_threshold=stitcher.scale_threshold,
        )

    def _timeframe_analysis(
        self,
        timeframe: Timeframe,
        df: pd.DataFrame,
        result: DataResult,
        live_price: float | None,
        now: pd.Timestamp,
    ) -> TimeframeAnalysis | None:
        stitched = self._stitch(timeframe, df, live_price, now)
        snap = latest_snapshot(stitched, vwap_anchor=self.settings.timeframes[timeframe].vwap_anchor)
        if snap is None:
            return None
        source = result.provider.value + (" (stale)" if result.stale else "")
        return TimeframeAnalysis(
            timeframe=timeframe,
            source=source,
            bar_count=len(stitched),
            trend=snap.trend,
            snapshot=snap,
            ema_distances=ema_distances(snap, self.settings.technicals.near_ema_pct),
            confluence=confluence_score(snap),
        )

    def _metrics(
        self,
        daily: pd.DataFrame,
        stitched: pd.DataFrame,
        snap: IndicatorSnapshot,
        quote: Quote | None,
        price: float,
        last_close: float,
        session: MarketSession,
        fundamentals: FundamentalsSnapshot | None,
    ) -> SymbolMetrics:
        orch = self.settings.orchestrator
        tech = self.settings.technicals
        # same price level as the live quote
        year = stitched.tail(orch.avg_volume_window)

        avg_volume = float(year["Volume"].mean()) if not year.empty else None
        today_volume = (
            float(quote.volume) if quote is not None and quote.volume else float(daily["Volume"].iloc[-1])
        )
        volume_diff = (
            (today_volume - avg_volume) / avg_volume * 100.0 if avg_volume else None
        )

        week52_high = fundamentals.week52_high if fundamentals is not None else None
        week52_low = fundamentals.week52_low if fundamentals is not None else None
        if week52_high is None:
            week52_high = float(year["High"].max())
        if week52_low is None:
            week52_low = float(year["Low"].min())

        atr = snap.atr
        has_live = quote is not None and not quote.stale
        return SymbolMetrics(
            price=price,
            header_price=price if session == MarketSession.REGULAR and has_live else last_close,
            atr=atr,
            volatility_pct=atr / price * 100.0 if atr and price else None,
            historical_vol=historical_volatility(
                stitched["Close"], tech.realized_vol_window, tech.annualization_factor,
            ),
            avg_volume_1y=avg_volume,
            volume_diff_pct=volume_diff,
            day_high=max(float(stitched["High"].iloc[-1]), price),
            day_low=min(float(stitched["Low"].iloc[-1]), price),
            week52_high=week52_high,
            week52_low=week52_low,
        )
