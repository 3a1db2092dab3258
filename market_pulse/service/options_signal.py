"""OptionsSignalService: chain-backed recommendation, put/call ratio and squeeze score."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import date

from market_pulse.config import get_settings
from market_pulse.data.cache import ResourceCache
from market_pulse.data.service import DataService
from market_pulse.features.flow import (
    NO_OPTIONS_REASON,
    gamma_squeeze_score,
    put_call_ratio,
    scan_unusual_activity,
)
from market_pulse.features.options import probability_itm, recommend
from market_pulse.models.fundamentals import FundamentalsSnapshot, SentimentSnapshot
from market_pulse.models.market import MarketSession
from market_pulse.models.options import (
    GammaSqueezeScore,
    OptionChain,
    PutCallRatio,
    Recommendation,
    UnusualOption,
)
from market_pulse.models.technicals import IndicatorSnapshot, TrendDirection

logger = logging.getLogger(__name__)


class OptionsSignalService:
    """Options analytics for a symbol, fetching the chain through DataService.

    Every method degrades to an empty or neutral result when no chain is
    available; none of them raise for provider failures.
    """

    def __init__(
        self,
        data_service: DataService | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.data = data_service or DataService()
        self._pcr: ResourceCache[str, PutCallRatio] = ResourceCache("put_call", clock)

    async def _chain(
        self, symbol: str, chain: OptionChain | None, fetch: bool
    ) -> OptionChain | None:
        """``chain`` when given or when fetching is off, else the chain from DataService."""
        if chain is not None or not fetch:
            return chain
        return await self.data.fetch_option_chain(symbol)

    async def put_call_ratio(
        self, symbol: str, chain: OptionChain | None = None, fetch: bool = True
    ) -> PutCallRatio | None:
        """Live ratio, else the last computed one tagged stale, else None."""
        symbol = symbol.upper()

        async def compute() -> PutCallRatio | None:
            live = await self._chain(symbol, chain, fetch)
            if live is None:
                return None
            return put_call_ratio(live).model_copy(update={"stale": live.stale})

        ttl = get_settings().cache.put_call_ttl_seconds
        value, _ = await self._pcr.get_or_fetch(symbol, ttl, compute)
        if value is not None:
            return value
        cached = self._pcr.get_stale(symbol)
        if cached is not None:
            logger.warning("%s put/call: serving stale ratio", symbol)
            return cached.model_copy(update={"stale": True})
        return None

    async def gamma_squeeze_score(
        self,
        symbol: str,
        price: float,
        atr: float | None = None,
        week52_high: float | None = None,
        week52_low: float | None = None,
        historical_vol: float | None = None,
        chain: OptionChain | None = None,
        fetch: bool = True,
    ) -> GammaSqueezeScore:
        chain = await self._chain(symbol.upper(), chain, fetch)
        if chain is None:
            return GammaSqueezeScore(symbol=symbol.upper(), score=0, reasons=[NO_OPTIONS_REASON])
        return gamma_squeeze_score(
            chain, price, atr=atr, week52_high=week52_high,
            week52_low=week52_low, historical_vol=historical_vol,
        )

    async def unusual_activity(
        self,
        symbol: str,
        chain: OptionChain | None = None,
        top: int | None = None,
        fetch: bool = True,
    ) -> list[UnusualOption]:
        return scan_unusual_activity(await self._chain(symbol.upper(), chain, fetch), top=top)

    async def recommend(
        self,
        symbol: str,
        price: float,
        atr: float | None,
        trend: TrendDirection,
        rsi: float | None,
        snapshot: IndicatorSnapshot | None = None,
        fundamentals: FundamentalsSnapshot | None = None,
        sentiment: SentimentSnapshot | None = None,
        session: MarketSession = MarketSession.REGULAR,
        chain: OptionChain | None = None,
        today: date | None = None,
        fetch: bool = True,
    ) -> Recommendation:
        """Recommendation against the live chain, with greeks filled in when the chain lacks them."""
        chain = await self._chain(symbol.upper(), chain, fetch)
        rec = recommend(
            price, atr, trend, rsi, chain,
            snapshot=snapshot, fundamentals=fundamentals, sentiment=sentiment,
            session=session, today=today,
        )
        contract = rec.contract
        if contract is None or not contract.symbol:
            return rec
        if contract.greeks is not None and contract.greeks.delta is not None:
            return rec

        greeks = (await self.data.fetch_greeks([contract.symbol])).get(contract.symbol)
        if greeks is None:
            return rec
        if greeks.implied_volatility is None and contract.implied_volatility is not None:
            greeks = greeks.model_copy(update={"implied_volatility": contract.implied_volatility})
        contract = contract.model_copy(update={"greeks": greeks})
        return rec.model_copy(update={
            "contract": contract,
            "probability_itm": probability_itm(contract, price, today),
        })
