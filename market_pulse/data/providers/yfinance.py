"""YFinanceProvider: quotes, OHLCV, option chains and fundamentals via yfinance."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

import pandas as pd
import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from market_pulse.config import ProviderSettings, TimeframeDef, get_settings
from market_pulse.data.cache import ResourceCache
from market_pulse.data.exceptions import NotFound, ProviderError, Throttled, UpstreamError
from market_pulse.data.providers._helpers import (
    normalize_ohlcv,
    safe_float,
    safe_int,
    select_expirations,
)
from market_pulse.data.providers.base import ProviderClient
from market_pulse.data.rate_limit import RateLimiter
from market_pulse.macro.session import market_session
from market_pulse.models.data import DataType, ProviderType, Timeframe
from market_pulse.models.fundamentals import FundamentalsSnapshot
from market_pulse.models.market import OHLCV_COLUMNS, Quote
from market_pulse.models.options import Greeks, OptionChain, OptionContract, OptionType


# Aliases for tickers whose yfinance symbol differs from the common name.
# Keys: user-facing ticker.  Values: yfinance symbol.
_YFINANCE_ALIASES: dict[str, str] = {
    "SPX":  "^GSPC",   # S&P 500 Index
    "NDX":  "^NDX",    # Nasdaq-100 Index
    "DJX":  "^DJI",    # Dow Jones Industrial Average
    "RUT":  "^RUT",    # Russell 2000 Index
    "VIX":  "^VIX",    # CBOE Volatility Index
    "BRK.B": "BRK-B",
    "BF.B": "BF-B",
}


class YFinanceProvider(ProviderClient):
    """Generic last-resort tier. Needs no credentials.

    yfinance is synchronous, so every call runs in a worker thread; the
    rate limiter is still consulted on the event loop before dispatch.
    """

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        limiter: RateLimiter | None = None,
        cache: ResourceCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(
            settings or get_settings().providers.yfinance,
            limiter=limiter, cache=cache, clock=clock,
        )

    @staticmethod
    def _resolve_ticker(ticker: str) -> str:
        """Translate user-facing ticker to yfinance symbol."""
        return _YFINANCE_ALIASES.get(ticker.upper(), ticker)

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.YFINANCE

    @property
    def supported_data_types(self) -> list[DataType]:
        return [DataType.QUOTE, DataType.OHLCV, DataType.OPTIONS_CHAIN, DataType.FUNDAMENTALS]

    async def _call(self, symbol: str, fn: Callable[..., Any], *args: Any) -> Any:
        self.limiter.acquire(symbol)
        try:
            return await asyncio.to_thread(fn, *args)
        except YFRateLimitError as e:
            self.limiter.trip()
            raise Throttled(
                self.name, symbol, "rate limited by Yahoo",
                retry_after=self.limiter.cooldown_seconds,
            ) from e
        except ProviderError:
            raise
        except Exception as e:
            raise UpstreamError(self.name, symbol, str(e) or type(e).__name__) from e

    # -- quote --

    async def fetch_quote(self, symbol: str) -> Quote:
        return await self._call(symbol, self._quote_sync, symbol)

    def _quote_sync(self, symbol: str) -> Quote:
        info = yf.Ticker(self._resolve_ticker(symbol)).fast_info
        price = safe_float(info.last_price)
        if not price or price <= 0:
            raise NotFound(self.name, symbol, "no last price")
        prev = safe_float(info.previous_close)
        change = price - prev if prev else None
        return Quote(
            symbol=symbol,
            price=price,
            change=change,
            change_pct=change / prev * 100 if change is not None and prev else None,
            volume=safe_int(info.last_volume),
            timestamp=datetime.now(timezone.utc),
            session=market_session(),
            source=self.name,
        )

    # -- bars --

    async def fetch_bars(
        self, symbol: str, timeframe: Timeframe, tf_def: TimeframeDef
    ) -> pd.DataFrame:
        return await self._call(symbol, self._bars_sync, symbol, tf_def)

    def _bars_sync(self, symbol: str, tf_def: TimeframeDef) -> pd.DataFrame:
        """Fetch OHLCV data from yfinance.

        Returns DataFrame with columns [Open, High, Low, Close, Volume]
        and a UTC-naive DatetimeIndex sorted ascending.
        """
        df = yf.download(
            self._resolve_ticker(symbol),
            period=tf_def.yfinance_period,
            interval=tf_def.yfinance_interval,
            progress=False,
            auto_adjust=True,
        )
        if df is None or df.empty:
            raise NotFound(self.name, symbol, "No data returned (empty DataFrame)")

        # yfinance may return MultiIndex columns for single ticker; flatten them
        if isinstance(df.columns, pd.MultiIndex):
            df.columns = df.columns.get_level_values(0)

        missing = set(OHLCV_COLUMNS) - set(df.columns)
        if missing:
            raise UpstreamError(self.name, symbol, f"Missing columns: {missing}")

        df = normalize_ohlcv(df)
        if df.empty:
            raise NotFound(self.name, symbol, "All rows had NaN values after cleaning")
        return df

    # -- options --

    async def fetch_option_chain(self, symbol: str, expiry: date | None = None) -> OptionChain:
        return await self._call(symbol, self._chain_sync, symbol, expiry)

    def _chain_sync(self, symbol: str, expiry: date | None) -> OptionChain:
        ticker_obj = yf.Ticker(self._resolve_ticker(symbol))
        available = [date.fromisoformat(e) for e in ticker_obj.options or ()]
        opts = get_settings().options
        targets = select_expirations(
            available, opts.chain_expirations, opts.target_dte, wanted=expiry,
        )
        if not targets:
            raise NotFound(self.name, symbol, "No options expirations available")

        contracts: list[OptionContract] = []
        for exp in targets:
            chain = ticker_obj.option_chain(exp.isoformat())
            for opt_type, df_raw in ((OptionType.CALL, chain.calls), (OptionType.PUT, chain.puts)):
                if df_raw is None or df_raw.empty:
                    continue
                for row in df_raw.to_dict("records"):
                    contracts.append(OptionContract(
                        symbol=str(row.get("contractSymbol", "")),
                        root=symbol,
                        strike=float(row["strike"]),
                        expiration=exp,
                        option_type=opt_type,
                        bid=safe_float(row.get("bid")) or 0.0,
                        ask=safe_float(row.get("ask")) or 0.0,
                        last=safe_float(row.get("lastPrice")) or 0.0,
                        volume=safe_int(row.get("volume")),
                        open_interest=safe_int(row.get("openInterest")),
                        greeks=Greeks(implied_volatility=safe_float(row.get("impliedVolatility"))),
                    ))

        if not contracts:
            raise NotFound(self.name, symbol, "No options chain data returned")
        return OptionChain.from_contracts(symbol, contracts, source=self.name)

    # -- fundamentals --

    async def fetch_fundamentals(self, symbol: str) -> FundamentalsSnapshot:
        ttl = get_settings().cache.fundamentals_ttl_seconds
        return await self._cached(
            ("fundamentals", symbol), ttl,
            lambda: self._call(symbol, self._fundamentals_sync, symbol),
        )

    def _fundamentals_sync(self, symbol: str) -> FundamentalsSnapshot:
        info = yf.Ticker(self._resolve_ticker(symbol)).info or {}
        if not info:
            raise NotFound(self.name, symbol, "no info")

        def pct(key: str) -> float | None:
            value = safe_float(info.get(key))
            return value * 100 if value is not None else None

        d_e = safe_float(info.get("debtToEquity"))
        return FundamentalsSnapshot(
            symbol=symbol,
            week52_high=safe_float(info.get("fiftyTwoWeekHigh")),
            week52_low=safe_float(info.get("fiftyTwoWeekLow")),
            beta=safe_float(info.get("beta")),
            market_cap=safe_float(info.get("marketCap")),
            pe=safe_float(info.get("trailingPE")),
            peg=safe_float(info.get("trailingPegRatio")) or safe_float(info.get("pegRatio")),
            roe=pct("returnOnEquity"),
            eps_growth=pct("earningsGrowth"),
            debt_to_equity=d_e / 100 if d_e is not None else None,  # yfinance reports percent
            free_cash_flow=safe_float(info.get("freeCashflow")),
            source=self.name,
            as_of=datetime.now(timezone.utc),
        )
