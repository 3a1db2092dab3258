"""Shared test fixtures for market_pulse tests."""

import asyncio
from datetime import date

import numpy as np
import pandas as pd
import pytest

from market_pulse.config import ProviderSettings, reset_settings
from market_pulse.data.exceptions import UpstreamError
from market_pulse.data.providers.base import ProviderClient
from market_pulse.models.data import DataType, ProviderType
from market_pulse.models.options import OptionChain, OptionContract, OptionType


def _make_ohlcv(
    start: str,
    periods: int,
    base_price: float = 100.0,
    trend: float = 0.0,
    volatility: float = 0.01,
    seed: int = 42,
) -> pd.DataFrame:
    """Generate synthetic OHLCV data.

    Args:
        start: Start date string.
        periods: Number of trading days.
        base_price: Starting price.
        trend: Daily drift (e.g., 0.001 for uptrend).
        volatility: Daily return std.
        seed: Random seed.
    """
    rng = np.random.default_rng(seed)
    dates = pd.bdate_range(start=start, periods=periods)
    returns = rng.normal(trend, volatility, periods)
    prices = base_price * np.exp(np.cumsum(returns))

    # Synthetic OHLCV
    daily_range = prices * volatility * rng.uniform(0.5, 2.0, periods)
    high = prices + daily_range / 2
    low = prices - daily_range / 2
    open_prices = prices + rng.normal(0, volatility * prices * 0.3, periods)
    volume = rng.integers(1_000_000, 10_000_000, periods).astype(float)

    return pd.DataFrame(
        {
            "Open": open_prices,
            "High": high,
            "Low": low,
            "Close": prices,
            "Volume": volume,
        },
        index=dates,
    )


def _make_ramp(start: str, periods: int, base_price: float = 100.0, step: float = 0.5) -> pd.DataFrame:
    """Strictly rising closes, one step per business day."""
    dates = pd.bdate_range(start=start, periods=periods)
    close = base_price + step * np.arange(periods)
    return pd.DataFrame(
        {
            "Open": close - step / 2,
            "High": close + step,
            "Low": close - step,
            "Close": close,
            "Volume": np.full(periods, 1_000_000.0),
        },
        index=dates,
    )


def _contract(
    strike: float,
    option_type: OptionType,
    expiry: date,
    volume: int = 500,
    open_interest: int = 1000,
    bid: float = 2.0,
    ask: float = 2.2,
    root: str = "AAPL",
) -> OptionContract:
    cp = "C" if option_type == OptionType.CALL else "P"
    return OptionContract(
        symbol=f"{root}{expiry:%y%m%d}{cp}{int(strike * 1000):08d}",
        root=root,
        strike=strike,
        expiration=expiry,
        option_type=option_type,
        bid=bid,
        ask=ask,
        last=(bid + ask) / 2,
        volume=volume,
        open_interest=open_interest,
    )


def _make_chain(
    expirations: list[date],
    strikes: list[float],
    symbol: str = "AAPL",
    call_volume: int = 500,
    put_volume: int = 500,
    open_interest: int = 1000,
) -> OptionChain:
    """Chain with a call and a put at every strike of every expiry."""
    contracts = []
    for exp in expirations:
        for strike in strikes:
            contracts.append(_contract(strike, OptionType.CALL, exp, call_volume, open_interest, root=symbol))
            contracts.append(_contract(strike, OptionType.PUT, exp, put_volume, open_interest, root=symbol))
    return OptionChain.from_contracts(symbol, contracts, source="test")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(ProviderClient):
    """In-memory provider returning canned payloads and counting calls."""

    def __init__(
        self,
        provider_type: ProviderType,
        data_types: list[DataType],
        *,
        quote=None,
        bars=None,
        chain=None,
        fundamentals=None,
        sentiment=None,
        greeks=None,
        error: Exception | None = None,
        delay: float = 0.0,
        configured: bool = True,
    ) -> None:
        self._type = provider_type
        self._data_types = data_types
        super().__init__(ProviderSettings(enabled=configured))
        self.quote = quote
        self.bars = bars
        self.chain = chain
        self.fundamentals = fundamentals
        self.sentiment = sentiment
        self.greeks = greeks
        self.error = error
        self.delay = delay
        self.calls = 0

    @property
    def provider_type(self) -> ProviderType:
        return self._type

    @property
    def supported_data_types(self) -> list[DataType]:
        return self._data_types

    async def _serve(self, payload, symbol: str):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if payload is None:
            raise UpstreamError(self.name, symbol, "nothing canned")
        return payload

    async def fetch_quote(self, symbol):
        return await self._serve(self.quote, symbol)

    async def fetch_bars(self, symbol, timeframe, tf_def):
        return await self._serve(self.bars, symbol)

    async def fetch_option_chain(self, symbol, expiry=None):
        return await self._serve(self.chain, symbol)

    async def fetch_greeks(self, osi_symbols):
        return await self._serve(self.greeks, osi_symbols[0])

    async def fetch_fundamentals(self, symbol):
        return await self._serve(self.fundamentals, symbol)

    async def fetch_sentiment(self, symbol):
        return await self._serve(self.sentiment, symbol)


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Every test starts from the packaged defaults."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def _no_user_config(monkeypatch, tmp_path):
    """Keep a developer's ~/.market_pulse/config.yaml out of the tests."""
    monkeypatch.setattr("market_pulse.config._USER_CONFIG_PATH", tmp_path / "absent.yaml")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_ohlcv_trending() -> pd.DataFrame:
    """250 rows uptrend, low volatility."""
    return _make_ohlcv("2024-01-01", 250, trend=0.001, volatility=0.008, seed=42)


@pytest.fixture
def sample_ohlcv_choppy() -> pd.DataFrame:
    """250 rows range-bound, high volatility."""
    return _make_ohlcv("2024-01-01", 250, trend=0.0, volatility=0.025, seed=99)


@pytest.fixture
def sample_ramp() -> pd.DataFrame:
    """250 rows of steadily rising closes."""
    return _make_ramp("2024-01-01", 250)
