"""Data service models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class DataType(StrEnum):
    QUOTE = "quote"
    OHLCV = "ohlcv"
    OPTIONS_CHAIN = "options_chain"
    GREEKS = "greeks"
    FUNDAMENTALS = "fundamentals"
    SENTIMENT = "sentiment"


class ProviderType(StrEnum):
    PUBLIC = "public"
    SCHWAB = "schwab"
    ALPACA = "alpaca"
    FINNHUB = "finnhub"
    YFINANCE = "yfinance"


class Timeframe(StrEnum):
    MIN_10 = "10m"
    HOUR_1 = "1h"
    HOUR_4 = "4h"
    DAY_1 = "1d"
    WEEK_1 = "1w"

    @property
    def is_intraday(self) -> bool:
        return self in (Timeframe.MIN_10, Timeframe.HOUR_1, Timeframe.HOUR_4)


class DataResult(BaseModel):
    """Provenance of a resolved series or snapshot."""

    ticker: str
    data_type: DataType
    provider: ProviderType
    from_cache: bool = False
    stale: bool = False
    fetched_at: datetime
    row_count: int = 0
