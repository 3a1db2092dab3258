"""Quote, bar and market-session models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

import pandas as pd
from pydantic import BaseModel

OHLCV_COLUMNS = ["Open", "High", "Low", "Close", "Volume"]


class MarketSession(StrEnum):
    PRE = "pre"
    REGULAR = "regular"
    POST = "post"
    CLOSED = "closed"


class MarketStatus(BaseModel):
    session: MarketSession
    is_open: bool
    is_holiday: bool
    description: str
    as_of: datetime


class Quote(BaseModel):
    """Live price for an underlying, tagged with the provider that answered."""

    symbol: str
    price: float
    change: float | None = None
    change_pct: float | None = None
    volume: int | None = None
    timestamp: datetime
    session: MarketSession = MarketSession.CLOSED
    source: str
    stale: bool = False


class Bar(BaseModel):
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


def bars_from_frame(df: pd.DataFrame) -> list[Bar]:
    """Convert an OHLCV DataFrame into a list of Bar models."""
    return [
        Bar(
            timestamp=ts.to_pydatetime(),
            open=float(row.Open),
            high=float(row.High),
            low=float(row.Low),
            close=float(row.Close),
            volume=float(row.Volume),
        )
        for ts, row in df.iterrows()
    ]


def frame_from_bars(bars: list[Bar]) -> pd.DataFrame:
    """Convert Bar models into an OHLCV DataFrame sorted ascending by time."""
    if not bars:
        return pd.DataFrame(columns=OHLCV_COLUMNS, index=pd.DatetimeIndex([]))
    df = pd.DataFrame(
        {
            "Open": [b.open for b in bars],
            "High": [b.high for b in bars],
            "Low": [b.low for b in bars],
            "Close": [b.close for b in bars],
            "Volume": [b.volume for b in bars],
        },
        index=pd.DatetimeIndex([b.timestamp for b in bars]),
    )
    return df.sort_index()
