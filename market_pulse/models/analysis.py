"""Combined multi-timeframe analysis returned by MarketAnalyzer."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from market_pulse.models.data import Timeframe
from market_pulse.models.fundamentals import FundamentalsSnapshot, QualityScore, SentimentSnapshot
from market_pulse.models.market import MarketSession
from market_pulse.models.options import (
    GammaSqueezeScore,
    PutCallRatio,
    Recommendation,
    UnusualOption,
)
from market_pulse.models.technicals import (
    ConfluenceScore,
    EMADistance,
    IndicatorSnapshot,
    TrendDirection,
)


class TimeframeAnalysis(BaseModel):
    timeframe: Timeframe
    source: str
    bar_count: int
    trend: TrendDirection
    snapshot: IndicatorSnapshot
    ema_distances: list[EMADistance] = Field(default_factory=list)
    confluence: ConfluenceScore = Field(default_factory=ConfluenceScore)


class SymbolMetrics(BaseModel):
    price: float
    header_price: float
    atr: float | None = None
    volatility_pct: float | None = None
    historical_vol: float | None = None
    avg_volume_1y: float | None = None
    volume_diff_pct: float | None = None
    day_high: float | None = None
    day_low: float | None = None
    week52_high: float | None = None
    week52_low: float | None = None


class SymbolAnalysis(BaseModel):
    """Everything the UI layer needs for one symbol."""

    symbol: str
    as_of: datetime
    session: MarketSession
    data_source: str
    price_stale: bool = False
    metrics: SymbolMetrics
    timeframes: dict[Timeframe, TimeframeAnalysis] = Field(default_factory=dict)
    recommendation: Recommendation | None = None
    put_call_ratio: PutCallRatio | None = None
    gamma_squeeze: GammaSqueezeScore | None = None
    unusual_activity: list[UnusualOption] = Field(default_factory=list)
    fundamentals: FundamentalsSnapshot | None = None
    quality: QualityScore | None = None
    sentiment: SentimentSnapshot | None = None
