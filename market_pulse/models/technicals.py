"""Pydantic models for technical indicators."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class TrendDirection(StrEnum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class VWAPAnchor(StrEnum):
    NONE = "none"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class FVGType(StrEnum):
    BULLISH = "bullish"  # Gap up: candle1.high < candle3.low
    BEARISH = "bearish"  # Gap down: candle1.low > candle3.high
    NONE = "none"


class CandlePattern(StrEnum):
    NONE = "none"
    DOJI = "doji"
    HAMMER = "hammer"
    SHOOTING_STAR = "shooting_star"
    BULLISH_ENGULFING = "bullish_engulfing"
    BEARISH_ENGULFING = "bearish_engulfing"


class IndicatorSnapshot(BaseModel):
    """One bar plus every derived indicator value at that bar.

    Fields are None until the indicator's lookback window is satisfied.
    """

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    ema_9: float | None = None
    ema_10: float | None = None
    ema_21: float | None = None
    ema_50: float | None = None
    ema_200: float | None = None
    rsi: float | None = None
    macd: float | None = None
    macd_signal: float | None = None
    macd_histogram: float | None = None
    bb_upper: float | None = None
    bb_middle: float | None = None
    bb_lower: float | None = None
    bb_percent_b: float | None = None
    vwap: float | None = None
    atr: float | None = None
    adx: float | None = None
    plus_di: float | None = None
    minus_di: float | None = None
    trend: TrendDirection = TrendDirection.NEUTRAL
    fvg_type: FVGType = FVGType.NONE
    fvg_low: float | None = None  # Bottom of the active gap
    fvg_high: float | None = None  # Top of the active gap
    pattern: CandlePattern = CandlePattern.NONE
    pattern_direction: TrendDirection = TrendDirection.NEUTRAL


class ScoredSignal(BaseModel):
    name: str
    direction: TrendDirection
    points: int
    description: str


class ConfluenceScore(BaseModel):
    """Bull/bear points from independent weighted signals."""

    bull_score: int = 0
    bear_score: int = 0
    signals: list[ScoredSignal] = Field(default_factory=list)

    @property
    def bullish_signals(self) -> list[ScoredSignal]:
        return [s for s in self.signals if s.direction == TrendDirection.BULLISH]

    @property
    def bearish_signals(self) -> list[ScoredSignal]:
        return [s for s in self.signals if s.direction == TrendDirection.BEARISH]

    @property
    def strength(self) -> float:
        """0-100 normalised score: 50 plus 0.8 per point of bull/bear spread."""
        spread = self.bull_score - self.bear_score
        return max(0.0, min(100.0, 50.0 + spread * 0.8))


class EMADistance(BaseModel):
    period: int
    value: float
    distance_pct: float
    is_near: bool
