"""Price-action patterns: fair value gaps and single/two-bar candlesticks."""

from __future__ import annotations

import numpy as np
import pandas as pd

from market_pulse.models.technicals import CandlePattern, FVGType, TrendDirection

_PATTERN_DIRECTION = {
    CandlePattern.NONE: TrendDirection.NEUTRAL,
    CandlePattern.DOJI: TrendDirection.NEUTRAL,
    CandlePattern.HAMMER: TrendDirection.BULLISH,
    CandlePattern.SHOOTING_STAR: TrendDirection.BEARISH,
    CandlePattern.BULLISH_ENGULFING: TrendDirection.BULLISH,
    CandlePattern.BEARISH_ENGULFING: TrendDirection.BEARISH,
}


def track_fair_value_gaps(ohlcv: pd.DataFrame) -> pd.DataFrame:
    """Most recent unfilled fair value gap as of each bar.

    A 3-candle imbalance opens a gap: bullish when candle[i].low is above
    candle[i-2].high, bearish when candle[i].high is below candle[i-2].low.
    A newer gap replaces the active one. A bullish gap is filled once a low
    trades down to its bottom, a bearish gap once a high trades up to its top.

    Returns columns ``fvg_type``, ``fvg_low`` and ``fvg_high``; the bounds
    are NaN while no gap is active.
    """
    highs = ohlcv["High"].to_numpy(dtype=float)
    lows = ohlcv["Low"].to_numpy(dtype=float)
    n = len(ohlcv)

    types = [FVGType.NONE] * n
    gap_lows = np.full(n, np.nan)
    gap_highs = np.full(n, np.nan)

    active = FVGType.NONE
    gap_low = gap_high = np.nan
    for i in range(2, n):
        if lows[i] > highs[i - 2]:
            active, gap_low, gap_high = FVGType.BULLISH, highs[i - 2], lows[i]
        elif highs[i] < lows[i - 2]:
            active, gap_low, gap_high = FVGType.BEARISH, highs[i], lows[i - 2]

        if active == FVGType.BULLISH and lows[i] <= gap_low:
            active, gap_low, gap_high = FVGType.NONE, np.nan, np.nan
        elif active == FVGType.BEARISH and highs[i] >= gap_high:
            active, gap_low, gap_high = FVGType.NONE, np.nan, np.nan

        types[i] = active
        gap_lows[i] = gap_low
        gap_highs[i] = gap_high

    return pd.DataFrame(
        {"fvg_type": types, "fvg_low": gap_lows, "fvg_high": gap_highs},
        index=ohlcv.index,
    )


def detect_candle_patterns(ohlcv: pd.DataFrame) -> pd.Series:
    """Candlestick pattern per bar, checked in priority order.

    Doji, hammer, shooting star, bullish engulfing, bearish engulfing. The
    first bar has no prior close and is always NONE.
    """
    o = ohlcv["Open"].to_numpy(dtype=float)
    h = ohlcv["High"].to_numpy(dtype=float)
    low = ohlcv["Low"].to_numpy(dtype=float)
    c = ohlcv["Close"].to_numpy(dtype=float)
    prev_o = np.roll(o, 1)
    prev_c = np.roll(c, 1)

    body = np.abs(c - o)
    upper = h - np.maximum(o, c)
    lower = np.minimum(o, c) - low
    span = h - low

    conditions = [
        (span > 0) & (body <= 0.1 * span),
        (lower > 2 * body) & (upper < 0.5 * body) & (c < prev_c),
        (upper > 2 * body) & (lower < 0.5 * body) & (c > prev_c),
        (c > o) & (prev_c < prev_o) & (o < prev_c) & (c > prev_o),
        (c < o) & (prev_c > prev_o) & (o > prev_c) & (c < prev_o),
    ]
    choices = [
        CandlePattern.DOJI,
        CandlePattern.HAMMER,
        CandlePattern.SHOOTING_STAR,
        CandlePattern.BULLISH_ENGULFING,
        CandlePattern.BEARISH_ENGULFING,
    ]
    picked = np.select(conditions, range(1, len(choices) + 1), default=0)
    patterns = [
        CandlePattern.NONE if i == 0 or k == 0 else choices[k - 1]
        for i, k in enumerate(picked)
    ]
    return pd.Series(patterns, index=ohlcv.index, dtype=object)


def pattern_direction(pattern: CandlePattern) -> TrendDirection:
    return _PATTERN_DIRECTION[pattern]
