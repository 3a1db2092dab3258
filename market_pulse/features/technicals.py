"""Technical indicator computation from OHLCV DataFrames."""

from __future__ import annotations

import math

import numpy as np
import pandas as pd

from market_pulse.config import TechnicalsSettings, get_settings
from market_pulse.features.patterns import (
    detect_candle_patterns,
    pattern_direction,
    track_fair_value_gaps,
)
from market_pulse.models.technicals import (
    ConfluenceScore,
    EMADistance,
    IndicatorSnapshot,
    ScoredSignal,
    TrendDirection,
    VWAPAnchor,
)

_SNAPSHOT_FIELDS = set(IndicatorSnapshot.model_fields)
_LABEL_FIELDS = {"trend", "fvg_type", "pattern", "pattern_direction"}

_ANCHOR_FREQ = {
    VWAPAnchor.WEEK: "W",
    VWAPAnchor.MONTH: "M",
    VWAPAnchor.YEAR: "Y",
}


def compute_ema(close: pd.Series, span: int) -> pd.Series:
    """Exponential moving average, NaN until ``span`` bars are available."""
    return close.ewm(span=span, adjust=False, min_periods=span).mean()


def compute_rsi(close: pd.Series, period: int) -> pd.Series:
    """RSI using Wilder's smoothing method."""
    delta = close.diff()
    gain = delta.where(delta > 0, 0.0)
    loss = (-delta).where(delta < 0, 0.0)

    avg_gain = gain.ewm(alpha=1.0 / period, min_periods=period + 1, adjust=False).mean()
    avg_loss = loss.ewm(alpha=1.0 / period, min_periods=period + 1, adjust=False).mean()

    rs = avg_gain / avg_loss.replace(0, np.nan)
    rsi = 100.0 - (100.0 / (1.0 + rs))
    # avg_loss == 0: all gains -> 100, flat -> 50
    no_loss = avg_loss.eq(0) & avg_gain.notna()
    rsi = rsi.mask(no_loss & avg_gain.gt(0), 100.0)
    rsi = rsi.mask(no_loss & avg_gain.eq(0), 50.0)
    return rsi.clip(0.0, 100.0)


def compute_macd(
    close: pd.Series, fast: int, slow: int, signal: int
) -> tuple[pd.Series, pd.Series, pd.Series]:
    """MACD: (macd_line, signal_line, histogram)."""
    ema_fast = close.ewm(span=fast, adjust=False).mean()
    ema_slow = close.ewm(span=slow, adjust=False).mean()
    macd_line = (ema_fast - ema_slow).where(close.expanding().count() >= slow)
    signal_line = macd_line.ewm(span=signal, adjust=False, min_periods=signal).mean()
    histogram = macd_line - signal_line
    return macd_line, signal_line, histogram


def compute_bollinger(
    close: pd.Series, window: int, num_std: float
) -> tuple[pd.Series, pd.Series, pd.Series, pd.Series]:
    """Bollinger Bands: (upper, middle, lower, percent_b)."""
    middle = close.rolling(window).mean()
    std = close.rolling(window).std()
    upper = middle + num_std * std
    lower = middle - num_std * std
    width = (upper - lower).replace(0, np.nan)
    percent_b = (close - lower) / width
    return upper, middle, lower, percent_b


def _true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
    return pd.concat(
        [
            high - low,
            (high - close.shift(1)).abs(),
            (low - close.shift(1)).abs(),
        ],
        axis=1,
    ).max(axis=1)


def compute_atr(
    high: pd.Series, low: pd.Series, close: pd.Series, period: int
) -> pd.Series:
    """Average True Range."""
    return _true_range(high, low, close).rolling(period).mean()


def compute_adx(
    high: pd.Series, low: pd.Series, close: pd.Series, period: int
) -> tuple[pd.Series, pd.Series, pd.Series]:
    """Wilder's ADX: (adx, plus_di, minus_di)."""
    up = high.diff()
    down = -low.diff()
    plus_dm = up.where((up > down) & (up > 0), 0.0)
    minus_dm = down.where((down > up) & (down > 0), 0.0)
    # first bar has no prior bar to compare against
    plus_dm.iloc[:1] = np.nan
    minus_dm.iloc[:1] = np.nan
    tr = _true_range(high, low, close)
    tr.iloc[:1] = np.nan

    def wilder(series: pd.Series) -> pd.Series:
        return series.ewm(alpha=1.0 / period, min_periods=period, adjust=False).mean()

    smoothed_tr = wilder(tr).replace(0, np.nan)
    plus_di = 100.0 * wilder(plus_dm) / smoothed_tr
    minus_di = 100.0 * wilder(minus_dm) / smoothed_tr

    di_sum = (plus_di + minus_di).replace(0, np.nan)
    dx = 100.0 * (plus_di - minus_di).abs() / di_sum
    adx = wilder(dx)
    return adx, plus_di, minus_di


def compute_vwap(df: pd.DataFrame, anchor: VWAPAnchor = VWAPAnchor.DAY) -> pd.Series:
    """Anchored VWAP on typical price (H+L+C)/3.

    The cumulative sums restart at each anchor boundary (calendar day,
    week, month or year). ``VWAPAnchor.NONE`` accumulates over the whole
    series.
    """
    typical = (df["High"] + df["Low"] + df["Close"]) / 3.0
    pv = typical * df["Volume"]
    if anchor == VWAPAnchor.NONE:
        cum_pv = pv.cumsum()
        cum_vol = df["Volume"].cumsum()
    else:
        index = pd.DatetimeIndex(df.index)
        if index.tz is not None:
            index = index.tz_localize(None)
        if anchor == VWAPAnchor.DAY:
            keys = index.normalize()
        else:
            keys = index.to_period(_ANCHOR_FREQ[anchor])
        cum_pv = pv.groupby(keys).cumsum()
        cum_vol = df["Volume"].groupby(keys).cumsum()
    return cum_pv / cum_vol.replace(0, np.nan)


def classify_trend(close: float, ema_medium: float | None) -> TrendDirection:
    """Single trend rule shared by every timeframe: price against the medium EMA."""
    if ema_medium is None or _is_missing(ema_medium):
        return TrendDirection.NEUTRAL
    if close > ema_medium:
        return TrendDirection.BULLISH
    if close < ema_medium:
        return TrendDirection.BEARISH
    return TrendDirection.NEUTRAL


def compute_indicator_frame(
    ohlcv: pd.DataFrame,
    settings: TechnicalsSettings | None = None,
    vwap_anchor: VWAPAnchor | None = None,
) -> pd.DataFrame:
    """Vectorised indicator columns aligned to ``ohlcv``'s index.

    Column names match the IndicatorSnapshot field names. Values are NaN
    until each indicator's lookback is satisfied; earlier rows never change
    when bars are appended.
    """
    s = settings or get_settings().technicals
    anchor = vwap_anchor or s.vwap_anchor
    close = ohlcv["Close"]
    high = ohlcv["High"]
    low = ohlcv["Low"]

    out = pd.DataFrame(index=ohlcv.index)
    periods = sorted(set(s.ema_periods) | {s.ema_fast, s.ema_mid, s.ema_medium, s.ema_long})
    for period in periods:
        out[f"ema_{period}"] = compute_ema(close, period)

    out["rsi"] = compute_rsi(close, s.rsi_period)
    out["macd"], out["macd_signal"], out["macd_histogram"] = compute_macd(
        close, s.macd_fast, s.macd_slow, s.macd_signal,
    )
    out["bb_upper"], out["bb_middle"], out["bb_lower"], out["bb_percent_b"] = compute_bollinger(
        close, s.bollinger_window, s.bollinger_std,
    )
    out["vwap"] = compute_vwap(ohlcv, anchor)
    out["atr"] = compute_atr(high, low, close, s.atr_period)
    out["adx"], out["plus_di"], out["minus_di"] = compute_adx(high, low, close, s.adx_period)

    medium = out[f"ema_{s.ema_medium}"]
    out["trend"] = [
        classify_trend(c, None if _is_missing(m) else m) for c, m in zip(close, medium)
    ]

    gaps = track_fair_value_gaps(ohlcv)
    out["fvg_type"] = gaps["fvg_type"]
    out["fvg_low"] = gaps["fvg_low"]
    out["fvg_high"] = gaps["fvg_high"]
    out["pattern"] = detect_candle_patterns(ohlcv)
    out["pattern_direction"] = out["pattern"].map(pattern_direction)
    return out


def compute_indicators(
    ohlcv: pd.DataFrame,
    settings: TechnicalsSettings | None = None,
    vwap_anchor: VWAPAnchor | None = None,
) -> list[IndicatorSnapshot]:
    """One IndicatorSnapshot per bar."""
    if ohlcv.empty:
        return []
    frame = compute_indicator_frame(ohlcv, settings, vwap_anchor)
    return [
        _snapshot(ts, bar, ind)
        for (ts, bar), (_, ind) in zip(ohlcv.iterrows(), frame.iterrows())
    ]


def latest_snapshot(
    ohlcv: pd.DataFrame,
    settings: TechnicalsSettings | None = None,
    vwap_anchor: VWAPAnchor | None = None,
) -> IndicatorSnapshot | None:
    """Snapshot for the last bar, or None for an empty series."""
    if ohlcv.empty:
        return None
    frame = compute_indicator_frame(ohlcv, settings, vwap_anchor)
    return _snapshot(ohlcv.index[-1], ohlcv.iloc[-1], frame.iloc[-1])


def _is_missing(value: object) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def _snapshot(ts: pd.Timestamp, bar: pd.Series, ind: pd.Series) -> IndicatorSnapshot:
    derived = {
        name: (None if _is_missing(value) else float(value))
        for name, value in ind.items()
        if name in _SNAPSHOT_FIELDS and name not in _LABEL_FIELDS
    }
    return IndicatorSnapshot(
        timestamp=pd.Timestamp(ts).to_pydatetime(),
        open=float(bar["Open"]),
        high=float(bar["High"]),
        low=float(bar["Low"]),
        close=float(bar["Close"]),
        volume=float(bar["Volume"]),
        trend=ind["trend"],
        fvg_type=ind["fvg_type"],
        pattern=ind["pattern"],
        pattern_direction=ind["pattern_direction"],
        **derived,
    )


# --- Scoring ---


def confluence_score(snap: IndicatorSnapshot) -> ConfluenceScore:
    """Weighted bull/bear points from independent signals. Each fires at most once."""
    signals: list[ScoredSignal] = []

    def add(name: str, direction: TrendDirection, points: int, description: str) -> None:
        signals.append(ScoredSignal(
            name=name, direction=direction, points=points, description=description,
        ))

    price = snap.close
    bull, bear = TrendDirection.BULLISH, TrendDirection.BEARISH

    # EMA structure
    if snap.ema_50 is not None:
        if price > snap.ema_50:
            add("Price > EMA50", bull, 15, f"Close {price:.2f} above EMA50 {snap.ema_50:.2f}")
        elif price < snap.ema_50:
            add("Price < EMA50", bear, 15, f"Close {price:.2f} below EMA50 {snap.ema_50:.2f}")
    if snap.ema_200 is not None:
        if price > snap.ema_200:
            add("Price > EMA200", bull, 5, f"Close above EMA200 {snap.ema_200:.2f}")
        elif price < snap.ema_200:
            add("Price < EMA200", bear, 5, f"Close below EMA200 {snap.ema_200:.2f}")
    if None not in (snap.ema_10, snap.ema_21, snap.ema_50):
        if snap.ema_10 > snap.ema_21 > snap.ema_50:
            add("EMA Stack Bullish", bull, 10, "EMA10 > EMA21 > EMA50")
        elif snap.ema_10 < snap.ema_21 < snap.ema_50:
            add("EMA Stack Bearish", bear, 10, "EMA10 < EMA21 < EMA50")

    # Momentum
    if snap.rsi is not None:
        rsi = snap.rsi
        if 60 < rsi <= 70:
            add("Strong Bullish Momentum", bull, 5, f"RSI {rsi:.1f} in 60-70")
        elif 30 <= rsi < 40:
            add("Developing Bearish Momentum", bear, 5, f"RSI {rsi:.1f} in 30-40")
        elif rsi < 30:
            add("RSI Oversold", bull, 10, f"RSI {rsi:.1f} below 30")
        elif rsi > 80:
            add("RSI Overbought", bear, 10, f"RSI {rsi:.1f} above 80")

    if snap.macd is not None and snap.macd_signal is not None:
        if snap.macd > snap.macd_signal:
            add("MACD Bullish", bull, 10, "MACD line above signal line")
        elif snap.macd < snap.macd_signal:
            add("MACD Bearish", bear, 10, "MACD line below signal line")

    # Bollinger
    pb = snap.bb_percent_b
    if pb is not None:
        if pb < 0:
            add("Bollinger Breakdown", bull, 10, f"%B {pb:.2f}: overextended below lower band")
        elif pb > 1:
            add("Bollinger Breakout", bear, 10, f"%B {pb:.2f}: overextended above upper band")
        elif pb < 0.2:
            add("Lower Band Support", bull, 5, f"%B {pb:.2f} near lower band")
        elif pb > 0.8:
            add("Upper Band Resistance", bear, 5, f"%B {pb:.2f} near upper band")
        elif snap.bb_middle is not None and price > snap.bb_middle:
            add("Bollinger Uptrend", bull, 5, "Close above middle band")
        elif snap.bb_middle is not None and price < snap.bb_middle:
            add("Bollinger Downtrend", bear, 5, "Close below middle band")

    return ConfluenceScore(
        bull_score=sum(s.points for s in signals if s.direction == bull),
        bear_score=sum(s.points for s in signals if s.direction == bear),
        signals=signals,
    )


def ema_distances(
    snap: IndicatorSnapshot, near_pct: float | None = None
) -> list[EMADistance]:
    """Percent distance of the close from each available EMA."""
    threshold = near_pct if near_pct is not None else get_settings().technicals.near_ema_pct
    out: list[EMADistance] = []
    for period in (9, 10, 21, 50, 200):
        value = getattr(snap, f"ema_{period}")
        if value is None or value == 0:
            continue
        pct = (snap.close - value) / value * 100.0
        out.append(EMADistance(
            period=period, value=value, distance_pct=pct, is_near=abs(pct) < threshold,
        ))
    return out


def historical_volatility(
    close: pd.Series, window: int = 20, annualization_factor: int = 252
) -> float | None:
    """Annualised close-to-close volatility over the trailing window (0.25 = 25%)."""
    log_ret = np.log(close / close.shift(1)).dropna()
    if len(log_ret) < window:
        return None
    std = float(log_ret.iloc[-window:].std())
    if math.isnan(std):
        return None
    return std * math.sqrt(annualization_factor)


def aggregate(ohlcv: pd.DataFrame, rule: str) -> pd.DataFrame:
    """Resample bars to a coarser timeframe (e.g. 5m -> 10min, 1h -> 4h)."""
    if ohlcv.empty:
        return ohlcv.copy()
    out = ohlcv.resample(rule).agg({
        "Open": "first",
        "High": "max",
        "Low": "min",
        "Close": "last",
        "Volume": "sum",
    })
    return out.dropna(subset=["Open", "High", "Low", "Close"])
