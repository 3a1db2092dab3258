"""Reconcile a historical bar series with the live price."""

from __future__ import annotations

import logging

import pandas as pd

logger = logging.getLogger(__name__)

_PRICE_COLUMNS = ["Open", "High", "Low", "Close"]


def reconcile(
    bars: pd.DataFrame,
    live_price: float | None,
    now: pd.Timestamp | None = None,
    staleness_days: float = 5.0,
    scale_threshold: float = 0.05,
) -> pd.DataFrame:
    """Return a copy of ``bars`` whose tail agrees with ``live_price``.

    The last bar's Close is always replaced by the live price; Open, High
    and Low are left alone. When the series ends more than
    ``staleness_days`` before ``now``, every timestamp is first shifted
    forward so the last bar lands on ``now``, and if the live price is more
    than ``scale_threshold`` away from the last close the OHLC columns are
    rescaled by ``live / last_close``.

    The shift/scale repair exists for sandbox and delayed-feed environments
    that serve history frozen at an old date. It is not a market-data
    correction and should be disabled (large ``staleness_days``) against a
    production feed.

    Pure and idempotent for a given (bars, live_price, now).

    Args:
        bars: OHLCV frame with an ascending DatetimeIndex.
        live_price: Latest traded price, or None when unknown.
        now: Reference instant. Defaults to the current UTC time.
        staleness_days: Gap beyond which the series is treated as frozen.
        scale_threshold: Relative price gap beyond which prices are rescaled.
    """
    out = bars.copy()
    if out.empty or live_price is None or live_price <= 0:
        return out

    index = pd.DatetimeIndex(out.index)
    if now is None:
        now = pd.Timestamp.now(tz="UTC")
    now = pd.Timestamp(now)
    if index.tz is None and now.tzinfo is not None:
        now = now.tz_convert("UTC").tz_localize(None)
    elif index.tz is not None and now.tzinfo is None:
        now = now.tz_localize("UTC").tz_convert(index.tz)

    last_close = float(out["Close"].iloc[-1])
    gap = now - index[-1]
    if gap > pd.Timedelta(days=staleness_days):
        out.index = index + gap
        if last_close > 0:
            ratio = abs(live_price - last_close) / last_close
            if ratio > scale_threshold:
                factor = live_price / last_close
                out[_PRICE_COLUMNS] = out[_PRICE_COLUMNS] * factor
                logger.info(
                    "stitched series shifted by %s and scaled by %.4f", gap, factor,
                )
            else:
                logger.info("stitched series shifted by %s", gap)

    out.iloc[-1, out.columns.get_loc("Close")] = float(live_price)
    return out
