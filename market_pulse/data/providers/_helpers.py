"""Parsing helpers shared by the provider clients."""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

import pandas as pd

from market_pulse.models.market import OHLCV_COLUMNS

# OSI: ROOT + YYMMDD + C/P + strike * 1000 (8 digits)
_OSI_STRIKE = re.compile(r"(\d{5})(\d{3})$")


def safe_float(value: Any) -> float | None:
    """Numeric value or None for missing, NaN, Inf and non-numeric input."""
    if value is None:
        return None
    try:
        fval = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(fval) or math.isinf(fval):
        return None
    return fval


def safe_int(value: Any) -> int:
    fval = safe_float(value)
    return int(fval) if fval is not None else 0


def strike_from_osi(osi_symbol: str) -> float | None:
    """Strike price encoded in the last eight digits of an OSI symbol."""
    match = _OSI_STRIKE.search(osi_symbol.replace(" ", ""))
    if match is None:
        return None
    return int(match.group(1)) + int(match.group(2)) / 1000


def parse_timestamp(value: Any) -> datetime:
    """ISO string or epoch milliseconds -> aware UTC datetime (now if missing)."""
    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.tz_convert("UTC").to_pydatetime()


def select_expirations(
    available: list[date],
    count: int,
    target_dte: int,
    wanted: date | None = None,
    today: date | None = None,
) -> list[date]:
    """Expirations worth fetching: the nearest ``count``, the one closest to
    ``target_dte`` days out, and ``wanted`` when the vendor lists it."""
    today = today or date.today()
    upcoming = sorted(d for d in available if d >= today)
    if not upcoming:
        return []
    chosen = set(upcoming[:count])
    target = today + timedelta(days=target_dte)
    chosen.add(min(upcoming, key=lambda d: abs((d - target).days)))
    if wanted is not None and wanted in upcoming:
        chosen.add(wanted)
    return sorted(chosen)


def normalize_ohlcv(df: pd.DataFrame) -> pd.DataFrame:
    """Keep OHLCV columns, UTC-naive ascending DatetimeIndex, no NaN prices."""
    df = df[OHLCV_COLUMNS].copy()
    index = pd.DatetimeIndex(df.index)
    if index.tz is not None:
        index = index.tz_convert("UTC").tz_localize(None)
    df.index = index
    df.sort_index(inplace=True)
    df = df[~df.index.duplicated(keep="last")]
    df.dropna(subset=["Open", "High", "Low", "Close"], inplace=True)
    df["Volume"] = df["Volume"].fillna(0.0).astype(float)
    return df


def frame_from_records(
    records: list[dict[str, Any]],
    time_key: str,
    keys: tuple[str, str, str, str, str],
) -> pd.DataFrame:
    """Vendor bar records -> normalized OHLCV frame.

    Args:
        records: List of bar dicts.
        time_key: Field holding the timestamp (ISO string or epoch ms).
        keys: Field names for open, high, low, close, volume.
    """
    if not records:
        return pd.DataFrame(columns=OHLCV_COLUMNS, index=pd.DatetimeIndex([]))
    o, h, l_, c, v = keys
    times = [parse_timestamp(r.get(time_key)) for r in records]
    df = pd.DataFrame(
        {
            "Open": [safe_float(r.get(o)) for r in records],
            "High": [safe_float(r.get(h)) for r in records],
            "Low": [safe_float(r.get(l_)) for r in records],
            "Close": [safe_float(r.get(c)) for r in records],
            "Volume": [safe_float(r.get(v)) or 0.0 for r in records],
        },
        index=pd.DatetimeIndex(times),
    )
    return normalize_ohlcv(df)
