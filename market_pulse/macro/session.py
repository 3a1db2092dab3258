"""US equity market sessions and NYSE holiday calendar.

Holidays are generated by rule (fixed dates with weekend observance,
nth-weekday holidays, and Good Friday from the Easter computus), so no
yearly table needs maintaining.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from market_pulse.models.market import MarketSession, MarketStatus

NEW_YORK = ZoneInfo("America/New_York")

PRE_MARKET_OPEN = time(4, 0)
REGULAR_OPEN = time(9, 30)
REGULAR_CLOSE = time(16, 0)
POST_MARKET_CLOSE = time(20, 0)


def _nth_weekday(year: int, month: int, weekday: int, n: int) -> date:
    """Return the nth occurrence of a weekday in a given month.

    Args:
        year: Calendar year.
        month: Calendar month (1-12).
        weekday: 0=Monday, 4=Friday, etc.
        n: 1-based occurrence (1=first, 2=second, ...).
    """
    first_day = date(year, month, 1)
    days_ahead = (weekday - first_day.weekday()) % 7
    return first_day + timedelta(days=days_ahead, weeks=n - 1)


def _last_weekday(year: int, month: int, weekday: int) -> date:
    """Return the last occurrence of a weekday in a given month."""
    last_day = date(year, month, calendar.monthrange(year, month)[1])
    days_back = (last_day.weekday() - weekday) % 7
    return last_day - timedelta(days=days_back)


def _easter_sunday(year: int) -> date:
    """Gregorian Easter (anonymous algorithm)."""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    wd = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * wd) // 451
    month, day = divmod(h + wd - 7 * m + 114, 31)
    return date(year, month, day + 1)


def _observed(day: date) -> date:
    """Saturday holidays move to Friday, Sunday holidays to Monday."""
    if day.weekday() == 5:
        return day - timedelta(days=1)
    if day.weekday() == 6:
        return day + timedelta(days=1)
    return day


@lru_cache(maxsize=32)
def nyse_holidays(year: int) -> frozenset[date]:
    """Full-day NYSE closures for a year."""
    holidays = {
        _nth_weekday(year, 1, 0, 3),               # MLK Day
        _nth_weekday(year, 2, 0, 3),               # Presidents' Day
        _easter_sunday(year) - timedelta(days=2),  # Good Friday
        _last_weekday(year, 5, 0),                 # Memorial Day
        _observed(date(year, 7, 4)),               # Independence Day
        _nth_weekday(year, 9, 0, 1),               # Labor Day
        _nth_weekday(year, 11, 3, 4),              # Thanksgiving
        _observed(date(year, 12, 25)),             # Christmas
    }
    # New Year's on a Saturday is not observed on the prior Friday
    new_year = date(year, 1, 1)
    if new_year.weekday() != 5:
        holidays.add(_observed(new_year))
    if year >= 2022:
        holidays.add(_observed(date(year, 6, 19)))  # Juneteenth
    return frozenset(holidays)


def is_market_holiday(day: date) -> bool:
    return day in nyse_holidays(day.year)


def is_trading_day(day: date) -> bool:
    return day.weekday() < 5 and not is_market_holiday(day)


def _to_new_york(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(NEW_YORK)
    if now.tzinfo is None:
        # naive datetimes are taken as UTC
        now = now.replace(tzinfo=ZoneInfo("UTC"))
    return now.astimezone(NEW_YORK)


def market_session(now: datetime | None = None) -> MarketSession:
    """Classify an instant into PRE / REGULAR / POST / CLOSED (New York time)."""
    ny = _to_new_york(now)
    if not is_trading_day(ny.date()):
        return MarketSession.CLOSED
    t = ny.time()
    if REGULAR_OPEN <= t < REGULAR_CLOSE:
        return MarketSession.REGULAR
    if PRE_MARKET_OPEN <= t < REGULAR_OPEN:
        return MarketSession.PRE
    if REGULAR_CLOSE <= t < POST_MARKET_CLOSE:
        return MarketSession.POST
    return MarketSession.CLOSED


def market_status(now: datetime | None = None) -> MarketStatus:
    ny = _to_new_york(now)
    session = market_session(ny)
    holiday = is_market_holiday(ny.date())
    if holiday:
        description = "Market closed for holiday"
    elif ny.weekday() >= 5:
        description = "Market closed for the weekend"
    else:
        description = {
            MarketSession.PRE: "Pre-market trading",
            MarketSession.REGULAR: "Market open",
            MarketSession.POST: "After-hours trading",
            MarketSession.CLOSED: "Market closed",
        }[session]
    return MarketStatus(
        session=session,
        is_open=session == MarketSession.REGULAR,
        is_holiday=holiday,
        description=description,
        as_of=ny,
    )
