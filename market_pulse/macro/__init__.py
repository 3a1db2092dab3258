"""Market calendar: trading sessions and exchange holidays."""

from market_pulse.macro.session import (
    is_market_holiday,
    is_trading_day,
    market_session,
    market_status,
    nyse_holidays,
)

__all__ = [
    "is_market_holiday",
    "is_trading_day",
    "market_session",
    "market_status",
    "nyse_holidays",
]
