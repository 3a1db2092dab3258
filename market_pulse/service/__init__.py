"""Market analysis services."""

from market_pulse.service.analyzer import MarketAnalyzer
from market_pulse.service.options_signal import OptionsSignalService

__all__ = ["MarketAnalyzer", "OptionsSignalService"]
