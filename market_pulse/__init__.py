"""Multi-source market data with resilient fallback, technicals and options signals."""

# Config
from market_pulse.config import Settings, get_settings, load_settings, reset_settings

# Models
from market_pulse.models.analysis import SymbolAnalysis, SymbolMetrics, TimeframeAnalysis
from market_pulse.models.data import DataResult, DataType, ProviderType, Timeframe
from market_pulse.models.fundamentals import FundamentalsSnapshot, QualityScore, SentimentSnapshot
from market_pulse.models.market import MarketSession, MarketStatus, Quote
from market_pulse.models.options import (
    Direction,
    GammaSqueezeScore,
    Greeks,
    OptionChain,
    OptionContract,
    OptionType,
    PutCallRatio,
    Recommendation,
    UnusualOption,
)
from market_pulse.models.technicals import ConfluenceScore, IndicatorSnapshot, TrendDirection

# Data
from market_pulse.data.exceptions import (
    AuthError,
    InsufficientData,
    NotFound,
    ProviderError,
    Throttled,
    UpstreamError,
    WindowExceeded,
)
from market_pulse.data.service import DataService

# Services
from market_pulse.service.analyzer import MarketAnalyzer
from market_pulse.service.options_signal import OptionsSignalService

__all__ = [
    "AuthError",
    "ConfluenceScore",
    "DataResult",
    "DataService",
    "DataType",
    "Direction",
    "FundamentalsSnapshot",
    "GammaSqueezeScore",
    "Greeks",
    "IndicatorSnapshot",
    "InsufficientData",
    "MarketAnalyzer",
    "MarketSession",
    "MarketStatus",
    "NotFound",
    "OptionChain",
    "OptionContract",
    "OptionType",
    "OptionsSignalService",
    "ProviderError",
    "ProviderType",
    "PutCallRatio",
    "QualityScore",
    "Quote",
    "Recommendation",
    "SentimentSnapshot",
    "Settings",
    "SymbolAnalysis",
    "SymbolMetrics",
    "Throttled",
    "Timeframe",
    "TimeframeAnalysis",
    "TrendDirection",
    "UnusualOption",
    "UpstreamError",
    "WindowExceeded",
    "get_settings",
    "load_settings",
    "reset_settings",
]
