"""Upstream market-data vendors."""

from market_pulse.data.providers.alpaca import AlpacaClient
from market_pulse.data.providers.base import HttpProviderClient, ProviderClient
from market_pulse.data.providers.finnhub import FinnhubClient
from market_pulse.data.providers.public import PublicClient
from market_pulse.data.providers.schwab import SchwabClient
from market_pulse.data.providers.yfinance import YFinanceProvider

__all__ = [
    "AlpacaClient",
    "FinnhubClient",
    "HttpProviderClient",
    "ProviderClient",
    "PublicClient",
    "SchwabClient",
    "YFinanceProvider",
]
