"""Typed exceptions for the data layer."""

from __future__ import annotations


class ProviderError(Exception):
    """Provider-level failure. The waterfall treats every subclass as a fall-through."""

    def __init__(self, provider: str, symbol: str, message: str) -> None:
        self.provider = provider
        self.symbol = symbol
        self.message = message
        super().__init__(f"[{provider}] Failed to fetch {symbol}: {message}")


class AuthError(ProviderError):
    """Token acquisition or refresh failed; provider unusable until the next attempt."""


class Throttled(ProviderError):
    """Cooldown after a vendor throttle response is still active."""

    def __init__(
        self, provider: str, symbol: str, message: str, retry_after: float = 0.0
    ) -> None:
        self.retry_after = retry_after
        super().__init__(provider, symbol, message)


class WindowExceeded(Throttled):
    """Local sliding window is full; request refused before reaching the vendor."""


class UpstreamError(ProviderError):
    """Non-2xx status, transport error or malformed payload."""

    def __init__(
        self, provider: str, symbol: str, message: str, status: int | None = None
    ) -> None:
        self.status = status
        super().__init__(provider, symbol, message if status is None else f"HTTP {status}: {message}")


class NotFound(ProviderError):
    """No data for the symbol from this provider."""


class InsufficientData(Exception):
    """Series too short for the indicator lookback windows. Soft failure."""

    def __init__(self, symbol: str, have: int, need: int) -> None:
        self.symbol = symbol
        self.have = have
        self.need = need
        super().__init__(f"Insufficient data for {symbol}: {have} bars, need {need}")
