"""WaterfallResolver: try providers in priority order, first success wins."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, TypeVar

from market_pulse.data.exceptions import ProviderError
from market_pulse.data.providers.base import ProviderClient
from market_pulse.models.data import DataType, ProviderType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Resolved(Generic[T]):
    """Payload plus the tag of the tier that produced it."""

    __slots__ = ("payload", "source")

    def __init__(self, payload: T, source: ProviderType) -> None:
        self.payload = payload
        self.source = source

    def __repr__(self) -> str:
        return f"Resolved(source={self.source.value!r})"


class WaterfallResolver:
    """Sequential fallback across providers.

    Tiers are never queried concurrently: a later tier is only attempted
    after every earlier one failed, timed out or was skipped.
    """

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self.timeout_seconds = timeout_seconds

    async def resolve(
        self,
        symbol: str,
        data_type: DataType,
        providers: Sequence[ProviderClient],
        fetch: Callable[[ProviderClient], Awaitable[T]],
    ) -> Resolved[T] | None:
        """Return the first successful payload, or None when every tier failed.

        Args:
            symbol: Ticker, used for logging.
            data_type: Resource kind; providers that do not support it are skipped.
            providers: Candidate providers in priority order.
            fetch: Coroutine factory invoked with each provider in turn.
        """
        for provider in providers:
            if not provider.is_configured:
                logger.debug("%s %s: skipping %s (not configured)", symbol, data_type, provider.name)
                continue
            if not provider.supports(data_type):
                continue
            try:
                payload = await asyncio.wait_for(fetch(provider), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    "%s %s: %s timed out after %.1fs",
                    symbol, data_type, provider.name, self.timeout_seconds,
                )
                continue
            except ProviderError as e:
                logger.warning("%s %s: %s failed: %s", symbol, data_type, provider.name, e.message)
                continue
            if payload is None:
                logger.info("%s %s: %s returned nothing", symbol, data_type, provider.name)
                continue
            logger.info("%s %s: served by %s", symbol, data_type, provider.name)
            return Resolved(payload, provider.provider_type)

        logger.warning("%s %s: all providers exhausted", symbol, data_type)
        return None
