"""Sliding-window request limiter with a hard cooldown after vendor throttling."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

from market_pulse.config import ProviderSettings
from market_pulse.data.exceptions import Throttled, WindowExceeded

logger = logging.getLogger(__name__)


class RateLimiter:
    """Per-provider request budget.

    Holds the instants of recent requests over a trailing window and an
    optional cooldown-until instant set after a 429. While the cooldown is
    active nothing is attempted, regardless of window occupancy.

    All state changes happen under a lock and never await, so the limiter is
    safe to share between concurrent symbol fetches and worker threads.
    """

    def __init__(
        self,
        provider: str,
        max_requests: int,
        window_seconds: float = 60.0,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._requests: deque[float] = deque()
        self._cooldown_until: float = 0.0
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        provider: str,
        settings: ProviderSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> RateLimiter:
        return cls(
            provider,
            max_requests=settings.max_requests,
            window_seconds=settings.window_seconds,
            cooldown_seconds=settings.cooldown_seconds,
            clock=clock,
        )

    @property
    def cooldown_until(self) -> float:
        return self._cooldown_until

    @property
    def in_cooldown(self) -> bool:
        return self._clock() < self._cooldown_until

    @property
    def occupancy(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return len(self._requests)

    def acquire(self, symbol: str = "") -> None:
        """Reserve one request slot or raise.

        Raises:
            Throttled: cooldown is active.
            WindowExceeded: the trailing window is already full.
        """
        with self._lock:
            now = self._clock()
            if now < self._cooldown_until:
                raise Throttled(
                    self.provider, symbol, "cooldown active",
                    retry_after=self._cooldown_until - now,
                )
            self._evict(now)
            if len(self._requests) >= self.max_requests:
                retry_after = self._requests[0] + self.window_seconds - now
                raise WindowExceeded(
                    self.provider, symbol,
                    f"{len(self._requests)}/{self.max_requests} requests in {self.window_seconds:.0f}s window",
                    retry_after=retry_after,
                )
            self._requests.append(now)

    def trip(self) -> float:
        """Start the cooldown after a vendor throttle response. Returns cooldown-until."""
        with self._lock:
            self._cooldown_until = self._clock() + self.cooldown_seconds
        logger.warning(
            "%s throttled upstream; cooling down for %.0fs", self.provider, self.cooldown_seconds
        )
        return self._cooldown_until

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()
            self._cooldown_until = 0.0

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()
