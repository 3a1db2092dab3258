"""In-memory TTL cache with in-flight request coalescing."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class CacheEntry(BaseModel, Generic[V]):
    payload: V
    expires_at: float  # monotonic instant

    model_config = {"arbitrary_types_allowed": True}


class ResourceCache(Generic[K, V]):
    """TTL-keyed store for one resource kind (quotes, chains, fundamentals...).

    Expiry is checked on read; there is no other eviction because the key
    space is bounded by the active watchlist. An expired entry is never
    returned by ``get``; it is only reachable through ``get_stale`` as a
    fallback of last resort.
    """

    def __init__(self, name: str = "", clock: Callable[[], float] = time.monotonic) -> None:
        self.name = name
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}
        self._inflight: dict[K, asyncio.Task] = {}

    def get(self, key: K) -> tuple[V, float] | None:
        """Fresh (payload, expires_at) or None."""
        entry = self._entries.get(key)
        if entry is None or self._clock() >= entry.expires_at:
            return None
        return entry.payload, entry.expires_at

    def put(self, key: K, payload: V, ttl: float) -> None:
        self._entries[key] = CacheEntry(payload=payload, expires_at=self._clock() + ttl)

    def get_stale(self, key: K) -> V | None:
        """Payload regardless of expiry."""
        entry = self._entries.get(key)
        return entry.payload if entry is not None else None

    def invalidate(self, key: K | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_fetch(
        self,
        key: K,
        ttl: float,
        fetcher: Callable[[], Awaitable[V | None]],
    ) -> tuple[V | None, bool]:
        """Return (payload, from_cache), fetching at most once per key at a time.

        Concurrent callers for a key with no fresh entry await the same
        in-flight task. ``None`` results and exceptions are not cached.
        """
        hit = self.get(key)
        if hit is not None:
            logger.debug("%s cache hit: %s", self.name, key)
            return hit[0], True

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fill(key, ttl, fetcher))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("%s coalescing request: %s", self.name, key)
        return await asyncio.shield(task), False

    async def _fill(
        self, key: K, ttl: float, fetcher: Callable[[], Awaitable[V | None]]
    ) -> V | None:
        value = await fetcher()
        if value is not None:
            self.put(key, value, ttl)
        return value

    def _forget(self, key: K, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
