"""Tests for ResourceCache TTL and in-flight coalescing."""

import asyncio

import pytest

from market_pulse.data.cache import ResourceCache


class TestTTL:
    def test_fresh_entry(self, clock):
        cache = ResourceCache("t", clock)
        cache.put("AAPL", 1.0, ttl=10)
        payload, expires_at = cache.get("AAPL")
        assert payload == 1.0
        assert expires_at == pytest.approx(clock() + 10)

    def test_expired_entry_not_returned(self, clock):
        cache = ResourceCache("t", clock)
        cache.put("AAPL", 1.0, ttl=10)
        clock.advance(10)
        assert cache.get("AAPL") is None

    def test_stale_still_reachable(self, clock):
        cache = ResourceCache("t", clock)
        cache.put("AAPL", 1.0, ttl=10)
        clock.advance(3600)
        assert cache.get_stale("AAPL") == 1.0
        assert "AAPL" in cache

    def test_invalidate(self, clock):
        cache = ResourceCache("t", clock)
        cache.put("AAPL", 1.0, ttl=10)
        cache.put("MSFT", 2.0, ttl=10)
        cache.invalidate("AAPL")
        assert cache.get_stale("AAPL") is None
        assert len(cache) == 1
        cache.invalidate()
        assert len(cache) == 0


class TestGetOrFetch:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self, clock):
        cache = ResourceCache("t", clock)
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            return "quote"

        assert await cache.get_or_fetch("AAPL", 10, fetcher) == ("quote", False)
        assert await cache.get_or_fetch("AAPL", 10, fetcher) == ("quote", True)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_refetch_after_expiry(self, clock):
        cache = ResourceCache("t", clock)
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            return calls

        await cache.get_or_fetch("AAPL", 10, fetcher)
        clock.advance(11)
        value, from_cache = await cache.get_or_fetch("AAPL", 10, fetcher)
        assert value == 2
        assert from_cache is False

    @pytest.mark.asyncio
    async def test_concurrent_requests_coalesce(self, clock):
        cache = ResourceCache("t", clock)
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "quote"

        results = await asyncio.gather(*(cache.get_or_fetch("AAPL", 10, fetcher) for _ in range(5)))
        assert calls == 1
        assert all(value == "quote" for value, _ in results)

    @pytest.mark.asyncio
    async def test_different_keys_fetch_separately(self, clock):
        cache = ResourceCache("t", clock)
        seen = []

        async def fetch_for(key):
            async def fetcher():
                seen.append(key)
                await asyncio.sleep(0)
                return key

            return await cache.get_or_fetch(key, 10, fetcher)

        await asyncio.gather(fetch_for("AAPL"), fetch_for("MSFT"))
        assert sorted(seen) == ["AAPL", "MSFT"]

    @pytest.mark.asyncio
    async def test_none_not_cached(self, clock):
        cache = ResourceCache("t", clock)
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            return None

        assert await cache.get_or_fetch("AAPL", 10, fetcher) == (None, False)
        await cache.get_or_fetch("AAPL", 10, fetcher)
        assert calls == 2
        assert "AAPL" not in cache

    @pytest.mark.asyncio
    async def test_failure_shared_and_not_cached(self, clock):
        cache = ResourceCache("t", clock)
        calls = 0

        async def failing():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            cache.get_or_fetch("AAPL", 10, failing),
            cache.get_or_fetch("AAPL", 10, failing),
            return_exceptions=True,
        )
        assert calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)

        async def ok():
            return "quote"

        assert await cache.get_or_fetch("AAPL", 10, ok) == ("quote", False)
