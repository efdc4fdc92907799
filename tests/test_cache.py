"""Test the entity cache and in-flight coalescing"""

import asyncio

import pytest

from music_catalog.orchestration.cache import EntityCache


class TestEntityCache:
    """Test basic store behavior"""

    def test_set_get_has(self):
        """Test plain set/get/has"""
        cache = EntityCache("test")
        assert not cache.has("a")
        assert cache.get("a") is None

        cache.set("a", {"id": "a"})

        assert cache.has("a")
        assert "a" in cache
        assert len(cache) == 1
        assert cache.get("a") == {"id": "a"}

    def test_clear(self):
        """Test clear drops entries"""
        cache = EntityCache("test")
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_claim_skips_cached_and_duplicates(self):
        """Test claim only reserves uncached keys, once each"""
        cache = EntityCache("test")
        cache.set("cached", 1)

        futures, owned = cache.claim(["cached", "new", "new"])

        assert list(futures) == ["new"]
        assert owned == ["new"]
        assert cache.in_flight("new")

        cache.fulfil("new", futures["new"], 2)
        assert await futures["new"] == 2
        assert not cache.in_flight("new")
        assert cache.get("new") == 2

    @pytest.mark.asyncio
    async def test_none_is_not_cached(self):
        """Test an unknown id (None) settles waiters but is not stored"""
        cache = EntityCache("test")
        futures, owned = cache.claim(["missing"])

        cache.fulfil("missing", futures["missing"], None)

        assert await futures["missing"] is None
        assert not cache.has("missing")

    @pytest.mark.asyncio
    async def test_failure_is_shared_and_not_cached(self):
        """Test a failed fetch rejects every waiter and caches nothing"""
        cache = EntityCache("test")
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            raise RuntimeError("remote down")

        results = await asyncio.gather(
            cache.get_or_fetch("k", fetch),
            cache.get_or_fetch("k", fetch),
            return_exceptions=True,
        )

        assert calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert not cache.has("k")
        assert not cache.in_flight("k")


class TestConcurrentMisses:
    """Test both cache policies under concurrent misses"""

    @pytest.mark.asyncio
    async def test_coalesced_fetches_once(self):
        """Test two concurrent misses share one fetch and the same object"""
        cache = EntityCache("test", coalesce=True)
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return {"id": "k", "call": calls}

        first, second = await asyncio.gather(
            cache.get_or_fetch("k", fetch),
            cache.get_or_fetch("k", fetch),
        )

        assert calls == 1
        assert first is second
        assert cache.get("k") is first

    @pytest.mark.asyncio
    async def test_racing_fetches_twice_last_write_wins(self):
        """Test without coalescing both callers fetch and the later write stays"""
        cache = EntityCache("test", coalesce=False)
        calls = 0

        async def fetch(delay):
            nonlocal calls
            calls += 1
            call = calls
            await asyncio.sleep(delay)
            return {"id": "k", "call": call}

        slow_first, fast_second = await asyncio.gather(
            cache.get_or_fetch("k", lambda: fetch(0.02)),
            cache.get_or_fetch("k", lambda: fetch(0.01)),
        )

        assert calls == 2
        assert slow_first is not fast_second
        # The slow fetch settles last, so its write wins
        assert cache.get("k") is slow_first

    @pytest.mark.asyncio
    async def test_hit_after_fill(self):
        """Test a later request is served from the cache"""
        cache = EntityCache("test")
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return "value"

        await cache.get_or_fetch("k", fetch)
        assert await cache.get_or_fetch("k", fetch) == "value"
        assert calls == 1
