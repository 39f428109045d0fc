"""Tests for the TTL cache backends."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from ykbuddy.app.core.cache import (
    CacheEntry,
    CacheTTL,
    RedisCache,
    TTLCache,
    create_cache,
)


class TestCacheEntry:
    def test_expires_at_boundary(self):
        entry = CacheEntry(data="x", timestamp=100.0, expires_at=160.0)
        assert entry.is_expired(159.9) is False
        assert entry.is_expired(160.0) is True

    def test_ttl_tiers(self):
        assert (CacheTTL.SHORT, CacheTTL.MEDIUM, CacheTTL.LONG) == (60, 300, 1800)
        assert (CacheTTL.VERY_LONG, CacheTTL.DAY) == (3600, 86400)


class TestTTLCache:
    """Tests for the in-memory cache."""

    @pytest.fixture
    def cache(self, clock):
        return TTLCache(default_ttl=300, clock=clock)

    @pytest.mark.asyncio
    async def test_set_and_get(self, cache):
        await cache.set("key1", {"value": 1})
        assert await cache.get("key1") == {"value": 1}

    @pytest.mark.asyncio
    async def test_get_missing(self, cache):
        assert await cache.get("nonexistent") is None

    @pytest.mark.asyncio
    async def test_expired_entry_not_returned(self, cache, clock):
        """An entry is gone at exactly its expiry time."""
        await cache.set("key1", "value1", ttl=60)

        clock.advance(59.9)
        assert await cache.get("key1") == "value1"

        clock.advance(0.1)
        assert await cache.get("key1") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_default_ttl_applies(self, cache, clock):
        await cache.set("key1", "value1")
        clock.advance(299)
        assert await cache.has("key1") is True
        clock.advance(1)
        assert await cache.has("key1") is False

    @pytest.mark.asyncio
    async def test_set_replaces_and_restarts_ttl(self, cache, clock):
        await cache.set("key1", "old", ttl=10)
        clock.advance(8)
        await cache.set("key1", "new", ttl=10)
        clock.advance(8)

        assert await cache.get("key1") == "new"

    @pytest.mark.asyncio
    async def test_has_does_not_count_stats(self, cache):
        await cache.set("key1", "v")
        await cache.has("key1")
        await cache.has("missing")

        assert cache.hits == 0
        assert cache.misses == 0

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, cache):
        await cache.set("a", 1)
        await cache.set("b", 2)

        await cache.delete("a")
        await cache.delete("missing")
        assert await cache.get("a") is None
        assert await cache.get("b") == 2

        await cache.clear()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired(self, cache, clock):
        await cache.set("short", 1, ttl=10)
        await cache.set("long", 2, ttl=1000)

        clock.advance(20)
        removed = await cache.cleanup()

        assert removed == 1
        assert len(cache) == 1
        assert await cache.get("long") == 2

    @pytest.mark.asyncio
    async def test_real_clock_expiry(self):
        cache = TTLCache()
        await cache.set("k", "v", ttl=0.1)
        await asyncio.sleep(0.15)

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        await cache.set("a", 1)
        await cache.get("a")
        await cache.get("b")

        assert cache.stats() == {
            "backend": "memory",
            "hits": 1,
            "misses": 1,
            "in_flight": 0,
            "entries": 1,
        }


class TestGetOrFetch:
    """Tests for get_or_fetch with and without fetch deduplication."""

    @pytest.mark.asyncio
    async def test_fetches_once_per_miss(self, clock):
        cache = TTLCache(clock=clock)
        fetch = AsyncMock(return_value=[1, 2, 3])

        first = await cache.get_or_fetch("sales", fetch, ttl=60)
        second = await cache.get_or_fetch("sales", fetch, ttl=60)

        assert first == second == [1, 2, 3]
        fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refetches_after_expiry(self, clock):
        cache = TTLCache(clock=clock)
        fetch = AsyncMock(side_effect=["first", "second"])

        assert await cache.get_or_fetch("k", fetch, ttl=60) == "first"
        clock.advance(60)
        assert await cache.get_or_fetch("k", fetch, ttl=60) == "second"

    @pytest.mark.asyncio
    async def test_fetch_error_propagates_and_is_not_cached(self, clock):
        cache = TTLCache(clock=clock)
        fetch = AsyncMock(side_effect=[ValueError("db down"), "ok"])

        with pytest.raises(ValueError, match="db down"):
            await cache.get_or_fetch("k", fetch)

        assert await cache.has("k") is False
        assert await cache.get_or_fetch("k", fetch) == "ok"

    @pytest.mark.asyncio
    async def test_concurrent_misses_each_fetch_without_dedupe(self):
        cache = TTLCache()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return calls

        await asyncio.gather(*(cache.get_or_fetch("k", fetch) for _ in range(3)))

        assert calls == 3

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_fetch_with_dedupe(self):
        cache = TTLCache(dedupe=True)
        started = asyncio.Event()
        release = asyncio.Event()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            started.set()
            await release.wait()
            return "shared"

        waiters = [asyncio.create_task(cache.get_or_fetch("k", fetch)) for _ in range(3)]
        await started.wait()

        assert cache.is_fetching("k") is True
        assert cache.stats()["in_flight"] == 1

        release.set()
        results = await asyncio.gather(*waiters)

        assert results == ["shared"] * 3
        assert calls == 1
        assert cache.is_fetching("k") is False
        assert await cache.get("k") == "shared"

    @pytest.mark.asyncio
    async def test_dedupe_failure_reaches_all_waiters(self):
        cache = TTLCache(dedupe=True)

        async def fetch():
            await asyncio.sleep(0.01)
            raise RuntimeError("upstream")

        results = await asyncio.gather(
            cache.get_or_fetch("k", fetch),
            cache.get_or_fetch("k", fetch),
            return_exceptions=True,
        )

        assert all(isinstance(r, RuntimeError) for r in results)
        assert cache.is_fetching("k") is False
        assert await cache.has("k") is False

    @pytest.mark.asyncio
    async def test_cancelled_waiter_keeps_shared_fetch(self):
        cache = TTLCache(dedupe=True)
        release = asyncio.Event()

        async def fetch():
            await release.wait()
            return "value"

        cancelled = asyncio.create_task(cache.get_or_fetch("k", fetch))
        other = asyncio.create_task(cache.get_or_fetch("k", fetch))
        await asyncio.sleep(0)

        cancelled.cancel()
        release.set()

        assert await other == "value"
        with pytest.raises(asyncio.CancelledError):
            await cancelled


def _mock_redis():
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock()
    client.exists = AsyncMock(return_value=0)
    client.delete = AsyncMock()
    client.aclose = AsyncMock()
    return client


class TestRedisCache:
    """Tests for the Redis cache with a mocked client."""

    @pytest.mark.asyncio
    async def test_set_serializes_with_px(self):
        client = _mock_redis()
        cache = RedisCache(redis_client=client)

        await cache.set("weather", {"temp": -31}, ttl=60)

        client.set.assert_awaited_once_with(
            "ykbuddy:cache:weather", json.dumps({"temp": -31}), px=60000
        )

    @pytest.mark.asyncio
    async def test_get_deserializes(self):
        client = _mock_redis()
        client.get.return_value = b'{"temp": -31}'
        cache = RedisCache(redis_client=client)

        assert await cache.get("weather") == {"temp": -31}
        client.get.assert_awaited_once_with("ykbuddy:cache:weather")
        assert cache.hits == 1

    @pytest.mark.asyncio
    async def test_get_miss(self):
        cache = RedisCache(redis_client=_mock_redis())
        assert await cache.get("weather") is None
        assert cache.misses == 1

    @pytest.mark.asyncio
    async def test_has_and_delete(self):
        client = _mock_redis()
        client.exists.return_value = 1
        cache = RedisCache(redis_client=client)

        assert await cache.has("k") is True
        await cache.delete("k")

        client.delete.assert_awaited_once_with("ykbuddy:cache:k")

    @pytest.mark.asyncio
    async def test_clear_only_touches_prefix(self):
        client = _mock_redis()

        async def scan_iter(match):
            assert match == "ykbuddy:cache:*"
            for key in (b"ykbuddy:cache:a", b"ykbuddy:cache:b"):
                yield key

        client.scan_iter = scan_iter
        cache = RedisCache(redis_client=client)

        await cache.clear()

        client.delete.assert_awaited_once_with(b"ykbuddy:cache:a", b"ykbuddy:cache:b")

    @pytest.mark.asyncio
    async def test_cleanup_and_close(self):
        client = _mock_redis()
        cache = RedisCache(redis_client=client)

        assert await cache.cleanup() == 0
        await cache.close()

        client.aclose.assert_awaited_once()


class TestCreateCache:
    def test_memory_by_default(self, test_settings):
        cache = create_cache(test_settings)
        assert isinstance(cache, TTLCache)
        assert cache.default_ttl == test_settings.cache_default_ttl

    def test_redis_when_enabled(self, test_settings):
        config = test_settings.model_copy(update={"redis_enabled": True})
        assert isinstance(create_cache(config), RedisCache)

    def test_new_instance_each_call(self, test_settings):
        assert create_cache(test_settings) is not create_cache(test_settings)
