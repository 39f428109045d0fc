"""Cache abstraction layer for YK Buddy.

Provides a TTL cache interface with in-memory and Redis implementations.
Expiry is checked on every read, so no caller ever sees an entry past its
TTL; the periodic cleanup() sweep only bounds memory.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

import redis.asyncio as aioredis

from ykbuddy.app.core.config import Settings, settings as default_settings
from ykbuddy.app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class CacheTTL:
    """TTL tiers in seconds. Pick the tier matching how fast the data goes stale."""

    SHORT = 60  # weather, live counts
    MEDIUM = 300  # listings
    LONG = 1800  # reference data
    VERY_LONG = 3600
    DAY = 86400


@dataclass
class CacheEntry(Generic[T]):
    """Cached value with creation and expiry times (epoch seconds)."""

    data: T
    timestamp: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class Fetching:
    """In-flight state for a key whose value is being fetched.

    A key is idle when it has neither an entry nor a Fetching state,
    fetching while this is registered, and ready once the entry is stored.
    """

    task: "asyncio.Task[Any]"


class CacheBackend(ABC):
    """Abstract base class for cache backends.

    None is the miss sentinel, so a None value cannot be cached.
    """

    name: str = "abstract"

    def __init__(self, default_ttl: float = CacheTTL.MEDIUM, dedupe: bool = False) -> None:
        """Initialize shared cache state.

        Args:
            default_ttl: TTL in seconds used when set() gets none
            dedupe: Let concurrent get_or_fetch misses share one fetch
        """
        self.default_ttl = default_ttl
        self._dedupe = dedupe
        self._in_flight: Dict[str, Fetching] = {}
        self.hits = 0
        self.misses = 0

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Retrieve a value from the cache.

        Returns:
            The cached value, or None if not found or expired.
        """

    @abstractmethod
    async def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        """Store a value, replacing any existing entry.

        Args:
            key: The cache key.
            data: The value to store.
            ttl: Time-to-live in seconds (None = default_ttl).
        """

    @abstractmethod
    async def has(self, key: str) -> bool:
        """Check if a key exists and is not expired."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a value from the cache."""

    @abstractmethod
    async def clear(self) -> None:
        """Clear all entries from the cache."""

    @abstractmethod
    async def cleanup(self) -> int:
        """Remove expired entries. Returns the number removed."""

    def _ttl(self, ttl: Optional[float]) -> float:
        return self.default_ttl if ttl is None else ttl

    def _record(self, hit: bool) -> None:
        if hit:
            self.hits += 1
        else:
            self.misses += 1

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """Return the cached value for key, fetching and storing it on a miss.

        fetch_fn is neither retried nor wrapped; its exceptions propagate
        and nothing is cached. Without dedupe, concurrent misses on one
        key each call fetch_fn.

        Example:
            >>> sales = await cache.get_or_fetch(
            ...     "garage-sales:active", load_sales, ttl=CacheTTL.MEDIUM
            ... )
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        if not self._dedupe:
            data = await fetch_fn()
            await self.set(key, data, ttl)
            return data

        state = self._in_flight.get(key)
        if state is None:
            task = asyncio.ensure_future(self._fetch_and_store(key, fetch_fn, ttl))
            state = self._in_flight[key] = Fetching(task)

            def _release(_: "asyncio.Task[Any]", state: Fetching = state) -> None:
                if self._in_flight.get(key) is state:
                    del self._in_flight[key]

            task.add_done_callback(_release)

        # Shielded so one cancelled waiter does not cancel the shared fetch
        return await asyncio.shield(state.task)

    async def _fetch_and_store(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        ttl: Optional[float],
    ) -> T:
        data = await fetch_fn()
        await self.set(key, data, ttl)
        return data

    def is_fetching(self, key: str) -> bool:
        return key in self._in_flight

    def stats(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "hits": self.hits,
            "misses": self.misses,
            "in_flight": len(self._in_flight),
        }

    async def close(self) -> None:
        """Release backend resources."""


class TTLCache(CacheBackend):
    """In-memory cache implementation with TTL support.

    Data lives in a per-process dictionary and is lost when the
    application restarts. Each instance behind a load balancer keeps
    its own copy.
    """

    name = "memory"

    def __init__(
        self,
        default_ttl: float = CacheTTL.MEDIUM,
        dedupe: bool = False,
        clock: Clock = time.time,
    ) -> None:
        super().__init__(default_ttl=default_ttl, dedupe=dedupe)
        self._clock = clock
        self._data: Dict[str, CacheEntry[Any]] = {}

    def __len__(self) -> int:
        return len(self._data)

    def _live_entry(self, key: str) -> Optional[CacheEntry[Any]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live_entry(key)
        self._record(entry is not None)
        return entry.data if entry is not None else None

    async def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        self._data[key] = CacheEntry(data=data, timestamp=now, expires_at=now + self._ttl(ttl))

    async def has(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    async def cleanup(self) -> int:
        now = self._clock()
        expired_keys = [key for key, entry in self._data.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._data[key]
        if expired_keys:
            logger.debug(f"Cache cleanup removed {len(expired_keys)} expired entries")
        return len(expired_keys)

    def stats(self) -> Dict[str, Any]:
        stats = super().stats()
        stats["entries"] = len(self._data)
        return stats


class RedisCache(CacheBackend):
    """Redis-based cache implementation shared across instances.

    Values are stored as JSON under a key prefix; Redis expires them via PX,
    so cleanup() has nothing to do.

    Example:
        >>> cache = RedisCache("redis://localhost:6379/0")
        >>> await cache.set("weather:yellowknife", {"temp": -31}, ttl=60)
    """

    name = "redis"
    KEY_PREFIX = "ykbuddy:cache:"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        default_ttl: float = CacheTTL.MEDIUM,
        dedupe: bool = False,
        redis_client: Optional[Any] = None,
    ) -> None:
        super().__init__(default_ttl=default_ttl, dedupe=dedupe)
        self._redis_url = redis_url
        self._redis = redis_client

    def _get_client(self) -> Any:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._get_client().get(self._key(key))
        self._record(raw is not None)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        payload = json.dumps(data, default=str)
        ttl_ms = max(1, int(self._ttl(ttl) * 1000))
        await self._get_client().set(self._key(key), payload, px=ttl_ms)

    async def has(self, key: str) -> bool:
        return await self._get_client().exists(self._key(key)) > 0

    async def delete(self, key: str) -> None:
        await self._get_client().delete(self._key(key))

    async def clear(self) -> None:
        """Delete every key under this cache's prefix.

        Other data in a shared Redis database is left alone.
        """
        client = self._get_client()
        keys = [key async for key in client.scan_iter(match=f"{self.KEY_PREFIX}*")]
        if keys:
            await client.delete(*keys)

    async def cleanup(self) -> int:
        return 0

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_cache(config: Optional[Settings] = None, clock: Optional[Clock] = None) -> CacheBackend:
    """Create a cache backend from settings.

    Returns a new instance on every call; the application keeps its own
    on app.state.
    """
    config = config or default_settings

    if config.redis_enabled:
        logger.info("Using Redis cache backend")
        return RedisCache(
            config.redis_url,
            default_ttl=config.cache_default_ttl,
            dedupe=config.cache_dedupe_fetches,
        )

    kwargs: Dict[str, Any] = {"clock": clock} if clock is not None else {}
    return TTLCache(
        default_ttl=config.cache_default_ttl,
        dedupe=config.cache_dedupe_fetches,
        **kwargs,
    )
