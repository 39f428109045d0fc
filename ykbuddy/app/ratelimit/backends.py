"""Rate limit storage backends.

All backends share one contract: check() never raises and the request
that would overflow a window is rejected without being counted.
In-memory backends are per process; every instance behind a load
balancer keeps its own counters. Use RedisRateLimiter when limits must
hold across instances.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional

import redis
import redis.asyncio as aioredis

from ykbuddy.app.core.logging import get_logger
from ykbuddy.app.ratelimit.headers import seconds_until
from ykbuddy.app.ratelimit.models import RateLimitConfig, RateLimitEntry, RateLimitResult

logger = get_logger(__name__)

Clock = Callable[[], float]

# Undo an overflowing INCR, unless the key expired in between
_DECR_IF_EXISTS = """
if redis.call("EXISTS", KEYS[1]) == 1 then
    return redis.call("DECR", KEYS[1])
end
return 0
"""


def _rejected(config: RateLimitConfig, reset_time: float, now: float) -> RateLimitResult:
    return RateLimitResult(
        allowed=False,
        limit=config.max_requests,
        remaining=0,
        reset_time=reset_time,
        retry_after=seconds_until(reset_time, now),
    )


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends."""

    name: str = "abstract"

    @abstractmethod
    async def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """Count a request for identifier and decide whether it is allowed.

        Args:
            identifier: Client identity, e.g. "user:42" or "ip:10.0.0.1"
            config: Requests allowed per window

        Returns:
            RateLimitResult with allowed status and metadata
        """

    @abstractmethod
    async def reset(self, identifier: str) -> None:
        """Forget all state for identifier."""

    @abstractmethod
    async def get_status(self, identifier: str) -> Optional[RateLimitEntry]:
        """Return the current window state without modifying it."""

    @abstractmethod
    async def cleanup(self) -> int:
        """Drop expired state. Returns the number of identifiers removed."""

    async def close(self) -> None:
        """Release backend resources."""


class FixedWindowRateLimiter(RateLimitBackend):
    """In-memory fixed-window counter.

    A window opens on the first request from an identifier and lasts
    window_seconds. Bursts straddling a window boundary can reach
    2 x max_requests; use SlidingWindowRateLimiter where that matters.
    """

    name = "memory"

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(identifier)

            if entry is None or entry.is_expired(now):
                entry = RateLimitEntry(count=1, reset_time=now + config.window_seconds)
                self._entries[identifier] = entry
                return RateLimitResult(
                    allowed=True,
                    limit=config.max_requests,
                    remaining=config.max_requests - 1,
                    reset_time=entry.reset_time,
                )

            if entry.count < config.max_requests:
                entry.count += 1
                return RateLimitResult(
                    allowed=True,
                    limit=config.max_requests,
                    remaining=config.max_requests - entry.count,
                    reset_time=entry.reset_time,
                )

            return _rejected(config, entry.reset_time, now)

    async def reset(self, identifier: str) -> None:
        async with self._lock:
            self._entries.pop(identifier, None)

    async def get_status(self, identifier: str) -> Optional[RateLimitEntry]:
        entry = self._entries.get(identifier)
        if entry is None:
            return None
        return RateLimitEntry(count=entry.count, reset_time=entry.reset_time)

    async def cleanup(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)


@dataclass
class _RequestLog:
    """Timestamps of counted requests inside the trailing window."""
    window_seconds: float
    timestamps: Deque[float] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def live(self, now: float) -> list:
        cutoff = now - self.window_seconds
        return [ts for ts in self.timestamps if ts > cutoff]


class SlidingWindowRateLimiter(RateLimitBackend):
    """In-memory sliding-window log.

    Counts requests in the trailing window_seconds, so no burst across a
    window boundary can exceed max_requests. reset_time is when the
    oldest counted request leaves the window.
    """

    name = "memory-sliding"

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._logs: Dict[str, _RequestLog] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._logs)

    async def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            log = self._logs.get(identifier)
            if log is None:
                log = self._logs[identifier] = _RequestLog(config.window_seconds)
            log.window_seconds = config.window_seconds
            log.prune(now)

            if len(log.timestamps) >= config.max_requests:
                return _rejected(config, log.timestamps[0] + config.window_seconds, now)

            log.timestamps.append(now)
            return RateLimitResult(
                allowed=True,
                limit=config.max_requests,
                remaining=config.max_requests - len(log.timestamps),
                reset_time=log.timestamps[0] + config.window_seconds,
            )

    async def reset(self, identifier: str) -> None:
        async with self._lock:
            self._logs.pop(identifier, None)

    async def get_status(self, identifier: str) -> Optional[RateLimitEntry]:
        log = self._logs.get(identifier)
        if log is None:
            return None
        live = log.live(self._clock())
        if not live:
            return None
        return RateLimitEntry(count=len(live), reset_time=live[0] + log.window_seconds)

    async def cleanup(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = []
            for key, log in self._logs.items():
                log.prune(now)
                if not log.timestamps:
                    expired.append(key)
            for key in expired:
                del self._logs[key]
            return len(expired)


class RedisRateLimiter(RateLimitBackend):
    """Redis-based fixed-window limiter shared by every instance.

    The window counter lives in one key per identifier: INCR counts the
    request and PEXPIRE, set when the key is new, closes the window.
    An overflowing request is DECRed back out, if its key still exists,
    so it is not counted.
    """

    name = "redis"
    KEY_PREFIX = "ykbuddy:ratelimit:"

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: str = "redis://localhost:6379/0",
        fail_closed: bool = False,
        clock: Clock = time.time,
    ):
        """Initialize Redis rate limiter.

        Args:
            redis_client: Optional Redis client instance
            redis_url: Redis connection URL, used when no client is given
            fail_closed: Deny requests instead of allowing them when Redis fails
            clock: Source of the current epoch time
        """
        self._redis = redis_client
        self._redis_url = redis_url
        self._fail_closed = fail_closed
        self._clock = clock

    def _get_redis(self) -> Any:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    def _key(self, identifier: str) -> str:
        return f"{self.KEY_PREFIX}{identifier}"

    async def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        key = self._key(identifier)
        window_ms = int(config.window_seconds * 1000)
        try:
            client = self._get_redis()
            now = self._clock()

            pipe = client.pipeline()
            pipe.incr(key)
            pipe.pttl(key)
            count, ttl_ms = await pipe.execute()

            # -1: key has no expiry yet (new window), -2: expired between calls
            if ttl_ms is None or ttl_ms < 0:
                await client.pexpire(key, window_ms)
                ttl_ms = window_ms
            reset_time = now + ttl_ms / 1000

            if count > config.max_requests:
                await client.eval(_DECR_IF_EXISTS, 1, key)
                return _rejected(config, reset_time, now)

            return RateLimitResult(
                allowed=True,
                limit=config.max_requests,
                remaining=config.max_requests - count,
                reset_time=reset_time,
            )

        except redis.ConnectionError as e:
            logger.error(f"Redis connection failed: {e}")
            return self._handle_redis_failure("connection_error", config)
        except redis.TimeoutError as e:
            logger.warning(f"Redis timeout: {e}")
            return self._handle_redis_failure("timeout", config)
        except redis.RedisError as e:
            logger.error(f"Redis error: {e}")
            return self._handle_redis_failure("redis_error", config)
        except Exception as e:
            logger.exception(f"Unexpected rate limit error: {e}")
            return self._handle_redis_failure("unexpected", config)

    def _handle_redis_failure(self, error_type: str, config: RateLimitConfig) -> RateLimitResult:
        """Apply the fail-open / fail-closed policy for a Redis failure."""
        now = self._clock()
        reset_time = now + config.window_seconds

        if self._fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {error_type}. "
                "Request denied."
            )
            return _rejected(config, reset_time, now)

        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check."
        )
        return RateLimitResult(
            allowed=True,
            limit=config.max_requests,
            remaining=config.max_requests - 1,
            reset_time=reset_time,
        )

    async def reset(self, identifier: str) -> None:
        await self._get_redis().delete(self._key(identifier))

    async def get_status(self, identifier: str) -> Optional[RateLimitEntry]:
        client = self._get_redis()
        key = self._key(identifier)
        pipe = client.pipeline()
        pipe.get(key)
        pipe.pttl(key)
        raw, ttl_ms = await pipe.execute()
        if raw is None or ttl_ms is None or ttl_ms < 0:
            return None
        return RateLimitEntry(count=int(raw), reset_time=self._clock() + ttl_ms / 1000)

    async def cleanup(self) -> int:
        # Keys expire on their own
        return 0

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
