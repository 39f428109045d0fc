"""Rate limiter facade and helpers."""

import functools
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from ykbuddy.app.core.config import Settings, settings as default_settings
from ykbuddy.app.core.logging import get_log_context, get_logger
from ykbuddy.app.exceptions import RateLimitExceededError
from ykbuddy.app.ratelimit.backends import (
    Clock,
    FixedWindowRateLimiter,
    RateLimitBackend,
    RedisRateLimiter,
    SlidingWindowRateLimiter,
)
from ykbuddy.app.ratelimit.models import RateLimitConfig, RateLimitEntry, RateLimitResult
from ykbuddy.app.ratelimit.policies import PolicyLike, build_policy_table, resolve_policy

logger = get_logger(__name__)

T = TypeVar("T")


def create_backend(config: Optional[Settings] = None, clock: Optional[Clock] = None) -> RateLimitBackend:
    """Select a backend from settings.

    Redis when enabled, otherwise the in-memory strategy named by
    rate_limit_strategy.
    """
    config = config or default_settings
    clock_kwargs = {"clock": clock} if clock is not None else {}

    if config.redis_enabled:
        logger.info("Using Redis rate limiter backend")
        return RedisRateLimiter(
            redis_url=config.redis_url,
            fail_closed=config.rate_limit_fail_closed,
            **clock_kwargs,
        )
    if config.rate_limit_strategy == "sliding_window":
        logger.debug("Using in-memory sliding window rate limiter backend")
        return SlidingWindowRateLimiter(**clock_kwargs)

    logger.debug("Using in-memory fixed window rate limiter backend")
    return FixedWindowRateLimiter(**clock_kwargs)


class RateLimiter:
    """Policy-agnostic rate limiter over a pluggable backend.

    Construct one per application and pass it where it is needed; tests
    build isolated instances with their own backend and clock.

    Usage:
        limiter = RateLimiter()
        result = await limiter.check("user:42", "write")
        if not result.allowed:
            ...
    """

    def __init__(
        self,
        backend: Optional[RateLimitBackend] = None,
        policies: Optional[Dict[str, RateLimitConfig]] = None,
        config: Optional[Settings] = None,
    ):
        """Initialize rate limiter.

        Args:
            backend: Storage backend (None = selected from settings)
            policies: Policy table (None = built from settings)
            config: Settings used for the defaults above
        """
        self._backend = backend or create_backend(config)
        self.policies = policies if policies is not None else build_policy_table(config)

    @property
    def backend(self) -> RateLimitBackend:
        return self._backend

    async def check(self, identifier: str, policy: PolicyLike) -> RateLimitResult:
        """Count a request and report whether it is allowed.

        Args:
            identifier: Client identity
            policy: Policy name from the table, or an explicit RateLimitConfig

        Returns:
            RateLimitResult; a rejection is a normal result, not an exception
        """
        config = resolve_policy(policy, self.policies)
        result = await self._backend.check(identifier, config)
        if not result.allowed:
            logger.info(
                "Rate limit exceeded",
                extra=get_log_context(
                    client_id=identifier,
                    policy=policy if isinstance(policy, str) else None,
                    retry_after=result.retry_after,
                ),
            )
        return result

    async def reset(self, identifier: str) -> None:
        """Let identifier start over immediately."""
        await self._backend.reset(identifier)

    async def get_status(self, identifier: str) -> Optional[RateLimitEntry]:
        return await self._backend.get_status(identifier)

    async def cleanup(self) -> int:
        removed = await self._backend.cleanup()
        if removed:
            logger.debug(f"Rate limiter cleanup removed {removed} expired entries")
        return removed

    async def close(self) -> None:
        await self._backend.close()


def with_rate_limit(
    limiter: RateLimiter,
    key: str,
    policy: PolicyLike,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator that rate limits calls to an async function.

    Every call counts against key; a rejected call raises
    RateLimitExceededError instead of running the function.

    Example:
        >>> @with_rate_limit(limiter, "contact-form", "sensitive")
        ... async def submit(form):
        ...     ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            result = await limiter.check(key, policy)
            if not result.allowed:
                raise RateLimitExceededError(
                    result, policy=policy if isinstance(policy, str) else None
                )
            return await func(*args, **kwargs)

        return wrapper

    return decorator
