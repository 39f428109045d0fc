"""Core utilities for the YK Buddy application."""

from ykbuddy.app.core.cache import (
    CacheBackend,
    CacheTTL,
    RedisCache,
    TTLCache,
    create_cache,
)
from ykbuddy.app.core.config import Settings, settings
from ykbuddy.app.core.logging import get_logger, setup_logging
from ykbuddy.app.core.retry import (
    RetryOptions,
    fetch_with_retry,
    retry_with_backoff,
    with_retry,
)

__all__ = [
    "CacheBackend",
    "CacheTTL",
    "RedisCache",
    "TTLCache",
    "create_cache",
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
    "RetryOptions",
    "fetch_with_retry",
    "retry_with_backoff",
    "with_retry",
]
