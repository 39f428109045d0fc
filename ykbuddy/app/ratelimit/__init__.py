"""Request rate limiting.

Fixed-window counters keyed by client identity, with a sliding-window
alternative and a Redis backend for multi-instance deployments.
"""

from ykbuddy.app.ratelimit.backends import (
    FixedWindowRateLimiter,
    RateLimitBackend,
    RedisRateLimiter,
    SlidingWindowRateLimiter,
)
from ykbuddy.app.ratelimit.headers import build_rate_limit_headers, format_reset_time
from ykbuddy.app.ratelimit.identity import get_client_identifier
from ykbuddy.app.ratelimit.limiter import RateLimiter, create_backend, with_rate_limit
from ykbuddy.app.ratelimit.models import RateLimitConfig, RateLimitEntry, RateLimitResult
from ykbuddy.app.ratelimit.policies import build_policy_table, resolve_policy

__all__ = [
    # Models
    "RateLimitConfig",
    "RateLimitEntry",
    "RateLimitResult",
    # Backends
    "RateLimitBackend",
    "FixedWindowRateLimiter",
    "SlidingWindowRateLimiter",
    "RedisRateLimiter",
    # Main classes
    "RateLimiter",
    "create_backend",
    "with_rate_limit",
    # Helpers
    "build_policy_table",
    "resolve_policy",
    "get_client_identifier",
    "build_rate_limit_headers",
    "format_reset_time",
]
