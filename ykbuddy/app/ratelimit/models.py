"""Rate limiting data models.

This module contains dataclasses for rate limit configuration, state and results.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RateLimitConfig:
    """Requests allowed per window for one policy."""
    max_requests: int
    window_seconds: float

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")


@dataclass
class RateLimitEntry:
    """Fixed-window state for one identifier.

    count never exceeds the configured max_requests: the request that
    would overflow it is rejected and not counted.
    """
    count: int
    reset_time: float

    def is_expired(self, now: float) -> bool:
        return now >= self.reset_time


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after: Optional[int] = None
