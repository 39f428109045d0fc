"""Middleware package for YK Buddy."""

from ykbuddy.app.middleware.auth import require_admin
from ykbuddy.app.middleware.rate_limit import RateLimitDependency, RateLimitMiddleware
from ykbuddy.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "require_admin",
    "RateLimitDependency",
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "get_request_id",
]
