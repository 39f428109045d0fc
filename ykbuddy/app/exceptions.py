"""Custom exceptions for the YK Buddy application."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ykbuddy.app.ratelimit.models import RateLimitResult


class YKBuddyException(Exception):
    """Base class for application exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Internal server error"):
        self.message = message
        super().__init__(message)


class RateLimitExceededError(YKBuddyException):
    """Raised when a caller has used up its request window.

    Carries the limiter result so the HTTP layer can emit the
    X-RateLimit-* and Retry-After headers.
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, result: "RateLimitResult", policy: str | None = None):
        self.result = result
        self.policy = policy
        message = "Too many requests"
        if result.retry_after is not None:
            message += f", retry after {result.retry_after} seconds"
        super().__init__(message)


class UpstreamServiceError(YKBuddyException):
    """Raised when an upstream dependency failed after retries.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502

    def __init__(self, service: str, detail: str = "Upstream service unavailable"):
        self.service = service
        self.detail = detail
        super().__init__(detail)


class AuthenticationError(YKBuddyException):
    """Raised when admin token authentication fails.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401

    def __init__(self, detail: str = "Invalid or missing admin token"):
        self.detail = detail
        super().__init__(detail)


class UnknownRatePolicyError(KeyError):
    """Raised when a rate limit policy name is not in the policy table."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown rate limit policy: {name!r}")
