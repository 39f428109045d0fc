"""Rate limiting for HTTP requests.

RateLimitMiddleware applies one policy to every request; RateLimitDependency
applies a stricter policy to individual routes. Both key the limiter by
"<policy>:<client identity>" so policies never share a counter.
"""

from typing import Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ykbuddy.app.core.logging import get_logger
from ykbuddy.app.exceptions import RateLimitExceededError
from ykbuddy.app.ratelimit import (
    RateLimiter,
    RateLimitResult,
    build_rate_limit_headers,
    get_client_identifier,
)
from ykbuddy.app.ratelimit.policies import API

logger = get_logger(__name__)

DEFAULT_EXEMPT_PATHS = ("/health", "/docs", "/openapi.json", "/redoc")


def rate_limit_key(policy: str, identifier: str) -> str:
    return f"{policy}:{identifier}"


def rate_limited_response(result: RateLimitResult) -> JSONResponse:
    """Build the 429 response for a rejected request."""
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "message": "Rate limit exceeded. Please try again later.",
            "retry_after": result.retry_after,
        },
        headers=build_rate_limit_headers(result),
    )


def get_limiter(request: Request) -> RateLimiter:
    return request.app.state.limiter


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce the general API rate limit.

    Applied per authenticated user when the auth layer set
    request.state.user_id, otherwise per forwarded client address.
    """

    def __init__(
        self,
        app,
        limiter: Optional[RateLimiter] = None,
        policy: str = API,
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
    ):
        """Initialize the middleware.

        Args:
            app: ASGI application
            limiter: Limiter to use (None = request.app.state.limiter)
            policy: Policy name applied to every request
            exempt_paths: Paths never rate limited
        """
        super().__init__(app)
        self.limiter = limiter
        self.policy = policy
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        limiter = self.limiter or get_limiter(request)
        identifier = get_client_identifier(request)
        result = await limiter.check(rate_limit_key(self.policy, identifier), self.policy)

        if not result.allowed:
            logger.info(
                f"Rejected {request.method} {request.url.path}: rate limit exceeded",
                extra={"client_id": identifier, "policy": self.policy, "path": request.url.path},
            )
            return rate_limited_response(result)

        response = await call_next(request)

        # Route dependencies may already have set stricter values
        for name, value in build_rate_limit_headers(result).items():
            response.headers.setdefault(name, value)

        return response


class RateLimitDependency:
    """FastAPI dependency enforcing a policy on one route.

    Usage:
        @router.post("/contact", dependencies=[Depends(RateLimitDependency("sensitive"))])
        async def submit_contact(...):
            ...
    """

    def __init__(self, policy: str):
        self.policy = policy

    async def __call__(self, request: Request, response: Response) -> RateLimitResult:
        limiter = get_limiter(request)
        identifier = get_client_identifier(request)
        result = await limiter.check(rate_limit_key(self.policy, identifier), self.policy)

        if not result.allowed:
            raise RateLimitExceededError(result, policy=self.policy)

        response.headers.update(build_rate_limit_headers(result))
        return result
