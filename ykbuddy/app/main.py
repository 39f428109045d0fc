from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ykbuddy.app.api import admin_router, weather_router
from ykbuddy.app.core.cache import CacheBackend, create_cache
from ykbuddy.app.core.config import Settings, settings as default_settings
from ykbuddy.app.core.http_client import create_http_client
from ykbuddy.app.core.logging import get_logger, setup_logging
from ykbuddy.app.core.sweeper import PeriodicSweeper
from ykbuddy.app.core.tagged_cache import TaggedCache
from ykbuddy.app.exceptions import (
    AuthenticationError,
    RateLimitExceededError,
    UpstreamServiceError,
)
from ykbuddy.app.middleware.rate_limit import RateLimitMiddleware, rate_limited_response
from ykbuddy.app.middleware.request_id import RequestIdMiddleware
from ykbuddy.app.ratelimit import RateLimiter
from ykbuddy.app.services.weather import WeatherService


def create_app(
    config: Optional[Settings] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    limiter: Optional[RateLimiter] = None,
    cache: Optional[CacheBackend] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Every application gets its own limiter and cache; pass instances in
    to share them or to control their clocks in tests.

    Returns:
        Configured FastAPI application instance
    """
    config = config or default_settings
    setup_logging(config)
    logger = get_logger(__name__)

    limiter = limiter or RateLimiter(config=config)
    cache = cache or create_cache(config)
    tagged_cache = TaggedCache(cache)
    sweepers = [
        PeriodicSweeper("rate-limiter", limiter.cleanup, config.rate_limit_cleanup_interval),
        PeriodicSweeper("cache", tagged_cache.cleanup, config.cache_cleanup_interval),
    ]

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Start the cleanup sweeps and the upstream HTTP client; stop them on shutdown."""
        client = http_client or create_http_client(config)
        app.state.weather_service = WeatherService(client, tagged_cache, config)

        for sweeper in sweepers:
            await sweeper.start()

        logger.info(
            "Application startup complete",
            extra={
                "rate_limiter": limiter.backend.name,
                "cache": cache.name,
                "debug_mode": config.debug,
            },
        )

        try:
            yield
        finally:
            for sweeper in sweepers:
                await sweeper.stop()
            if http_client is None:
                await client.aclose()
            await limiter.close()
            await cache.close()
            logger.info("Application shutdown complete")

    app = FastAPI(
        title="YK Buddy API",
        description="Yellowknife visitor and resident services",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.limiter = limiter
    app.state.cache = cache
    app.state.tagged_cache = tagged_cache
    app.state.sweepers = sweepers

    # Add middleware (order matters: last added = first executed)
    if config.rate_limit_enabled:
        app.add_middleware(RateLimitMiddleware, limiter=limiter)

    # Outside the limiter so preflight requests are never counted
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=600,
    )

    # Outermost, so rejected requests also get an ID
    app.add_middleware(RequestIdMiddleware)

    app.include_router(weather_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with limiter and cache status."""
        return {
            "status": "ok",
            "components": {
                "rate_limiter": {"backend": limiter.backend.name},
                "cache": cache.stats(),
                "sweepers": {
                    sweeper.name: {"running": sweeper.running, "runs": sweeper.runs}
                    for sweeper in sweepers
                },
            },
        }

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
        """Handle RateLimitExceededError and return HTTP 429 response."""
        return rate_limited_response(exc.result)

    @app.exception_handler(UpstreamServiceError)
    async def upstream_error_handler(request: Request, exc: UpstreamServiceError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "service": exc.service},
        )

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers={"WWW-Authenticate": "Bearer"},
        )

    return app


app = create_app()
