"""Administrative overrides for the rate limiter and caches."""

from typing import Any

from fastapi import APIRouter, Depends, Request, status

from ykbuddy.app.core.logging import get_logger
from ykbuddy.app.middleware.auth import require_admin
from ykbuddy.app.middleware.rate_limit import RateLimitDependency
from ykbuddy.app.ratelimit.headers import format_reset_time
from ykbuddy.app.ratelimit.policies import AUTH

logger = get_logger(__name__)

# Rate limit first so failed token guesses are throttled too
router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(RateLimitDependency(AUTH)), Depends(require_admin)],
)


@router.get("/rate-limits/{identifier}")
async def rate_limit_status(identifier: str, request: Request) -> dict[str, Any]:
    """Current window for a limiter key, e.g. "write:user:42"."""
    entry = await request.app.state.limiter.get_status(identifier)
    if entry is None:
        return {"identifier": identifier, "active": False}
    return {
        "identifier": identifier,
        "active": True,
        "count": entry.count,
        "reset_time": format_reset_time(entry.reset_time),
    }


@router.delete("/rate-limits/{identifier}", status_code=status.HTTP_204_NO_CONTENT)
async def reset_rate_limit(identifier: str, request: Request) -> None:
    await request.app.state.limiter.reset(identifier)
    logger.info(f"Rate limit reset for {identifier}", extra={"client_id": identifier})


@router.post("/cache/revalidate/{tag}")
async def revalidate_cache_tag(tag: str, request: Request) -> dict[str, Any]:
    removed = await request.app.state.tagged_cache.revalidate_tag(tag)
    return {"tag": tag, "invalidated": removed}


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cache(request: Request) -> None:
    await request.app.state.cache.clear()
    logger.info("Cache cleared by admin")
