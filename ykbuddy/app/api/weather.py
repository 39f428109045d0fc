from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request

from ykbuddy.app.middleware.rate_limit import RateLimitDependency
from ykbuddy.app.ratelimit.policies import READ
from ykbuddy.app.services.weather import WeatherService

router = APIRouter(prefix="/api", tags=["weather"])


def get_weather_service(request: Request) -> WeatherService:
    return request.app.state.weather_service


@router.get("/weather", dependencies=[Depends(RateLimitDependency(READ))])
async def current_weather(
    latitude: Optional[float] = Query(default=None, ge=-90, le=90),
    longitude: Optional[float] = Query(default=None, ge=-180, le=180),
    service: WeatherService = Depends(get_weather_service),
) -> dict[str, Any]:
    """Current conditions, Yellowknife unless coordinates are given."""
    return await service.current(latitude, longitude)
