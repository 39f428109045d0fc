"""Current weather lookup for Yellowknife.

Serves from the cache when it can; on a miss calls the forecast upstream
with retries and caches the result for the SHORT tier.
"""

from typing import Any, Dict, Optional

import httpx

from ykbuddy.app.core.cache import CacheBackend, CacheTTL
from ykbuddy.app.core.config import Settings
from ykbuddy.app.core.logging import get_logger
from ykbuddy.app.core.retry import RetryOptions, fetch_with_retry
from ykbuddy.app.core.tagged_cache import CacheTags, TaggedCache
from ykbuddy.app.exceptions import UpstreamServiceError

logger = get_logger(__name__)


class WeatherService:
    """Cached, retrying client for the forecast API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: TaggedCache,
        config: Settings,
        retry_options: Optional[RetryOptions] = None,
    ):
        self._client = client
        self._cache = cache
        self._config = config
        self._retry_options = retry_options or RetryOptions.from_settings(config)

    def cache_key(self, latitude: float, longitude: float) -> str:
        return f"weather:{latitude:.3f}:{longitude:.3f}"

    async def current(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Return current conditions, from cache when fresh.

        Raises:
            UpstreamServiceError: If the upstream failed permanently or
                kept failing after all retries
        """
        latitude = self._config.weather_latitude if latitude is None else latitude
        longitude = self._config.weather_longitude if longitude is None else longitude

        async def fetch() -> Dict[str, Any]:
            response = await fetch_with_retry(
                "GET",
                self._config.weather_api_url,
                client=self._client,
                retry_options=self._retry_options,
                params={
                    "latitude": latitude,
                    "longitude": longitude,
                    "current_weather": "true",
                },
            )
            return response.json()

        try:
            if not self._config.cache_enabled:
                return await fetch()
            return await self._cache.cached_query(
                self.cache_key(latitude, longitude),
                fetch,
                revalidate=CacheTTL.SHORT,
                tags=[CacheTags.WEATHER],
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Weather lookup failed: {type(e).__name__}: {e}")
            raise UpstreamServiceError("weather") from e
