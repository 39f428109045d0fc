"""Server-side query cache with tag-based invalidation.

Same key/TTL contract as CacheBackend.get_or_fetch, plus tags: a write
path can invalidate every cached query touching a resource without
knowing the individual keys.
"""

import functools
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple, TypeVar

from ykbuddy.app.core.cache import CacheBackend, CacheTTL
from ykbuddy.app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])


class CacheTags:
    """Invalidation tags per resource."""

    GARAGE_SALES = "garage-sales"
    PROFILES = "profiles"
    KNOWLEDGE = "knowledge"
    SPONSORS = "sponsors"
    AURORA = "aurora"
    WEATHER = "weather"


class TaggedCache:
    """Wraps a cache backend and records which keys belong to which tags.

    The tag index is per process. With a shared Redis backend the values
    are shared, but revalidate_tag() only reaches keys this process cached.

    Usage:
        tagged = TaggedCache(cache)
        sales = await tagged.cached_query(
            "garage-sales:active:50",
            load_active_sales,
            revalidate=CacheTTL.MEDIUM,
            tags=[CacheTags.GARAGE_SALES],
        )
        # after a listing changes
        await tagged.revalidate_tag(CacheTags.GARAGE_SALES)
    """

    def __init__(self, backend: CacheBackend):
        self._backend = backend
        self._tags: Dict[str, Set[str]] = {}

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    async def cached_query(
        self,
        key: str,
        query_fn: Callable[[], Awaitable[T]],
        revalidate: Optional[float] = CacheTTL.MEDIUM,
        tags: Iterable[str] = (),
    ) -> T:
        """Return the cached result of query_fn, running it on a miss.

        Args:
            key: Cache key describing the query
            query_fn: Coroutine function producing the result
            revalidate: TTL in seconds (None = backend default)
            tags: Tags to invalidate this entry by
        """
        for tag in tags:
            self._tags.setdefault(tag, set()).add(key)
        return await self._backend.get_or_fetch(key, query_fn, ttl=revalidate)

    async def revalidate_tag(self, tag: str) -> int:
        """Invalidate every key cached under tag.

        Returns:
            Number of keys invalidated
        """
        keys = self._tags.pop(tag, set())
        for key in keys:
            await self._backend.delete(key)
            for other in self._tags.values():
                other.discard(key)
        logger.info(f"Revalidated tag '{tag}' ({len(keys)} keys)")
        return len(keys)

    async def revalidate_key(self, key: str) -> None:
        await self._backend.delete(key)
        for keys in self._tags.values():
            keys.discard(key)

    async def cleanup(self) -> int:
        """Sweep the backend and drop index entries for keys it no longer holds.

        Returns:
            Number of expired entries the backend removed
        """
        removed = await self._backend.cleanup()
        for tag, keys in list(self._tags.items()):
            live = {key for key in keys if await self._backend.has(key)}
            if live:
                self._tags[tag] = live
            else:
                del self._tags[tag]
        return removed

    def tags(self) -> Dict[str, int]:
        return {tag: len(keys) for tag, keys in self._tags.items()}


def memoize(ttl: float = CacheTTL.MEDIUM, clock: Callable[[], float] = time.time) -> Callable[[F], F]:
    """Decorator caching results of a synchronous function per argument set.

    Arguments must be hashable. Expired results are recomputed on the
    next call; cache_clear() drops everything.

    Example:
        >>> @memoize(ttl=600)
        ... def daylight_hours(day_of_year):
        ...     ...
    """

    def decorator(func: F) -> F:
        results: Dict[Tuple[Any, ...], Tuple[Any, float]] = {}

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            key = (args, tuple(sorted(kwargs.items())))
            now = clock()
            cached = results.get(key)
            if cached is not None and now < cached[1]:
                return cached[0]
            result = func(*args, **kwargs)
            results[key] = (result, now + ttl)
            return result

        wrapper.cache_clear = results.clear  # type: ignore[attr-defined]
        return wrapper  # type: ignore

    return decorator
