"""Retry mechanism with exponential backoff.

Retries transient failures (network errors, 5xx and 429 responses) of an
async operation and lets every other failure through on the first
occurrence. When retries run out the original exception is re-raised
unchanged, so callers can still inspect its status code.
"""

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from ykbuddy.app.core.config import Settings
from ykbuddy.app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def _status_code(error: BaseException) -> Optional[int]:
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


def default_should_retry(error: BaseException) -> bool:
    """Return True for failures worth retrying.

    Network level failures (connection errors, timeouts) and responses
    with a 5xx or 429 status are transient. Everything else, 4xx client
    errors included, is permanent.
    """
    if isinstance(error, httpx.TransportError):
        return True

    status = _status_code(error)
    if status is None:
        return False
    return 500 <= status < 600 or status == 429


@dataclass
class RetryOptions:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Retries after the first attempt (default: 3)
        initial_delay: Delay before the first retry in seconds (default: 1.0)
        backoff_multiplier: Factor applied to the delay after each retry (default: 2.0)
        max_delay: Upper bound for a single delay in seconds (default: 30.0)
        should_retry: Predicate deciding whether an error is transient
        on_retry: Called with (attempt_number, error) before each retry

    Example:
        >>> options = RetryOptions(initial_delay=1.0, max_delay=8.0)
        >>> [options.calculate_delay(n) for n in range(5)]
        [1.0, 2.0, 4.0, 8.0, 8.0]
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0
    should_retry: Callable[[BaseException], bool] = default_should_retry
    on_retry: Optional[Callable[[int, BaseException], None]] = None

    def calculate_delay(self, attempt: int) -> float:
        """Delay after the given 0-indexed failed attempt.

        min(initial_delay * backoff_multiplier ** attempt, max_delay)
        """
        return min(self.initial_delay * (self.backoff_multiplier ** attempt), self.max_delay)

    @classmethod
    def from_settings(cls, config: Settings, **overrides: Any) -> "RetryOptions":
        values = {
            "max_retries": config.retry_max_retries,
            "initial_delay": config.retry_initial_delay,
            "backoff_multiplier": config.retry_backoff_multiplier,
            "max_delay": config.retry_max_delay,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class RetryState:
    """State of one retry_with_backoff call."""

    attempt: int = 0
    delay: float = 0.0
    last_error: Optional[BaseException] = None


def _name_of(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__name__", repr(fn))


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    *,
    cancel_event: Optional[asyncio.Event] = None,
) -> T:
    """Run fn, retrying transient failures with exponential backoff.

    Args:
        fn: Zero-argument coroutine function to run
        options: Retry configuration. Uses defaults if not provided.
        cancel_event: When set, no further attempt is made and the last
            error is re-raised

    Returns:
        The first successful result of fn

    Raises:
        The original exception of the last failed attempt
    """
    opts = options or RetryOptions()
    state = RetryState(delay=opts.initial_delay)
    name = _name_of(fn)

    while True:
        try:
            return await fn()
        except Exception as e:
            state.last_error = e

            if state.attempt >= opts.max_retries:
                if opts.max_retries:
                    logger.warning(
                        f"Max retries ({opts.max_retries}) exceeded for {name}: "
                        f"{type(e).__name__}: {e}"
                    )
                raise

            if not opts.should_retry(e):
                logger.debug(f"Non-retryable exception in {name}: {type(e).__name__}: {e}")
                raise

            if cancel_event is not None and cancel_event.is_set():
                logger.debug(f"Retries for {name} cancelled")
                raise

            state.attempt += 1
            if opts.on_retry is not None:
                opts.on_retry(state.attempt, e)

            logger.warning(
                f"Retry {state.attempt}/{opts.max_retries} for {name} "
                f"after {type(e).__name__}: {e}. Waiting {state.delay:.2f}s..."
            )
            if await _backoff(state.delay, cancel_event):
                logger.debug(f"Retries for {name} cancelled during backoff")
                raise
            state.delay = min(state.delay * opts.backoff_multiplier, opts.max_delay)


async def _backoff(delay: float, cancel_event: Optional[asyncio.Event]) -> bool:
    """Wait out a backoff delay. Returns True if cancel_event was set meanwhile."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass
    return cancel_event.is_set()


def with_retry(options: Optional[RetryOptions] = None) -> Callable[[F], F]:
    """Decorator that adds retry logic with exponential backoff.

    Example:
        >>> @with_retry(RetryOptions(max_retries=5, initial_delay=0.5))
        ... async def load_aurora_forecast(day):
        ...     ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = functools.partial(func, *args, **kwargs)
            functools.update_wrapper(attempt, func)
            return await retry_with_backoff(attempt, options)

        return wrapper  # type: ignore

    return decorator


async def fetch_with_retry(
    method: str,
    url: str,
    *,
    client: httpx.AsyncClient,
    retry_options: Optional[RetryOptions] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Send an HTTP request, retrying transient failures.

    Any non-2xx response becomes an httpx.HTTPStatusError carrying the
    response, so 5xx and 429 are retried and other statuses surface
    immediately. Timeouts are whatever the client is configured with.

    Example:
        >>> response = await fetch_with_retry(
        ...     "GET", "https://api.open-meteo.com/v1/forecast",
        ...     client=client, params={"latitude": 62.45, "longitude": -114.37},
        ... )
    """

    async def send() -> httpx.Response:
        response = await client.request(method, url, **kwargs)
        if not response.is_success:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                request=response.request,
                response=response,
            )
        return response

    send.__name__ = f"{method.upper()} {url}"
    return await retry_with_backoff(send, retry_options)
