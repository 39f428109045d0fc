"""Tests for retry with exponential backoff."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from ykbuddy.app.core.retry import (
    RetryOptions,
    default_should_retry,
    fetch_with_retry,
    retry_with_backoff,
    with_retry,
)


def status_error(status_code: int) -> httpx.HTTPStatusError:
    response_mock = MagicMock()
    response_mock.status_code = status_code
    return httpx.HTTPStatusError(
        f"HTTP {status_code}", request=MagicMock(), response=response_mock
    )


@pytest.fixture
def sleeps():
    """Record backoff delays instead of sleeping."""
    delays = []

    async def mock_sleep(delay):
        delays.append(delay)

    with patch("asyncio.sleep", mock_sleep):
        yield delays


class TestRetryOptions:
    def test_defaults(self):
        options = RetryOptions()
        assert options.max_retries == 3
        assert options.initial_delay == 1.0
        assert options.backoff_multiplier == 2.0
        assert options.max_delay == 30.0

    def test_calculate_delay(self):
        options = RetryOptions(initial_delay=1.0, backoff_multiplier=2.0, max_delay=8.0)
        assert [options.calculate_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 8.0]

    def test_from_settings(self, test_settings):
        options = RetryOptions.from_settings(test_settings, max_retries=1)

        assert options.max_retries == 1
        assert options.initial_delay == test_settings.retry_initial_delay
        assert options.max_delay == test_settings.retry_max_delay


class TestShouldRetry:
    """Tests for default_should_retry classification."""

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 429])
    def test_transient_statuses(self, status):
        assert default_should_retry(status_error(status)) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_are_permanent(self, status):
        assert default_should_retry(status_error(status)) is False

    def test_network_errors(self):
        assert default_should_retry(httpx.ConnectError("refused")) is True
        assert default_should_retry(httpx.ReadTimeout("slow")) is True

    def test_other_errors(self):
        assert default_should_retry(ValueError("bad")) is False


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, sleeps):
        fn = AsyncMock(return_value="ok")

        assert await retry_with_backoff(fn) == "ok"
        assert fn.await_count == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_success_after_transient_failures(self, sleeps):
        """Two 500s then success: three calls, delays 1s and 2s."""
        fn = AsyncMock(side_effect=[status_error(500), status_error(500), "ok"])

        result = await retry_with_backoff(fn, RetryOptions(max_retries=3))

        assert result == "ok"
        assert fn.await_count == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_backoff_sequence_is_capped(self, sleeps):
        error = status_error(503)
        fn = AsyncMock(side_effect=error)
        options = RetryOptions(max_retries=5, initial_delay=1.0, max_delay=8.0)

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await retry_with_backoff(fn, options)

        assert exc_info.value is error
        assert fn.await_count == 6
        assert sleeps == [1.0, 2.0, 4.0, 8.0, 8.0]

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, sleeps):
        fn = AsyncMock(side_effect=status_error(404))

        with pytest.raises(httpx.HTTPStatusError):
            await retry_with_backoff(fn)

        assert fn.await_count == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_zero_retries(self, sleeps):
        fn = AsyncMock(side_effect=status_error(503))

        with pytest.raises(httpx.HTTPStatusError):
            await retry_with_backoff(fn, RetryOptions(max_retries=0))

        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_custom_should_retry(self, sleeps):
        fn = AsyncMock(side_effect=[KeyError("a"), "ok"])
        options = RetryOptions(should_retry=lambda e: isinstance(e, KeyError))

        assert await retry_with_backoff(fn, options) == "ok"
        assert sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_on_retry_gets_attempt_numbers(self, sleeps):
        errors = [status_error(502), httpx.ConnectError("refused")]
        fn = AsyncMock(side_effect=[*errors, "ok"])
        seen = []

        options = RetryOptions(on_retry=lambda attempt, error: seen.append((attempt, error)))
        await retry_with_backoff(fn, options)

        assert seen == [(1, errors[0]), (2, errors[1])]

    @pytest.mark.asyncio
    async def test_cancel_event_stops_retries(self, sleeps):
        cancel = asyncio.Event()
        error = status_error(503)

        async def fn():
            cancel.set()
            raise error

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await retry_with_backoff(fn, cancel_event=cancel)

        assert exc_info.value is error
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_cancel_during_backoff_stops_retries(self):
        """Setting the event mid-backoff ends the wait without another attempt."""
        cancel = asyncio.Event()
        error = status_error(503)
        fn = AsyncMock(side_effect=error)
        options = RetryOptions(max_retries=3, initial_delay=5.0)

        loop = asyncio.get_running_loop()
        loop.call_later(0.01, cancel.set)
        started = loop.time()

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await retry_with_backoff(fn, options, cancel_event=cancel)

        assert exc_info.value is error
        assert fn.await_count == 1
        assert loop.time() - started < 1.0

    @pytest.mark.asyncio
    async def test_unset_cancel_event_waits_full_delay(self):
        cancel = asyncio.Event()
        fn = AsyncMock(side_effect=[status_error(503), "ok"])
        options = RetryOptions(initial_delay=0.01)

        assert await retry_with_backoff(fn, options, cancel_event=cancel) == "ok"
        assert fn.await_count == 2


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_decorator_retries_with_arguments(self, sleeps):
        calls = []

        @with_retry(RetryOptions(max_retries=2))
        async def load(day, *, region="north"):
            calls.append((day, region))
            if len(calls) < 2:
                raise httpx.ConnectError("refused")
            return f"{day}:{region}"

        assert await load(3, region="slave-lake") == "3:slave-lake"
        assert calls == [(3, "slave-lake"), (3, "slave-lake")]

    def test_preserves_metadata(self):
        @with_retry()
        async def load_aurora_forecast():
            """Forecast."""

        assert load_aurora_forecast.__name__ == "load_aurora_forecast"
        assert load_aurora_forecast.__doc__ == "Forecast."


class TestFetchWithRetry:
    """Tests for fetch_with_retry against a mock transport."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, sleeps):
        statuses = iter([503, 500, 200])

        def handler(request):
            return httpx.Response(next(statuses), json={"ok": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await fetch_with_retry("GET", "https://upstream.test/data", client=client)

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_client_error_raises_immediately(self, sleeps):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                await fetch_with_retry("GET", "https://upstream.test/missing", client=client)

        assert exc_info.value.response.status_code == 404
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_passes_request_arguments(self, sleeps):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await fetch_with_retry(
                "post",
                "https://upstream.test/items",
                client=client,
                json={"name": "canoe"},
                headers={"X-Test": "1"},
            )

        assert seen[0].method == "POST"
        assert seen[0].headers["X-Test"] == "1"
        assert json.loads(seen[0].content) == {"name": "canoe"}

    @pytest.mark.asyncio
    async def test_exhausted_retries_surface_status(self, sleeps):
        def handler(request):
            return httpx.Response(503)

        options = RetryOptions(max_retries=2)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                await fetch_with_retry(
                    "GET", "https://upstream.test/", client=client, retry_options=options
                )

        assert exc_info.value.response.status_code == 503
        assert sleeps == [1.0, 2.0]
