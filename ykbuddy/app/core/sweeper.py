"""Periodic background sweeps.

Runs a cleanup coroutine on a fixed interval as a cancellable asyncio
task, so sweeps stop cleanly on shutdown and in tests instead of living
on as process-wide timers.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from ykbuddy.app.core.logging import get_logger

logger = get_logger(__name__)


class PeriodicSweeper:
    """Calls a coroutine function every interval seconds until stopped.

    Usage:
        sweeper = PeriodicSweeper("rate-limiter", limiter.cleanup, interval=60)
        await sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[Optional[int]]],
        interval: float,
    ):
        """Initialize the sweeper.

        Args:
            name: Label used in log messages
            callback: Coroutine function doing one sweep; may return a count
            interval: Seconds between sweeps
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self._callback = callback
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Optional[int]:
        """Run one sweep now. Errors are logged, not raised."""
        try:
            removed = await self._callback()
        except Exception as e:
            logger.error(f"Error during {self.name} sweep: {e}")
            return None
        self.runs += 1
        if removed:
            logger.debug(f"{self.name} sweep removed {removed} entries")
        return removed

    async def start(self) -> None:
        """Start the background sweep task."""
        if self.running:
            logger.debug(f"{self.name} sweeper already running")
            return

        # Fresh event per run: the app may be started again on another loop
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started {self.name} sweeper (interval: {self._interval}s)")

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop the background task, cancelling it if it does not finish in time."""
        if self._task is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} sweeper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info(f"Stopped {self.name} sweeper")

    async def _run(self) -> None:
        # The first sweep waits one interval; nothing has expired at startup
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                await self.run_once()
