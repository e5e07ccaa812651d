"""
Timer-driven catalog refresh.

Runs inside the API process as an asyncio task. Each tick runs the
(synchronous) refresh in the default executor, bounded by a timeout. The
refresh function receives a threading.Event that is set when the tick
times out, so the refresh can stop before publishing. A failed or
timed-out tick is logged and the loop waits for the next one; there is
no immediate retry.
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 600  # seconds
DEFAULT_REFRESH_TIMEOUT = 300  # seconds


class RefreshScheduler:
    """
    Periodically calls a refresh function.

    Example:
        scheduler = RefreshScheduler(catalog.refresh, interval=600)
        scheduler.start()        # inside a running event loop
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        refresh_func: Callable[[threading.Event], object],
        interval: float = DEFAULT_REFRESH_INTERVAL,
        timeout: float = DEFAULT_REFRESH_TIMEOUT,
        run_immediately: bool = True,
    ):
        """
        Args:
            refresh_func: Blocking refresh callable (run in an executor),
                called with a cancel event set on timeout
            interval: Seconds between ticks
            timeout: Upper bound for one refresh before it counts as failed
            run_immediately: Refresh once at start instead of after one interval
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.refresh_func = refresh_func
        self.interval = interval
        self.timeout = timeout
        self.run_immediately = run_immediately

        self.ticks = 0
        self.failures = 0
        self._should_stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the loop as a background task on the running event loop."""
        if self.running:
            return self._task
        self._should_stop = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        return self._task

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it."""
        if self._task is None:
            return
        self._should_stop.set()
        try:
            await self._task
        finally:
            self._task = None

    async def run_once(self) -> bool:
        """
        Run one refresh tick.

        Returns:
            True if the refresh succeeded
        """
        self.ticks += 1
        loop = asyncio.get_running_loop()
        cancel = threading.Event()
        try:
            await asyncio.wait_for(
                loop.run_in_executor(None, self.refresh_func, cancel),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            cancel.set()
            self.failures += 1
            logger.error(f"Scheduled refresh timed out after {self.timeout}s")
            return False
        except Exception:
            self.failures += 1
            logger.exception("Scheduled data refresh failed")
            return False

        logger.info("Scheduled data refresh completed")
        return True

    async def _run_loop(self) -> None:
        if self.run_immediately:
            await self.run_once()

        while not self._should_stop.is_set():
            try:
                await asyncio.wait_for(self._should_stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass  # Interval elapsed
            else:
                break

            logger.info("Running scheduled data refresh...")
            await self.run_once()
