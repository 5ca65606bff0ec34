"""
Debounced, single-flight execution of the update pipeline.

trigger() (re)arms a one-shot timer; only the surviving timer runs the
pipeline. If a run is still in flight when the timer fires, the request is
dropped, not queued. The next trigger produces a fresh emission anyway.
"""
import asyncio
from typing import Awaitable, Callable, Optional

from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_DEBOUNCE = 0.1


class UpdateScheduler:
    def __init__(self, pipeline: Callable[[], Awaitable[None]], debounce: float = DEFAULT_DEBOUNCE,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self._pipeline = pipeline
        self.debounce = debounce
        self._loop = loop or asyncio.get_running_loop()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._running: Optional[asyncio.Task] = None
        self._closed = False
        self.executions = 0
        self.dropped = 0

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def busy(self) -> bool:
        return self._running is not None and not self._running.done()

    def trigger(self) -> None:
        """Cancel any armed timer and arm a new one. Loop thread only."""
        if self._closed:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self.debounce, self._fire)

    def trigger_threadsafe(self) -> None:
        """trigger() for native callbacks arriving on foreign threads."""
        if self._closed or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self.trigger)

    def _fire(self) -> None:
        self._timer = None
        self.run_now()

    def run_now(self) -> bool:
        """Start a run immediately unless one is in flight. Returns False if dropped."""
        if self._closed:
            return False
        if self.busy:
            self.dropped += 1
            logger.debug("Update already running, dropping request")
            return False
        self.executions += 1
        self._running = self._loop.create_task(self._execute())
        return True

    async def _execute(self) -> None:
        try:
            await self._pipeline()
        except Exception:
            logger.exception("Update pipeline failed")

    async def wait_idle(self) -> None:
        """Wait for the in-flight run, if any."""
        if self._running is not None:
            await asyncio.shield(self._running)

    async def close(self) -> None:
        """Disarm the timer and let an in-flight run finish."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._running is not None and not self._running.done():
            await self._running
