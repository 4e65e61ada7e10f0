"""
Trailing-edge debounce on the running asyncio loop.
One timer at most; every trigger inside the quiet period restarts it.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from sonos_relay.config.settings import settings

logger = logging.getLogger(__name__)


class Debouncer:
    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        delay: float = settings.VOLUME_DEBOUNCE_SECONDS,
    ):
        self._callback = callback
        self._delay = max(0.0, float(delay))
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        """(Re)start the quiet period."""
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def flush(self) -> None:
        """Run a pending callback now instead of waiting for the timer."""
        if self._handle is None:
            return
        self.cancel()
        await self._callback()

    async def wait(self) -> None:
        """Wait for the last fired callback to finish."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.ensure_future(self._callback())
        self._task.add_done_callback(self._report)

    @staticmethod
    def _report(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Debounced callback failed", exc_info=exc)
