"""
Debouncer — cancel-and-reschedule a single pending callback.

``schedule()`` re-arms one ``loop.call_later`` handle, so a burst of calls
collapses into a single trailing invocation.  Cancelling only ever affects a
callback that has not fired yet; once fired, the callback runs as a task and
is tracked until it completes.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger("estima.state")


class Debouncer:
    def __init__(self, delay_s: float, callback: Callable[[], Awaitable[None]]):
        self.delay_s = delay_s
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._inflight: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def running(self) -> bool:
        return bool(self._inflight)

    def schedule(self) -> None:
        """(Re)start the quiet-period timer.  Must be called from a running loop."""
        loop = asyncio.get_running_loop()
        self.cancel()
        self._handle = loop.call_later(self.delay_s, self._fire)

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.ensure_future(self._callback())
        self._inflight.add(task)
        task.add_done_callback(self._done)

    def _done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Debounced callback failed: {task.exception()!r}")

    async def wait_idle(self) -> None:
        """Wait for callbacks that have already fired."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def flush(self) -> None:
        """Run a pending callback now instead of at the end of its quiet period."""
        fire_now = self.cancel()
        await self.wait_idle()
        if fire_now:
            await self._callback()
