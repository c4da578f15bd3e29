import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .config import settings

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class Countdown:
    """Polling countdown driven by the running asyncio loop.

    Remaining time is re-read from the clock on every tick so the display
    can refresh continuously; ``on_expire`` is awaited at most once.
    """

    def __init__(
        self,
        end_at_ms: int,
        on_expire: Callable[[], Awaitable],
        interval: float = settings.TIMER_INTERVAL_SECONDS,
        clock: Callable[[], int] = now_ms,
        on_tick: Optional[Callable[[int], None]] = None,
    ):
        self.end_at_ms = end_at_ms
        self.on_expire = on_expire
        self.interval = interval
        self.clock = clock
        self.on_tick = on_tick
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self._expired = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    def remaining_ms(self) -> int:
        return max(0, self.end_at_ms - self.clock())

    def tick(self) -> int:
        remaining = self.remaining_ms()
        if self.on_tick is not None:
            self.on_tick(remaining)
        return remaining

    def start(self) -> bool:
        """Schedule polling on the running loop; False when there is none."""
        if self._task is not None or self._cancelled:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; countdown must be polled manually")
            return False
        self._task = loop.create_task(self._run())
        return True

    async def _run(self) -> None:
        while not self._cancelled:
            remaining = self.tick()
            if remaining <= 0:
                if not self._expired:
                    self._expired = True
                    try:
                        await self.on_expire()
                    except Exception:
                        logger.error("Countdown expiry handler failed", exc_info=True)
                return
            await asyncio.sleep(min(self.interval, remaining / 1000))

    def cancel(self) -> None:
        """Stop further ticks.

        Never cancels the task it is called from, so an expiry handler
        that cancels its own countdown can still finish its work.
        """
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()
