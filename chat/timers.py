import asyncio
from typing import Awaitable, Callable, Optional, Set

from logging_config import get_logger

logger = get_logger(__name__)


class Timer:
    """Handle for a delayed coroutine scheduled through TimerService.

    Cancelling before the delay elapses guarantees the callback never runs.
    Once the callback has started, cancel() only marks the handle; callbacks
    that must not act on stale state re-check their own preconditions.
    """

    def __init__(self, service: "TimerService", name: str):
        self.name = name
        self._service = service
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._task is not None

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        if self._task is None:
            self._service._timers.discard(self)
        logger.debug(f"Timer {self.name} cancelled")


class TimerService:
    def __init__(self):
        self._timers: Set[Timer] = set()

    @property
    def pending(self) -> int:
        return len(self._timers)

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]], name: str = "timer") -> Timer:
        loop = asyncio.get_running_loop()
        timer = Timer(self, name)
        timer._handle = loop.call_later(delay, self._fire, timer, callback)
        self._timers.add(timer)
        logger.debug(f"Timer {name} armed for {delay} seconds")
        return timer

    def _fire(self, timer: Timer, callback: Callable[[], Awaitable[None]]) -> None:
        if timer.cancelled:
            return
        timer._task = asyncio.get_running_loop().create_task(self._run(timer, callback))

    async def _run(self, timer: Timer, callback: Callable[[], Awaitable[None]]) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            logger.debug(f"Timer {timer.name} task cancelled")
            raise
        except Exception as e:
            logger.error(f"Timer {timer.name} callback failed: {e}", exc_info=True)
        finally:
            self._timers.discard(timer)

    def cancel_all(self) -> None:
        for timer in list(self._timers):
            timer.cancel()
            if timer._task is not None and not timer._task.done():
                timer._task.cancel()
        self._timers.clear()
