import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Optional, Set

from logging_config import get_logger

if TYPE_CHECKING:
    from backend import RedisBackend

logger = get_logger(__name__)


class PersistenceSync:
    """Runs persistence gateway calls off the event loop.

    A single worker thread keeps durable writes in submission order. With no
    gateway configured every call returns its default immediately.
    """

    def __init__(self, gateway: Optional["RedisBackend"] = None):
        self.gateway = gateway
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="persistence") if gateway else None
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self.gateway is not None

    async def call(self, method: str, *args, default: Any = None) -> Any:
        if self.gateway is None:
            return default
        fn = functools.partial(getattr(self.gateway, method), *args)
        try:
            return await asyncio.get_running_loop().run_in_executor(self._executor, fn)
        except Exception as e:
            logger.warning(f"Persistence call {method} failed, continuing memory-only: {e}")
            return default

    def submit(self, method: str, *args) -> None:
        """Fire-and-forget variant of call()."""
        if self.gateway is None:
            return
        task = asyncio.get_running_loop().create_task(self.call(method, *args, default=False))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
