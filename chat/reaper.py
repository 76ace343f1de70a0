import asyncio
from typing import List, Optional

from config import ChatConfig
from logging_config import get_logger

from chat.registry import RoomRegistry

logger = get_logger(__name__)


class Reaper:
    """Periodically evicts empty, long-inactive rooms from memory.

    Durable history is left alone; it expires under the store's own TTL.
    """

    def __init__(self, registry: RoomRegistry, config: ChatConfig):
        self.registry = registry
        self.interval = config.cleanup_interval_s
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> List[str]:
        evicted = []
        for code in self.registry.codes():
            room = self.registry.get(code)
            if room is None:
                continue
            try:
                async with room.lock:
                    if self.registry.evict_if_idle(code):
                        evicted.append(code)
            except Exception as e:
                logger.error(f"Error sweeping room {code}: {e}", exc_info=True)
        if evicted:
            logger.info(f"Reaper evicted {len(evicted)} inactive rooms, {len(self.registry)} left in memory")
        else:
            logger.debug(f"Reaper sweep found nothing to evict ({len(self.registry)} rooms in memory)")
        return evicted

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Reaper started, sweeping every {self.interval} seconds")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.sweep()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Reaper stopped")
