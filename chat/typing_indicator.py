import time
from typing import List, Optional

from events import TYPING_UPDATE
from logging_config import get_logger
from schemas.rooms import TypingUpdateEvent

from chat.registry import Room
from chat.transport import BroadcastTransport

logger = get_logger(__name__)


class TypingAggregator:
    """Tracks which connections of a room are typing.

    typing-start and typing-stop are not echoed back to the acting connection.
    Handles that no longer resolve through the roster are pruned, not listed.
    """

    def __init__(self, transport: BroadcastTransport):
        self.transport = transport

    async def start(self, room: Room, handle: str) -> bool:
        if handle not in room.roster:
            logger.debug(f"Ignoring typing-start from {handle}, not joined to room {room.code}")
            return False
        room.typing.setdefault(handle, time.monotonic())
        await self.broadcast(room, exclude=handle)
        return True

    async def stop(self, room: Room, handle: str, notify_self: bool = False) -> bool:
        """Broadcast only if the handle was typing; True if it was."""
        if room.typing.pop(handle, None) is None:
            return False
        await self.broadcast(room, exclude=None if notify_self else handle)
        return True

    def discard(self, room: Room, handle: str) -> bool:
        """Drop a handle without broadcasting; True if it was typing."""
        return room.typing.pop(handle, None) is not None

    def typing_names(self, room: Room) -> List[str]:
        for handle in [h for h in room.typing if h not in room.roster]:
            del room.typing[handle]
        return [room.roster[h].name for h in room.typing]

    async def broadcast(self, room: Room, exclude: Optional[str] = None) -> None:
        names = self.typing_names(room)
        await self.transport.broadcast(room.code, TYPING_UPDATE, TypingUpdateEvent(typingUsers=names), exclude=exclude)
