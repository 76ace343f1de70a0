"""Room coordination service.

Inbound events are resolved to a room, applied under that room's lock, and
the results are re-emitted through the broadcast transport. Each room has
one asyncio.Lock; grace timers and reaper sweeps take the same lock.
"""
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Callable, Optional

from pydantic import ValidationError

from config import ChatConfig
from constants import DEFAULT_USER_NAME
from errors import ChatError
from events import (
    CREATE_ROOM,
    ERROR,
    GET_USERS,
    JOIN_ROOM,
    ROOM_CREATED,
    SEND_MESSAGE,
    TYPING_START,
    TYPING_STOP,
    UPDATE_PROFILE,
)
from logging_config import get_logger
from schemas.rooms import (
    CreateRoomRequest,
    JoinRoomRequest,
    RoomScopedRequest,
    SendMessageRequest,
    UpdateProfileRequest,
)

from chat.message_log import MessageLog
from chat.persistence import PersistenceSync
from chat.presence import PresenceTracker
from chat.reaper import Reaper
from chat.registry import Room, RoomRegistry
from chat.timers import TimerService
from chat.transport import BroadcastTransport
from chat.typing_indicator import TypingAggregator

if TYPE_CHECKING:
    from backend import RedisBackend

logger = get_logger(__name__)


class ChatService:
    def __init__(self, transport: BroadcastTransport, gateway: Optional["RedisBackend"] = None,
                 config: Optional[ChatConfig] = None, clock: Callable[[], float] = time.time):
        self.config = config or ChatConfig()
        self.transport = transport
        self.timers = TimerService()
        self.persistence = PersistenceSync(gateway)
        self.registry = RoomRegistry(self.config, self.persistence, clock=clock)
        self.typing = TypingAggregator(transport)
        self.message_log = MessageLog(transport, self.persistence, self.config)
        self.presence = PresenceTracker(
            self.registry, transport, self.message_log, self.typing, self.timers, self.config
        )
        self.reaper = Reaper(self.registry, self.config)
        self._handlers = {
            CREATE_ROOM: self.create_room,
            JOIN_ROOM: self.join_room,
            SEND_MESSAGE: self.send_message,
            TYPING_START: self.typing_start,
            TYPING_STOP: self.typing_stop,
            UPDATE_PROFILE: self.update_profile,
            GET_USERS: self.get_users,
        }

    async def start(self) -> None:
        self.reaper.start()

    async def stop(self) -> None:
        await self.reaper.stop()
        self.timers.cancel_all()
        await self.persistence.drain()
        self.persistence.shutdown()
        logger.info("Chat service stopped")

    async def dispatch(self, handle: str, event: str, data=None) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning(f"Ignoring unknown event {event!r} from connection {handle}")
            return
        logger.debug(f"Dispatching {event} from connection {handle}")
        try:
            await handler(handle, data)
        except ChatError as e:
            logger.info(f"{event} from connection {handle} rejected: {e}")
            await self.transport.send(handle, ERROR, e.public_message)
        except ValidationError as e:
            logger.warning(f"Dropping malformed {event} payload from connection {handle}: {e.error_count()} error(s)")

    @asynccontextmanager
    async def _locked_room(self, code: str, restore: bool = False) -> AsyncIterator[Optional[Room]]:
        """Yield the room with its lock held, or None if it is not in memory.

        Re-checks after acquiring the lock in case the room was evicted while waiting.
        """
        while True:
            room = await self.registry.resolve(code) if restore else self.registry.get(code)
            if room is None:
                yield None
                return
            async with room.lock:
                if self.registry.get(code) is room:
                    yield room
                    return

    async def create_room(self, handle: str, data=None) -> str:
        request = CreateRoomRequest.model_validate(data if isinstance(data, dict) else {})
        code = self.registry.create(request.name, request.description)
        await self.transport.send(handle, ROOM_CREATED, code)
        return code

    async def join_room(self, handle: str, data=None) -> None:
        request = JoinRoomRequest.decode(data)
        user_id = request.userId or handle
        name = (request.name or "").strip() or DEFAULT_USER_NAME
        async with self._locked_room(request.roomId, restore=True) as room:
            await self.presence.join(room, handle, user_id, name)

    async def send_message(self, handle: str, data=None) -> None:
        request = SendMessageRequest.model_validate(data)
        async with self._locked_room(request.roomCode) as room:
            if room is None:
                logger.debug(f"send-message for unknown room {request.roomCode} from {handle}")
                return
            self.registry.touch(room.code)
            await self.typing.stop(room, handle, notify_self=True)
            await self.message_log.post(room, request)

    async def typing_start(self, handle: str, data=None) -> None:
        request = RoomScopedRequest.model_validate(data)
        async with self._locked_room(request.roomCode) as room:
            if room is None:
                return
            if await self.typing.start(room, handle):
                self.registry.touch(room.code)

    async def typing_stop(self, handle: str, data=None) -> None:
        request = RoomScopedRequest.model_validate(data)
        async with self._locked_room(request.roomCode) as room:
            if room is None:
                return
            if await self.typing.stop(room, handle):
                self.registry.touch(room.code)

    async def update_profile(self, handle: str, data=None) -> None:
        request = UpdateProfileRequest.model_validate(data)
        async with self._locked_room(request.roomCode) as room:
            if room is None:
                return
            if not await self.presence.update_profile(room, handle, request.avatar, request.status):
                logger.debug(f"update-profile from {handle} ignored, not joined to room {room.code}")

    async def get_users(self, handle: str, data=None) -> None:
        request = RoomScopedRequest.model_validate(data)
        async with self._locked_room(request.roomCode) as room:
            if room is None:
                return
            await self.presence.send_roster(room, handle)

    async def handle_disconnect(self, handle: str) -> None:
        """Transport reported the connection closed; remove it from every room it joined."""
        for code in self.registry.codes():
            room = self.registry.get(code)
            if room is None or handle not in room.roster:
                continue
            async with self._locked_room(code) as room:
                if room is not None:
                    await self.presence.disconnect(room, handle)
        logger.debug(f"Connection {handle} disconnected")
