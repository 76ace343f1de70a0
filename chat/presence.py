"""Per-room roster and the reconnect grace period.

A participant session moves Joined -> Disconnected-Grace on transport
disconnect and back to Joined if the same user id joins again before the
grace timer fires. Otherwise the timer moves it to Left, which is the only
point a departure is announced. A later join by that user is a first join.
"""
from typing import Optional

from config import ChatConfig
from events import JOINED_ROOM, USER_JOINED, USER_LEFT, USERS_UPDATE
from logging_config import get_logger
from schemas.rooms import (
    JoinedRoomResponse,
    PresenceStatus,
    UserJoinedEvent,
    UserLeftEvent,
    UsersUpdateEvent,
)

from chat.message_log import MessageLog
from chat.registry import Participant, Room, RoomRegistry, utcnow
from chat.timers import Timer, TimerService
from chat.transport import BroadcastTransport
from chat.typing_indicator import TypingAggregator

logger = get_logger(__name__)


class PresenceTracker:
    def __init__(self, registry: RoomRegistry, transport: BroadcastTransport, message_log: MessageLog,
                 typing: TypingAggregator, timers: TimerService, config: ChatConfig):
        self.registry = registry
        self.transport = transport
        self.message_log = message_log
        self.typing = typing
        self.timers = timers
        self.grace_period = config.grace_period_s

    async def join(self, room: Room, handle: str, user_id: str, name: str) -> Participant:
        """Add a connection to the roster. Caller holds room.lock."""
        previous = room.roster.get(handle)
        if previous is not None and previous.user_id != user_id:
            # Same connection, new identity: the previous user leaves through the grace period
            await self.disconnect(room, handle)

        pending = room.grace_timers.pop(user_id, None)
        if pending is not None:
            pending.cancel()

        is_reconnect = user_id in room.known_users
        joined_at = room.known_users.get(user_id) or utcnow()

        # Reconnect race: the old connection has not reported its disconnect yet
        for old in [p for p in room.roster.values() if p.user_id == user_id and p.handle != handle]:
            del room.roster[old.handle]
            self.typing.discard(room, old.handle)
            self.transport.unsubscribe(room.code, old.handle)
            logger.debug(f"Replaced stale connection {old.handle} of user {user_id} in room {room.code}")

        participant = Participant(user_id=user_id, handle=handle, name=name, joined_at=joined_at)
        room.roster[handle] = participant
        room.known_users[user_id] = joined_at
        self.transport.subscribe(room.code, handle)
        self.registry.touch(room.code)

        await self.transport.send(handle, JOINED_ROOM, JoinedRoomResponse(
            code=room.code,
            name=room.name,
            description=room.description,
            messages=list(room.messages),
        ))
        await self.transport.broadcast(room.code, USER_JOINED, UserJoinedEvent(
            userCount=room.user_count,
            user=participant.summary(),
            users=room.roster_summaries(),
        ))
        if not is_reconnect:
            await self.message_log.append_system(room, f"{name} joined the room")

        logger.info(f"User {name} ({user_id}) {'reconnected to' if is_reconnect else 'joined'} room {room.code}")
        return participant

    async def disconnect(self, room: Room, handle: str) -> Optional[Participant]:
        """Remove a closed connection and arm the grace timer. Caller holds room.lock."""
        participant = room.roster.pop(handle, None)
        if participant is None:
            return None
        was_typing = self.typing.discard(room, handle)
        self.transport.unsubscribe(room.code, handle)
        self.registry.touch(room.code)

        await self.transport.broadcast(room.code, USERS_UPDATE, UsersUpdateEvent(users=room.roster_summaries()))
        if was_typing:
            await self.typing.broadcast(room)

        if room.find_by_user(participant.user_id) is None:
            self._arm_grace_timer(room, participant)
        if not room.roster:
            logger.info(f"Room {room.code} is now empty (kept in memory until idle)")
        return participant

    def _arm_grace_timer(self, room: Room, participant: Participant) -> None:
        previous = room.grace_timers.pop(participant.user_id, None)
        if previous is not None:
            previous.cancel()

        timer: Optional[Timer] = None

        async def expire():
            await self._expire(room.code, participant, timer)

        timer = self.timers.call_later(
            self.grace_period, expire, name=f"grace:{room.code}:{participant.user_id}"
        )
        room.grace_timers[participant.user_id] = timer

    async def _expire(self, code: str, participant: Participant, timer: Optional[Timer]) -> None:
        room = self.registry.get(code)
        if room is None:
            return
        async with room.lock:
            if room.grace_timers.get(participant.user_id) is not timer:
                # Cancelled by a reconnect that won the lock first
                return
            del room.grace_timers[participant.user_id]
            if room.find_by_user(participant.user_id) is not None:
                return

            room.known_users.pop(participant.user_id, None)
            self.registry.touch(code)
            await self.transport.broadcast(code, USER_LEFT, UserLeftEvent(
                userCount=room.user_count,
                users=room.roster_summaries(),
            ))
            await self.message_log.append_system(room, f"{participant.name} left the room")
        logger.info(f"User {participant.name} ({participant.user_id}) left room {code}")

    async def update_profile(self, room: Room, handle: str, avatar: Optional[str] = None,
                             status: Optional[PresenceStatus] = None) -> bool:
        participant = room.roster.get(handle)
        if participant is None:
            return False
        if avatar is not None:
            participant.avatar = avatar
        if status is not None:
            participant.status = status
        self.registry.touch(room.code)
        await self.transport.broadcast(room.code, USERS_UPDATE, UsersUpdateEvent(users=room.roster_summaries()))
        return True

    async def send_roster(self, room: Room, handle: str) -> None:
        await self.transport.send(handle, USERS_UPDATE, UsersUpdateEvent(users=room.roster_summaries()))
