import asyncio
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from config import ChatConfig
from errors import RoomNotFound
from logging_config import get_logger
from schemas.rooms import Message, PresenceStatus, UserSummary

from chat.persistence import PersistenceSync
from chat.timers import Timer

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_room_name(code: str) -> str:
    return f"Room {code}"


@dataclass
class Participant:
    user_id: str
    handle: str
    name: str
    status: PresenceStatus = PresenceStatus.ONLINE
    avatar: Optional[str] = None
    joined_at: datetime = field(default_factory=utcnow)

    def summary(self) -> UserSummary:
        return UserSummary(id=self.user_id, name=self.name, status=self.status, avatar=self.avatar)


@dataclass
class Room:
    code: str
    name: str
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_active: float = 0.0
    messages: List[Message] = field(default_factory=list)
    # connection handle -> participant
    roster: Dict[str, Participant] = field(default_factory=dict)
    # connection handle -> monotonic time typing started; keys are the typing set
    typing: Dict[str, float] = field(default_factory=dict)
    # user id -> joinedAt, for users on the roster or inside their grace period
    known_users: Dict[str, datetime] = field(default_factory=dict)
    grace_timers: Dict[str, Timer] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def user_count(self) -> int:
        return len(self.roster)

    def find_by_user(self, user_id: str) -> Optional[Participant]:
        for participant in self.roster.values():
            if participant.user_id == user_id:
                return participant
        return None

    def roster_summaries(self) -> List[UserSummary]:
        return [p.summary() for p in self.roster.values()]


class RoomRegistry:
    """Process-wide map from room code to in-memory Room.

    Rooms absent from memory may still exist durably; resolve() restores them.
    """

    def __init__(self, config: ChatConfig, persistence: Optional[PersistenceSync] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.persistence = persistence or PersistenceSync()
        self.clock = clock
        self._rooms: Dict[str, Room] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, code: str) -> bool:
        return code in self._rooms

    def get(self, code: str) -> Optional[Room]:
        return self._rooms.get(code)

    def codes(self) -> List[str]:
        return list(self._rooms)

    def generate_code(self) -> str:
        while True:
            code = secrets.token_hex(3).upper()
            if code not in self._rooms:
                return code
            logger.debug(f"Room code collision on {code}, retrying")

    def create(self, name: Optional[str] = None, description: Optional[str] = None) -> str:
        code = self.generate_code()
        room = Room(
            code=code,
            name=name or default_room_name(code),
            description=description,
            last_active=self.clock(),
        )
        self._rooms[code] = room
        self.persistence.submit("upsert_room", code, room.name, description)
        logger.info(f"Room {code} created: name={room.name}")
        return code

    async def resolve(self, code: str) -> Room:
        room = self._rooms.get(code)
        if room is not None:
            return room

        record = await self.persistence.call("get_room", code)
        if not record:
            raise RoomNotFound(code)
        messages = await self.persistence.call("list_messages", code, self.config.max_messages, default=[])

        # A concurrent resolve may have restored it while we waited on the store
        room = self._rooms.get(code)
        if room is not None:
            return room

        room = Room(
            code=code,
            name=record.get("name") or default_room_name(code),
            description=record.get("description") or None,
            created_at=_parse_timestamp(record.get("created_at")),
            last_active=self.clock(),
            messages=list(messages)[-self.config.max_messages:],
        )
        self._rooms[code] = room
        self.persistence.submit("upsert_room", code)
        logger.info(f"Room {code} restored from persistence with {len(room.messages)} messages")
        return room

    def touch(self, code: str) -> None:
        room = self._rooms.get(code)
        if room is not None:
            room.last_active = max(room.last_active, self.clock())

    def evict_if_idle(self, code: str) -> bool:
        room = self._rooms.get(code)
        if room is None or room.roster:
            return False
        idle_for = self.clock() - room.last_active
        if idle_for <= self.config.inactive_timeout_s:
            return False
        for timer in room.grace_timers.values():
            timer.cancel()
        room.grace_timers.clear()
        del self._rooms[code]
        logger.info(f"Evicted inactive room {code} from memory (idle {idle_for:.0f}s)")
        return True


def _parse_timestamp(value: Optional[str]) -> datetime:
    if value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return utcnow()
