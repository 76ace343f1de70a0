from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from chat.service import ChatService
from chat.transport import BroadcastTransport, to_payload
from config import ChatConfig
from schemas.rooms import Message


class RecordingTransport(BroadcastTransport):
    """Keeps what each connection would have received, in delivery order."""

    def __init__(self):
        self.subscribers: Dict[str, Set[str]] = {}
        self.inbox: Dict[str, List[Tuple[str, Any]]] = {}
        self.broadcasts: List[Tuple[str, str, Any, Optional[str]]] = []

    def subscribe(self, room_code, handle):
        self.subscribers.setdefault(room_code, set()).add(handle)

    def unsubscribe(self, room_code, handle):
        self.subscribers.get(room_code, set()).discard(handle)

    async def broadcast(self, room_code, event, data=None, exclude=None):
        payload = to_payload(data)
        self.broadcasts.append((room_code, event, payload, exclude))
        for handle in sorted(self.subscribers.get(room_code, ())):
            if handle != exclude:
                self.inbox.setdefault(handle, []).append((event, payload))

    async def send(self, handle, event, data=None):
        self.inbox.setdefault(handle, []).append((event, to_payload(data)))

    def received(self, handle: str, event: Optional[str] = None) -> List[Any]:
        return [payload for name, payload in self.inbox.get(handle, []) if event is None or name == event]

    def events(self, handle: str) -> List[str]:
        return [name for name, _ in self.inbox.get(handle, [])]


class FakeGateway:
    """Stands in for RedisBackend; `available = False` mimics a store that is down."""

    def __init__(self):
        self.available = True
        self.rooms: Dict[str, dict] = {}
        self.messages: Dict[str, List[Message]] = {}
        self.calls: List[str] = []

    def upsert_room(self, code, name=None, description=None):
        self.calls.append("upsert_room")
        if not self.available:
            return False
        record = self.rooms.setdefault(code, {"code": code, "created_at": "2026-01-01T00:00:00+00:00"})
        if name:
            record["name"] = name
        if description:
            record["description"] = description
        return True

    def get_room(self, code):
        self.calls.append("get_room")
        if not self.available:
            return None
        return self.rooms.get(code)

    def room_exists(self, code):
        return self.get_room(code) is not None

    def append_message(self, code, message):
        self.calls.append("append_message")
        if not self.available:
            return False
        self.messages.setdefault(code, []).append(message)
        return True

    def list_messages(self, code, limit):
        self.calls.append("list_messages")
        if not self.available:
            return []
        return list(self.messages.get(code, []))[-limit:]

    def ping(self):
        return self.available


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


GRACE = 0.05


def make_config(**overrides) -> ChatConfig:
    values = dict(grace_period_s=GRACE, cleanup_interval_s=3600.0, inactive_timeout_s=3600.0, max_messages=100)
    values.update(overrides)
    return ChatConfig(**values)


def make_service(gateway=None, clock=None, **overrides) -> Tuple[ChatService, RecordingTransport]:
    transport = RecordingTransport()
    kwargs = {"clock": clock} if clock is not None else {}
    service = ChatService(transport, gateway=gateway, config=make_config(**overrides), **kwargs)
    return service, transport


def system_messages(service: ChatService, code: str) -> List[str]:
    return [m.content for m in service.registry.get(code).messages if m.kind.value == "system"]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def clock():
    return FakeClock()
