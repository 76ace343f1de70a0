import asyncio
import json
import uuid
from typing import TYPE_CHECKING, Any, Dict, Optional, Set

from pydantic import BaseModel

from constants import SEND_TIMEOUT_SECONDS
from logging_config import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)


def to_payload(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [to_payload(item) for item in data]
    return data


def encode_frame(event: str, data: Any = None) -> str:
    return json.dumps({"event": event, "data": to_payload(data)})


class BroadcastTransport:
    """Delivers events to every connection subscribed to a room, or to one connection."""

    def subscribe(self, room_code: str, handle: str) -> None:
        raise NotImplementedError

    def unsubscribe(self, room_code: str, handle: str) -> None:
        raise NotImplementedError

    async def broadcast(self, room_code: str, event: str, data: Any = None, exclude: Optional[str] = None) -> None:
        raise NotImplementedError

    async def send(self, handle: str, event: str, data: Any = None) -> None:
        raise NotImplementedError


class WebSocketTransport(BroadcastTransport):
    def __init__(self, send_timeout: float = SEND_TIMEOUT_SECONDS):
        self.send_timeout = send_timeout
        # Format: {handle: websocket}
        self.connections: Dict[str, "WebSocket"] = {}
        # Format: {room_code: {handle, ...}}
        self.room_subscribers: Dict[str, Set[str]] = {}

    def connect(self, websocket: "WebSocket") -> str:
        handle = uuid.uuid4().hex
        self.connections[handle] = websocket
        logger.debug(f"Registered connection {handle} (total: {len(self.connections)})")
        return handle

    def disconnect(self, handle: str) -> None:
        self.connections.pop(handle, None)
        for room_code in [code for code, handles in self.room_subscribers.items() if handle in handles]:
            self.unsubscribe(room_code, handle)
        logger.debug(f"Unregistered connection {handle} (total: {len(self.connections)})")

    def subscribe(self, room_code: str, handle: str) -> None:
        self.room_subscribers.setdefault(room_code, set()).add(handle)

    def unsubscribe(self, room_code: str, handle: str) -> None:
        handles = self.room_subscribers.get(room_code)
        if handles is None:
            return
        handles.discard(handle)
        if not handles:
            del self.room_subscribers[room_code]

    async def broadcast(self, room_code: str, event: str, data: Any = None, exclude: Optional[str] = None) -> None:
        handles = [h for h in self.room_subscribers.get(room_code, ()) if h != exclude]
        if not handles:
            return
        frame = encode_frame(event, data)
        await asyncio.gather(*(self._send_frame(h, frame) for h in handles), return_exceptions=True)
        logger.debug(f"Broadcasted {event} to {len(handles)} connections in room {room_code}")

    async def send(self, handle: str, event: str, data: Any = None) -> None:
        await self._send_frame(handle, encode_frame(event, data))

    async def _send_frame(self, handle: str, frame: str) -> None:
        websocket = self.connections.get(handle)
        if websocket is None:
            return
        try:
            await asyncio.wait_for(websocket.send_text(frame), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out after {self.send_timeout}s sending to connection {handle}")
        except Exception as e:
            # Closed sockets are cleaned up by their own receive loop
            logger.warning(f"Error sending to connection {handle}: {e}")
