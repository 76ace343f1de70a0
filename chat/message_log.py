import secrets
from typing import Optional

from config import ChatConfig
from constants import SYSTEM_SENDER_ID, SYSTEM_SENDER_NAME
from events import NEW_MESSAGE
from logging_config import get_logger
from schemas.rooms import Attachment, Message, MessageKind, SendMessageRequest

from chat.persistence import PersistenceSync
from chat.registry import Room, utcnow
from chat.transport import BroadcastTransport

logger = get_logger(__name__)


def classify(attachment: Optional[Attachment]) -> MessageKind:
    """Kind of a user message. SYSTEM is never inferred from user content."""
    if attachment is None:
        return MessageKind.TEXT
    if attachment.mimeType.lower().startswith("image/"):
        return MessageKind.IMAGE
    return MessageKind.FILE


def new_message_id() -> str:
    return secrets.token_hex(8)


class MessageLog:
    """Ordered per-room history, mirrored to the persistence gateway.

    In-memory history is authoritative for the life of the process and is
    capped at the replay window when a message is appended.
    """

    def __init__(self, transport: BroadcastTransport, persistence: PersistenceSync, config: ChatConfig):
        self.transport = transport
        self.persistence = persistence
        self.max_messages = config.max_messages

    async def append(self, room: Room, message: Message) -> Message:
        if message.id is None:
            message.id = new_message_id()
        if message.timestamp is None:
            message.timestamp = utcnow()
        message.roomCode = room.code

        room.messages.append(message)
        overflow = len(room.messages) - self.max_messages
        if overflow > 0:
            del room.messages[:overflow]

        self.persistence.submit("append_message", room.code, message)
        await self.transport.broadcast(room.code, NEW_MESSAGE, message)
        logger.debug(f"Appended {message.kind.value} message {message.id} to room {room.code}")
        return message

    async def post(self, room: Room, request: SendMessageRequest) -> Message:
        message = Message(
            roomCode=room.code,
            senderId=request.userId,
            sender=request.name,
            content=request.content,
            kind=classify(request.attachment),
            attachment=request.attachment,
        )
        return await self.append(room, message)

    async def append_system(self, room: Room, content: str) -> Message:
        message = Message(
            roomCode=room.code,
            senderId=SYSTEM_SENDER_ID,
            sender=SYSTEM_SENDER_NAME,
            content=content,
            kind=MessageKind.SYSTEM,
        )
        return await self.append(room, message)
