import json
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from errors import MalformedJoinPayload


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class PresenceStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"


class Attachment(BaseModel):
    url: str
    name: str = ""
    sizeBytes: int = Field(0, validation_alias=AliasChoices("sizeBytes", "size"))
    mimeType: str = ""


class Message(BaseModel):
    """A chat message as stored in history and broadcast as `new-message`.

    `id` and `timestamp` are filled in by the message log on append.
    """
    id: Optional[str] = None
    roomCode: str
    senderId: str
    sender: str
    content: str = ""
    kind: MessageKind = MessageKind.TEXT
    attachment: Optional[Attachment] = None
    timestamp: Optional[datetime] = None


class UserSummary(BaseModel):
    id: str
    name: str
    status: PresenceStatus = PresenceStatus.ONLINE
    avatar: Optional[str] = None


# Inbound requests

class CreateRoomRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class RoomScopedRequest(BaseModel):
    roomCode: str

    @field_validator("roomCode")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class JoinRoomRequest(BaseModel):
    roomId: str
    name: Optional[str] = None
    userId: Optional[str] = None

    @field_validator("roomId")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        code = v.strip().upper()
        if not code:
            raise ValueError("room code is empty")
        return code

    @classmethod
    def decode(cls, data) -> "JoinRoomRequest":
        """Accept either a mapping or a JSON-encoded string."""
        if isinstance(data, (str, bytes)):
            try:
                data = json.loads(data)
            except ValueError as e:
                raise MalformedJoinPayload(f"undecodable join payload: {e}") from e
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedJoinPayload(f"invalid join payload: {e.error_count()} error(s)") from e


class SendMessageRequest(RoomScopedRequest):
    content: str = Field("", validation_alias=AliasChoices("content", "message"))
    userId: str
    name: str
    attachment: Optional[Attachment] = Field(None, validation_alias=AliasChoices("attachment", "file"))


class UpdateProfileRequest(RoomScopedRequest):
    avatar: Optional[str] = None
    status: Optional[PresenceStatus] = None


# Outbound events

class JoinedRoomResponse(BaseModel):
    code: str
    name: Optional[str] = None
    description: Optional[str] = None
    messages: list[Message]


class UserJoinedEvent(BaseModel):
    userCount: int
    user: UserSummary
    users: list[UserSummary]


class UserLeftEvent(BaseModel):
    userCount: int
    users: list[UserSummary]


class TypingUpdateEvent(BaseModel):
    typingUsers: list[str]


class UsersUpdateEvent(BaseModel):
    users: list[UserSummary]


# HTTP

class CreateRoomResponse(BaseModel):
    code: str


class RoomDetailsResponse(BaseModel):
    code: str
    name: Optional[str]
    description: Optional[str] = None
    userCount: int
    createdAt: Optional[datetime] = None
