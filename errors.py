class ChatError(Exception):
    """Base class for errors surfaced to a connection as an `error` event."""

    public_message = "Something went wrong"


class RoomNotFound(ChatError):
    public_message = "Room not found"

    def __init__(self, code: str):
        super().__init__(f"Room {code!r} not found")
        self.code = code


class MalformedPayload(ChatError):
    public_message = "Invalid request"


class MalformedJoinPayload(MalformedPayload):
    # Clients only understand "Room not found" for a failed join
    public_message = "Room not found"
