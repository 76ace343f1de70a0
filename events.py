# Event names carried in websocket frames: {"event": <name>, "data": <payload>}

# connection -> server
CREATE_ROOM = "create-room"
JOIN_ROOM = "join-room"
SEND_MESSAGE = "send-message"
TYPING_START = "typing-start"
TYPING_STOP = "typing-stop"
UPDATE_PROFILE = "update-profile"
GET_USERS = "get-users"

# server -> connection(s)
ROOM_CREATED = "room-created"  # direct reply, data is the room code
JOINED_ROOM = "joined-room"  # direct reply
NEW_MESSAGE = "new-message"
USER_JOINED = "user-joined"
USER_LEFT = "user-left"
TYPING_UPDATE = "typing-update"
USERS_UPDATE = "users-update"
ERROR = "error"  # direct reply, data is a human-readable string
