import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", 2.0))

# Set to "false" to run memory-only (no message history across restarts)
PERSISTENCE_ENABLED = os.getenv("PERSISTENCE_ENABLED", "true").lower() not in ("0", "false", "no")

GRACE_PERIOD_SECONDS = float(os.getenv("GRACE_PERIOD_SECONDS", 5))  # before announcing user left
ROOM_CLEANUP_INTERVAL_SECONDS = float(os.getenv("ROOM_CLEANUP_INTERVAL_SECONDS", 3600))
ROOM_INACTIVE_TIMEOUT_SECONDS = float(os.getenv("ROOM_INACTIVE_TIMEOUT_SECONDS", 3600))
MESSAGE_TTL_SECONDS = int(os.getenv("MESSAGE_TTL_SECONDS", 7 * 24 * 60 * 60))
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", 7 * 24 * 60 * 60))
MAX_MESSAGES_LIMIT = int(os.getenv("MAX_MESSAGES_LIMIT", 100))

ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]

# A stalled socket must not hold its room lock past this
SEND_TIMEOUT_SECONDS = float(os.getenv("SEND_TIMEOUT_SECONDS", 5))

SYSTEM_SENDER_ID = "system"
SYSTEM_SENDER_NAME = "System"
DEFAULT_USER_NAME = "Anonymous"
