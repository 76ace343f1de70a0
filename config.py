from dataclasses import dataclass

from constants import (
    GRACE_PERIOD_SECONDS,
    MAX_MESSAGES_LIMIT,
    MESSAGE_TTL_SECONDS,
    ROOM_CLEANUP_INTERVAL_SECONDS,
    ROOM_INACTIVE_TIMEOUT_SECONDS,
    ROOM_TTL_SECONDS,
)


@dataclass(frozen=True)
class ChatConfig:
    grace_period_s: float = 5.0
    cleanup_interval_s: float = 3600.0
    inactive_timeout_s: float = 3600.0
    max_messages: int = 100
    message_ttl_s: int = 7 * 24 * 60 * 60
    room_ttl_s: int = 7 * 24 * 60 * 60

    @classmethod
    def from_env(cls) -> "ChatConfig":
        return cls(
            grace_period_s=GRACE_PERIOD_SECONDS,
            cleanup_interval_s=ROOM_CLEANUP_INTERVAL_SECONDS,
            inactive_timeout_s=ROOM_INACTIVE_TIMEOUT_SECONDS,
            max_messages=MAX_MESSAGES_LIMIT,
            message_ttl_s=MESSAGE_TTL_SECONDS,
            room_ttl_s=ROOM_TTL_SECONDS,
        )
