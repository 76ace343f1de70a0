from datetime import datetime, timezone
from typing import Optional

import redis
from pydantic import ValidationError

from config import ChatConfig
from constants import PERSISTENCE_ENABLED, REDIS_HOST, REDIS_PASSWORD, REDIS_PORT, REDIS_SOCKET_TIMEOUT
from logging_config import get_logger
from redis_keys import REDIS_MESSAGES_KEY, REDIS_META_KEY
from schemas.rooms import Message

logger = get_logger(__name__)


class RedisBackend:
    """Durable room and message store with TTL-based expiry.

    Every method catches redis errors (including timeouts) and returns a
    "not available" result: False, None or an empty list.
    """

    def __init__(self, client: redis.Redis, config: Optional[ChatConfig] = None):
        config = config or ChatConfig()
        self.redis_client = client
        self.room_ttl = config.room_ttl_s
        self.message_ttl = config.message_ttl_s
        self.max_messages = config.max_messages

    @classmethod
    def from_env(cls, config: ChatConfig) -> "RedisBackend":
        client = redis.Redis(
            host=REDIS_HOST,
            port=REDIS_PORT,
            password=REDIS_PASSWORD,
            decode_responses=True,
            socket_timeout=REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=REDIS_SOCKET_TIMEOUT,
        )
        backend = cls(client, config)
        if backend.ping():
            logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        else:
            logger.warning(f"Redis at {REDIS_HOST}:{REDIS_PORT} is not reachable, message history will not persist until it is")
        return backend

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.debug(f"Redis ping failed: {e}")
            return False

    def upsert_room(self, code: str, name: Optional[str] = None, description: Optional[str] = None) -> bool:
        key = REDIS_META_KEY.format(code=code)
        now = datetime.now(timezone.utc).isoformat()
        fields = {"last_active": now}
        if name:
            fields["name"] = name
        if description:
            fields["description"] = description
        try:
            pipe = self.redis_client.pipeline()
            pipe.hsetnx(key, "code", code)
            pipe.hsetnx(key, "created_at", now)
            pipe.hset(key, mapping=fields)
            pipe.expire(key, self.room_ttl)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Persistence unavailable, room {code} not upserted: {e}")
            return False
        logger.debug(f"Room {code} upserted with TTL {self.room_ttl} seconds")
        return True

    def get_room(self, code: str) -> Optional[dict]:
        key = REDIS_META_KEY.format(code=code)
        try:
            room_data = self.redis_client.hgetall(key)
        except redis.RedisError as e:
            logger.warning(f"Persistence unavailable, could not fetch room {code}: {e}")
            return None
        if not room_data:
            logger.debug(f"Room {code} not found in Redis")
            return None
        return room_data

    def room_exists(self, code: str) -> bool:
        return self.get_room(code) is not None

    def append_message(self, code: str, message: Message) -> bool:
        messages_key = REDIS_MESSAGES_KEY.format(code=code)
        meta_key = REDIS_META_KEY.format(code=code)
        try:
            pipe = self.redis_client.pipeline()
            pipe.rpush(messages_key, message.model_dump_json())
            pipe.ltrim(messages_key, -self.max_messages, -1)
            pipe.expire(messages_key, self.message_ttl)
            pipe.hset(meta_key, "last_active", datetime.now(timezone.utc).isoformat())
            pipe.expire(meta_key, self.room_ttl)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Persistence unavailable, message {message.id} in room {code} not saved: {e}")
            return False
        return True

    def list_messages(self, code: str, limit: int) -> list[Message]:
        """Most recent `limit` messages of a room, oldest first."""
        if limit <= 0:
            return []
        key = REDIS_MESSAGES_KEY.format(code=code)
        try:
            raw = self.redis_client.lrange(key, -limit, -1)
        except redis.RedisError as e:
            logger.warning(f"Persistence unavailable, could not load messages for room {code}: {e}")
            return []
        messages = []
        for item in raw:
            try:
                messages.append(Message.model_validate_json(item))
            except ValidationError as e:
                logger.debug(f"Skipping undecodable message in room {code}: {e}")
        return messages


def create_backend(config: ChatConfig) -> Optional[RedisBackend]:
    if not PERSISTENCE_ENABLED:
        logger.warning("Persistence disabled, message history will not survive restarts")
        return None
    return RedisBackend.from_env(config)
