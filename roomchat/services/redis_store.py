# roomchat/services/redis_store.py
import functools
import json
import logging
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from roomchat.core.config import settings
from roomchat.core.errors import PersistenceUnavailableError
from roomchat.models.models import ChatMessage, Room
from roomchat.services.message_store import MessageStore, prepare_for_storage

logger = logging.getLogger(__name__)


def _redis_call(func):
    """Map client errors (and a missing client) to PersistenceUnavailableError."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        if self.client is None:
            raise PersistenceUnavailableError("Redis client is not connected")
        try:
            return await func(self, *args, **kwargs)
        except RedisError as e:
            raise PersistenceUnavailableError(f"Redis error: {e}") from e

    return wrapper


class RedisMessageStore(MessageStore):
    """
    MessageStore backed by Redis.

    Layout (all keys under ``prefix``):
        {prefix}:message:next_id          INCR counter for durable ids
        {prefix}:message:<id>             JSON encoded ChatMessage
        {prefix}:room:<name>:messages     list of message ids, oldest first
        {prefix}:room:<name>:active       hash connection_id -> username
        {prefix}:rooms                    hash room name -> JSON encoded Room
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        max_messages_per_room: int = 1000,
        prefix: str = "roomchat",
        url: Optional[str] = None,
    ):
        super().__init__(max_messages_per_room)
        self.host = host
        self.port = port
        self.prefix = prefix
        self.url = url
        self.client = None
        self.access_key = settings.REDIS_ACCESS_KEY

    async def connect(self):
        """Establish async connection to Redis."""
        if self.url is None:
            scheme = "rediss" if settings.REDIS_SSL else "redis"
            auth = f":{self.access_key}@" if self.access_key else ""
            self.url = f"{scheme}://{auth}{self.host}:{self.port}"
        self.client = redis.from_url(self.url, decode_responses=True)
        await self.client.ping()
        logger.info("✓ Connected to Redis at %s:%s", self.host, self.port)

    @property
    def available(self) -> bool:
        return self.client is not None

    def _message_key(self, message_id: str) -> str:
        return f"{self.prefix}:message:{message_id}"

    def _room_messages_key(self, room: str) -> str:
        return f"{self.prefix}:room:{room}:messages"

    def _active_key(self, room: str) -> str:
        return f"{self.prefix}:room:{room}:active"

    @property
    def _rooms_key(self) -> str:
        return f"{self.prefix}:rooms"

    # -- messages ------------------------------------------------------------

    @_redis_call
    async def save_message(self, message: ChatMessage) -> str:
        prepared = prepare_for_storage(message)
        message_id = str(await self.client.incr(f"{self.prefix}:message:next_id"))
        stored = prepared.model_copy(update={"id": message_id})
        await self.client.set(self._message_key(message_id), stored.model_dump_json())
        await self.client.rpush(self._room_messages_key(stored.room), message_id)
        logger.debug("Message saved: %s in %s", stored.username, stored.room)
        await self.cleanup_old_messages(stored.room)
        return message_id

    @_redis_call
    async def cleanup_old_messages(self, room: str) -> int:
        key = self._room_messages_key(room)
        excess = await self.client.llen(key) - self.max_messages_per_room
        if excess <= 0:
            return 0
        old_ids = await self.client.lrange(key, 0, excess - 1)
        if old_ids:
            await self.client.delete(*[self._message_key(i) for i in old_ids])
        await self.client.ltrim(key, excess, -1)
        logger.info("Cleaned up %d old messages from %s", excess, room)
        return excess

    @_redis_call
    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        raw = await self.client.get(self._message_key(message_id))
        return ChatMessage.model_validate_json(raw) if raw else None

    @_redis_call
    async def get_recent_messages(self, room: str, limit: int = 50) -> List[ChatMessage]:
        if limit <= 0:
            return []
        ids = await self.client.lrange(self._room_messages_key(room), -limit, -1)
        if not ids:
            return []
        raws = await self.client.mget([self._message_key(i) for i in reversed(ids)])
        return [ChatMessage.model_validate_json(raw) for raw in raws if raw]

    @_redis_call
    async def get_message_count(self, room: str) -> int:
        return await self.client.llen(self._room_messages_key(room))

    @_redis_call
    async def delete_messages(self, room: str) -> int:
        key = self._room_messages_key(room)
        ids = await self.client.lrange(key, 0, -1)
        if ids:
            await self.client.delete(*[self._message_key(i) for i in ids])
        await self.client.delete(key)
        logger.info("Cleared %d messages from %s", len(ids), room)
        return len(ids)

    @_redis_call
    async def update_reactions(self, message_id: str, reactions: Dict[str, List[str]]) -> None:
        key = self._message_key(message_id)
        raw = await self.client.get(key)
        if not raw:
            return
        message = ChatMessage.model_validate_json(raw)
        message = message.model_copy(update={"reactions": reactions})
        await self.client.set(key, message.model_dump_json())

    # -- rooms -----------------------------------------------------------------

    @_redis_call
    async def get_room_by_name(self, name: str) -> Optional[Room]:
        raw = await self.client.hget(self._rooms_key, name.strip())
        return Room.model_validate_json(raw) if raw else None

    @_redis_call
    async def list_rooms(self) -> List[Room]:
        raws = await self.client.hvals(self._rooms_key)
        return [Room.model_validate_json(raw) for raw in raws]

    @_redis_call
    async def create_room(self, room: Room) -> None:
        await self.client.hset(self._rooms_key, room.name, room.model_dump_json())

    @_redis_call
    async def update_room(self, room: Room) -> None:
        await self.client.hset(self._rooms_key, room.name, room.model_dump_json())

    @_redis_call
    async def delete_room(self, name: str) -> None:
        await self.client.hdel(self._rooms_key, name)
        await self.client.delete(self._active_key(name))

    # -- durable presence mirror ----------------------------------------------

    @_redis_call
    async def add_user_to_room(self, room: str, connection_id: str, username: str) -> None:
        await self.client.hset(self._active_key(room), connection_id, username)

    @_redis_call
    async def remove_user_from_room(self, room: str, connection_id: str) -> None:
        await self.client.hdel(self._active_key(room), connection_id)

    @_redis_call
    async def active_users(self, room: str) -> List[str]:
        return list((await self.client.hgetall(self._active_key(room))).values())

    async def close(self):
        """Close connections."""
        if self.client:
            await self.client.aclose()
            self.client = None
        logger.info("Redis connection closed")
