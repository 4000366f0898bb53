# roomchat/services/message_store.py

from __future__ import annotations

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from roomchat.models.models import ChatMessage, Room, utc_now_iso

logger = logging.getLogger(__name__)

MAX_USERNAME_LENGTH = 50
MAX_STORED_TEXT_LENGTH = 500

# ============================================================================
# PERSISTENCE COLLABORATOR INTERFACE
# ============================================================================

class MessageStore(ABC):
    """
    Durable home for messages and room metadata.

    The broker treats every call as best-effort: a store that raises or is
    unavailable degrades the broker to memory-only behaviour, it never blocks
    delivery to connected clients.

    Ordering contract:
        get_recent_messages() returns newest first; callers reverse it.

    Cleanup contract:
        After each successful save the room is trimmed back to
        ``max_messages_per_room`` by deleting its oldest messages.
    """

    def __init__(self, max_messages_per_room: int = 1000) -> None:
        self.max_messages_per_room = max_messages_per_room

    @property
    def available(self) -> bool:
        return True

    # -- messages ------------------------------------------------------------

    @abstractmethod
    async def save_message(self, message: ChatMessage) -> str:
        """Store ``message`` and return its durable id."""

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[ChatMessage]: ...

    @abstractmethod
    async def get_recent_messages(self, room: str, limit: int = 50) -> List[ChatMessage]: ...

    @abstractmethod
    async def get_message_count(self, room: str) -> int: ...

    @abstractmethod
    async def delete_messages(self, room: str) -> int: ...

    @abstractmethod
    async def update_reactions(self, message_id: str, reactions: Dict[str, List[str]]) -> None: ...

    # -- rooms -----------------------------------------------------------------

    @abstractmethod
    async def get_room_by_name(self, name: str) -> Optional[Room]: ...

    @abstractmethod
    async def list_rooms(self) -> List[Room]: ...

    @abstractmethod
    async def create_room(self, room: Room) -> None: ...

    @abstractmethod
    async def update_room(self, room: Room) -> None: ...

    @abstractmethod
    async def delete_room(self, name: str) -> None: ...

    # -- durable presence mirror ----------------------------------------------

    @abstractmethod
    async def add_user_to_room(self, room: str, connection_id: str, username: str) -> None: ...

    @abstractmethod
    async def remove_user_from_room(self, room: str, connection_id: str) -> None: ...

    async def verify_password(self, room_name: str, plaintext: str) -> bool:
        """True when the room has no password or ``plaintext`` matches its digest."""
        room = await self.get_room_by_name(room_name)
        if room is None:
            return False
        if not room.password_hash:
            return True
        digest = hashlib.sha256((plaintext or "").encode("utf-8")).hexdigest()
        return hmac.compare_digest(digest, room.password_hash)

    async def close(self) -> None:
        return None


def prepare_for_storage(message: ChatMessage) -> ChatMessage:
    """
    Apply the stored-field rules: username and text trimmed, non-empty and
    within their caps. Raises ValueError otherwise.
    """
    username = (message.username or "").strip()
    text = (message.text or "").strip()
    if not username or not text:
        raise ValueError("Username and message are required")
    if len(username) > MAX_USERNAME_LENGTH:
        raise ValueError(f"Username too long (max {MAX_USERNAME_LENGTH} characters)")
    if len(text) > MAX_STORED_TEXT_LENGTH:
        raise ValueError(f"Message too long (max {MAX_STORED_TEXT_LENGTH} characters)")
    return message.model_copy(update={
        "username": username,
        "text": text,
        "room": message.room.strip(),
        "timestamp": message.timestamp or utc_now_iso(),
    })


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class InMemoryMessageStore(MessageStore):
    """
    Process-local MessageStore.

    Messages live in insertion order per room, which is also timestamp order
    since ids are allocated on save. Useful for development and tests; data
    does not survive a restart.
    """

    def __init__(self, max_messages_per_room: int = 1000) -> None:
        super().__init__(max_messages_per_room)
        self._messages: Dict[str, ChatMessage] = {}
        self._room_messages: Dict[str, List[str]] = {}
        self._rooms: Dict[str, Room] = {}
        self._active_users: Dict[str, Dict[str, str]] = {}
        self._next_id = 0

    async def save_message(self, message: ChatMessage) -> str:
        prepared = prepare_for_storage(message)
        self._next_id += 1
        message_id = str(self._next_id)
        self._messages[message_id] = prepared.model_copy(update={"id": message_id})
        self._room_messages.setdefault(prepared.room, []).append(message_id)
        logger.debug("Message saved: %s in %s", prepared.username, prepared.room)
        await self.cleanup_old_messages(prepared.room)
        return message_id

    async def cleanup_old_messages(self, room: str) -> int:
        ids = self._room_messages.get(room, [])
        excess = len(ids) - self.max_messages_per_room
        if excess <= 0:
            return 0
        for message_id in ids[:excess]:
            self._messages.pop(message_id, None)
        del ids[:excess]
        logger.info("Cleaned up %d old messages from %s", excess, room)
        return excess

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        message = self._messages.get(message_id)
        return message.model_copy(deep=True) if message else None

    async def get_recent_messages(self, room: str, limit: int = 50) -> List[ChatMessage]:
        ids = self._room_messages.get(room, [])[-limit:] if limit > 0 else []
        return [self._messages[i].model_copy(deep=True) for i in reversed(ids)]

    async def get_message_count(self, room: str) -> int:
        return len(self._room_messages.get(room, []))

    async def delete_messages(self, room: str) -> int:
        ids = self._room_messages.pop(room, [])
        for message_id in ids:
            self._messages.pop(message_id, None)
        logger.info("Cleared %d messages from %s", len(ids), room)
        return len(ids)

    async def update_reactions(self, message_id: str, reactions: Dict[str, List[str]]) -> None:
        message = self._messages.get(message_id)
        if message is None:
            return
        self._messages[message_id] = message.model_copy(
            update={"reactions": {emoji: list(users) for emoji, users in reactions.items()}}
        )

    async def get_room_by_name(self, name: str) -> Optional[Room]:
        room = self._rooms.get(name.strip())
        return room.model_copy() if room else None

    async def list_rooms(self) -> List[Room]:
        return [room.model_copy() for room in self._rooms.values()]

    async def create_room(self, room: Room) -> None:
        self._rooms[room.name] = room.model_copy()

    async def update_room(self, room: Room) -> None:
        self._rooms[room.name] = room.model_copy()

    async def delete_room(self, name: str) -> None:
        self._rooms.pop(name, None)
        self._active_users.pop(name, None)

    async def add_user_to_room(self, room: str, connection_id: str, username: str) -> None:
        self._active_users.setdefault(room, {})[connection_id] = username

    async def remove_user_from_room(self, room: str, connection_id: str) -> None:
        self._active_users.get(room, {}).pop(connection_id, None)

    def active_users(self, room: str) -> List[str]:
        return list(self._active_users.get(room, {}).values())
