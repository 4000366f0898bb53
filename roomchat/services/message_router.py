# roomchat/services/message_router.py

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from typing import Deque, Dict, List, Optional

from roomchat.models.models import (
    CHAT_MESSAGE,
    ChatMessage,
    ReplyContext,
    utc_now_iso,
)
from roomchat.services.connection_manager import ConnectionManager
from roomchat.services.message_store import MAX_STORED_TEXT_LENGTH, MessageStore
from roomchat.services.room_manager import RoomManager

logger = logging.getLogger(__name__)

SYSTEM_USERNAME = "System"


def sanitize(text: str) -> str:
    """Neutralize markup before the text is stored or echoed."""
    return text.replace("<", "&lt;").replace(">", "&gt;")


class MessageRouter:
    """
    Validates, stamps, persists and fans out chat messages.

    Pipeline for one send:
        1. validate   non-empty str after trim, at most max_message_length
        2. sanitize   escape < and >
        3. stamp      timestamp + target room (must be registered)
        4. classify   "reply" when reply context is attached
        5. persist    best-effort, only for rooms with persist_messages
        6. buffer     per-room ring buffer, whatever step 5 did
        7. broadcast  to the members of that room only

    Invalid sends, and sends to rooms that do not exist, are dropped without
    telling the sender.

    Steps 5-7 run under a per-room asyncio.Lock, so messages of one room are
    broadcast in the order they were accepted even while a save is awaited.
    Rooms never wait on each other. Each save is bounded by persist_timeout.
    """

    def __init__(
        self,
        room_manager: RoomManager,
        connection_manager: ConnectionManager,
        store: Optional[MessageStore] = None,
        *,
        default_room: str = "global",
        max_message_length: int = 200,
        history_size: int = 100,
        persisted_history_limit: int = 50,
        persist_timeout: float = 5.0,
        keep_history: bool = True,
    ) -> None:
        self.room_manager = room_manager
        self.connection_manager = connection_manager
        self.store = store
        self.default_room = default_room
        self.max_message_length = max_message_length
        self.history_size = history_size
        self.persisted_history_limit = persisted_history_limit
        self.persist_timeout = persist_timeout
        self.keep_history = keep_history

        self.buffers: Dict[str, Deque[ChatMessage]] = {}
        self.message_counter = 0
        self._locks: Dict[str, asyncio.Lock] = {}
        self._sequence = itertools.count(1)

    @property
    def store_available(self) -> bool:
        return self.store is not None and self.store.available

    def validate(self, text, max_length: Optional[int] = None) -> bool:
        limit = self.max_message_length if max_length is None else max_length
        return isinstance(text, str) and bool(text.strip()) and len(text) <= limit

    def ephemeral_id(self) -> str:
        return f"local-{int(time.time() * 1000)}-{next(self._sequence)}"

    def resolve_room(self, room: Optional[str], current_room: Optional[str] = None) -> str:
        if isinstance(room, str) and room.strip():
            return room.strip()
        return current_room or self.default_room

    # ------------------------------------------------------------------------
    # SEND
    # ------------------------------------------------------------------------

    async def send(
        self,
        text,
        username: str,
        room: Optional[str] = None,
        *,
        current_room: Optional[str] = None,
        timestamp: Optional[str] = None,
        reply_to: Optional[ReplyContext] = None,
    ) -> Optional[ChatMessage]:
        """
        Run one inbound chat message through the pipeline.

        Returns:
            The message as broadcast, or None when it was dropped.
        """
        if not self.validate(text):
            logger.debug("Dropped invalid message from %s", username)
            return None

        target = self.resolve_room(room, current_room)
        if self.room_manager.find_room(target) is None:
            logger.debug("Dropped message from %s to unknown room %s", username, target)
            return None

        message = ChatMessage(
            id=self.ephemeral_id(),
            username=username,
            text=sanitize(text),
            room=target,
            timestamp=timestamp or utc_now_iso(),
            message_type="reply" if reply_to is not None else "message",
            reply_to=reply_to,
        )
        return await self._dispatch(message)

    async def post_system_message(self, room: str, text: str) -> Optional[ChatMessage]:
        """Announce ``text`` in ``room`` as the System user."""
        target = self.resolve_room(room)
        if not self.validate(text, MAX_STORED_TEXT_LENGTH) or self.room_manager.find_room(target) is None:
            return None
        message = ChatMessage(
            id=self.ephemeral_id(),
            username=SYSTEM_USERNAME,
            text=sanitize(text),
            room=target,
            timestamp=utc_now_iso(),
            message_type="system",
        )
        return await self._dispatch(message)

    async def _dispatch(self, message: ChatMessage) -> Optional[ChatMessage]:
        async with self._lock_for(message.room):
            # the room may have been deleted while this send waited on the lock
            if self.room_manager.find_room(message.room) is None:
                return None
            if self.keep_history:
                durable_id = await self._persist(message)
                if self.room_manager.find_room(message.room) is None:
                    # deleted during the save; purge_room removes the stored copy
                    logger.info("Msg dropped|%s|%s|room deleted|", message.username, message.room)
                    return None
                if durable_id is not None:
                    message = message.model_copy(update={"id": durable_id})
                self._buffer(message)
            self.message_counter += 1
            await self.connection_manager.broadcast_to_room(
                message.room, CHAT_MESSAGE, message.to_wire()
            )
        return message

    def _lock_for(self, room_name: str) -> asyncio.Lock:
        lock = self._locks.get(room_name)
        if lock is None:
            lock = self._locks[room_name] = asyncio.Lock()
        return lock

    async def _persist(self, message: ChatMessage) -> Optional[str]:
        room = self.room_manager.find_room(message.room)
        if room is None or not room.persist_messages or not self.store_available:
            logger.info("Msg saved|%s|%s|%s|NoDb|", message.username, message.room, message.message_type)
            return None

        try:
            durable_id = await asyncio.wait_for(self.store.save_message(message), self.persist_timeout)
        except Exception as e:
            logger.warning("Failed to save message to store|%s|%s|: %s", message.username, message.room, e)
            return None

        room = self.room_manager.find_room(message.room)
        if room is not None:
            self.room_manager.increment_message_count(room.name)
            try:
                await asyncio.wait_for(self.store.update_room(room), self.persist_timeout)
            except Exception as e:
                logger.warning("Failed to mirror message count for %s: %s", room.name, e)

        logger.info("Msg saved|%s|%s|%s|Db|", message.username, message.room, message.message_type)
        return durable_id

    def _buffer(self, message: ChatMessage) -> None:
        buffer = self.buffers.get(message.room)
        if buffer is None:
            buffer = self.buffers[message.room] = deque(maxlen=self.history_size)
        buffer.append(message)

    # ------------------------------------------------------------------------
    # HISTORY
    # ------------------------------------------------------------------------

    async def history_for(self, room_name: str) -> List[ChatMessage]:
        """
        Messages replayed to a client joining ``room_name``, oldest first.

        Stored history is preferred when the room persists and the store is
        up; otherwise (or if the store fails) the ring buffer is used.
        """
        if not self.keep_history:
            return []

        room = self.room_manager.find_room(room_name)
        if room is not None and room.persist_messages and self.store_available:
            try:
                recent = await asyncio.wait_for(
                    self.store.get_recent_messages(room_name, self.persisted_history_limit),
                    self.persist_timeout,
                )
                return list(reversed(recent))
            except Exception as e:
                logger.warning("Stored history unavailable for %s, using memory: %s", room_name, e)

        return list(self.buffers.get(room_name, ()))

    def apply_reactions(self, room_name: str, message_id: str, reactions: Dict[str, List[str]]) -> None:
        buffer = self.buffers.get(room_name)
        if not buffer:
            return
        for index, message in enumerate(buffer):
            if message.id == message_id:
                buffer[index] = message.model_copy(update={"reactions": reactions})
                return

    async def purge_room(self, room_name: str) -> None:
        """
        Forget a room's ring buffer and delete its stored messages.

        Waits for the room's in-flight send, so a message saved while the
        room was being deleted is purged along with the rest.
        """
        async with self._lock_for(room_name):
            self.buffers.pop(room_name, None)
            self._locks.pop(room_name, None)
            if self.store is None:
                return
            try:
                await asyncio.wait_for(self.store.delete_messages(room_name), self.persist_timeout)
            except Exception as e:
                logger.warning("Failed to purge stored messages for %s: %s", room_name, e)
