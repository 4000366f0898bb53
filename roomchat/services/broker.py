# roomchat/services/broker.py

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from fastapi import WebSocket

from roomchat.core.errors import AccessDeniedError, ChatError, InvalidNameError, NotFoundError
from roomchat.models.models import (
    MESSAGE_HISTORY,
    REACTION_UPDATE,
    ROOM_DELETED,
    ROOM_ERROR,
    ChatMessage,
    ChatMessagePayload,
    CreateRoomRequest,
    JoinRoomPayload,
    Room,
    RoomSummary,
    ToggleReactionPayload,
    TypingPayload,
    UpdateRoomRequest,
)
from roomchat.services.access_guard import AccessGuard
from roomchat.services.connection_manager import Connection, ConnectionManager
from roomchat.services.message_router import MessageRouter
from roomchat.services.message_store import MessageStore
from roomchat.services.presence import PresenceTracker
from roomchat.services.reaction_ledger import ReactionLedger
from roomchat.services.room_manager import RoomManager, normalize_room_name

logger = logging.getLogger(__name__)


# ============================================================================
# CHAT BROKER
# ============================================================================

class ChatBroker:
    """
    Entry point for every connection event and room administration call.

    Owns one instance of each component, built once at startup by
    build_broker() and torn down by shutdown(). In-memory state is always
    updated first; the store only ever receives best-effort mirror writes.
    """

    def __init__(
        self,
        room_manager: RoomManager,
        connection_manager: ConnectionManager,
        access_guard: AccessGuard,
        presence: PresenceTracker,
        router: MessageRouter,
        reactions: ReactionLedger,
        store: Optional[MessageStore] = None,
        persist_timeout: float = 5.0,
    ) -> None:
        self.room_manager = room_manager
        self.connection_manager = connection_manager
        self.access_guard = access_guard
        self.presence = presence
        self.router = router
        self.reactions = reactions
        self.store = store
        self.persist_timeout = persist_timeout

    async def _mirror(self, action: str, *args) -> None:
        """Best-effort write to the store; failures are logged and ignored."""
        if self.store is None or not self.store.available:
            return
        try:
            await asyncio.wait_for(getattr(self.store, action)(*args), self.persist_timeout)
        except Exception as e:
            logger.warning("Store %s failed for %s: %s", action, args[0] if args else "-", e)

    # ------------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------------

    async def bootstrap(self) -> None:
        """Load stored rooms, then make sure every default room exists."""
        if self.store is not None and self.store.available:
            try:
                stored = await asyncio.wait_for(self.store.list_rooms(), self.persist_timeout)
                self.room_manager.load_rooms(stored)
            except Exception as e:
                logger.warning("Could not load rooms from store: %s", e)

        for room in self.room_manager.create_default_rooms():
            await self._mirror("create_room", room)

    async def shutdown(self) -> None:
        self.presence.shutdown()
        if self.store is not None:
            await self.store.close()

    async def connect(self, websocket: WebSocket, username: Optional[str] = None) -> Connection:
        return await self.connection_manager.connect(websocket, username=username)

    # ------------------------------------------------------------------------
    # CONNECTION EVENTS
    # ------------------------------------------------------------------------

    async def join_room(self, connection: Connection, payload: JoinRoomPayload) -> bool:
        """
        Handle "join-room".

        Flow:
            1. Resolve the room, creating it with defaults if the name is new
            2. Access Guard: password, then capacity (refusal -> room-error)
            3. Leave the previous room and join the new one in one step
            4. user-list to both rooms, message-history to the joiner
            5. Mirror membership to the store

        Returns:
            True when the connection is now a member of the room.
        """
        try:
            name = normalize_room_name(payload.room)
        except InvalidNameError:
            logger.debug("Dropped join with invalid room name from %s", connection.id)
            return False

        username = payload.username.strip() or "Anonymous"
        room = self.room_manager.find_room(name)
        if room is None:
            room = self.room_manager.create_room(CreateRoomRequest(name=name, created_by=username))
            await self._mirror("create_room", room)

        try:
            self.access_guard.check_password(room.name, payload.password)
            self.access_guard.check_capacity(room, connection.id)
            previous = self.room_manager.room_of(connection.id)
            previous_username = connection.username
            self.room_manager.join(room.name, connection.id, username)
        except AccessDeniedError as e:
            logger.info("Join refused|%s|%s|%s|", username, room.name, e.client_message)
            await self.connection_manager.send_to(connection, ROOM_ERROR, {"message": e.client_message})
            return False
        except NotFoundError:
            # deleted while the store mirror above was awaited
            return False

        connection.username = username
        logger.info("Join|%s|%s|", username, room.name)

        if previous is not None and previous != room.name:
            logger.info("Leave|%s|%s|", previous_username, previous)
            await self.presence.clear_user(previous, previous_username)
            await self.presence.broadcast_user_list(previous)

        await self.presence.broadcast_user_list(room.name)
        history = await self.router.history_for(room.name)
        await self.connection_manager.send_to(connection, MESSAGE_HISTORY, [m.to_wire() for m in history])

        if previous is not None and previous != room.name:
            await self._mirror("remove_user_from_room", previous, connection.id)
        await self._mirror("add_user_to_room", room.name, connection.id, username)
        return True

    async def chat_message(self, connection: Connection, payload: ChatMessagePayload) -> Optional[ChatMessage]:
        username = connection.username or payload.username or "Anonymous"
        return await self.router.send(
            payload.user_msg,
            username,
            payload.room,
            current_room=connection.room,
            timestamp=payload.timestamp,
            reply_to=payload.reply_to,
        )

    def _typing_target(self, connection: Connection, payload: TypingPayload):
        room = payload.room or connection.room
        username = connection.username or payload.username
        if room is None or room != connection.room or not username:
            return None
        return room, username

    async def typing(self, connection: Connection, payload: TypingPayload) -> None:
        target = self._typing_target(connection, payload)
        if target is not None:
            await self.presence.set_typing(*target)

    async def stop_typing(self, connection: Connection, payload: TypingPayload) -> None:
        target = self._typing_target(connection, payload)
        if target is not None:
            await self.presence.stop_typing(*target)

    async def toggle_reaction(self, connection: Connection, payload: ToggleReactionPayload):
        """
        Handle "toggle-reaction".

        The full reaction map is broadcast to the message's room. Unknown or
        ephemeral message ids and store failures are logged and dropped.
        """
        username = connection.username or payload.username
        if not username:
            return None
        try:
            message, reactions = await self.reactions.toggle(payload.message_id, payload.emoji, username)
        except ChatError as e:
            logger.warning("Reaction dropped|%s|%s|: %s", username, payload.message_id, e)
            return None

        await self.connection_manager.broadcast_to_room(
            message.room,
            REACTION_UPDATE,
            {"messageId": message.id, "room": message.room, "reactions": reactions},
        )
        return reactions

    async def disconnect(self, connection: Connection) -> None:
        """Implicit leave of the current room, then forget the connection."""
        room = self.room_manager.room_of(connection.id)
        self.connection_manager.disconnect(connection)
        if room is None:
            return

        self.room_manager.leave(room, connection.id)
        logger.info("Leave|%s|%s|", connection.username, room)
        if connection.username:
            await self.presence.clear_user(room, connection.username)
        await self.presence.broadcast_user_list(room)
        await self._mirror("remove_user_from_room", room, connection.id)

    # ------------------------------------------------------------------------
    # ROOM ADMINISTRATION
    # ------------------------------------------------------------------------

    def public_rooms(self) -> List[RoomSummary]:
        return self.room_manager.public_rooms()

    def room_summary(self, name: str) -> RoomSummary:
        return self.room_manager.summary(self.room_manager.get_room_by_name(name))

    async def create_room(self, request: CreateRoomRequest) -> Room:
        room = self.room_manager.create_room(request)
        await self._mirror("create_room", room)
        return room

    async def update_room(self, name: str, update: UpdateRoomRequest) -> Room:
        room = self.room_manager.update_room(name, update)
        await self._mirror("update_room", room)
        return room

    async def delete_room(self, name: str) -> None:
        """
        Delete a room: evict its members, purge its history, drop it from
        the store. Raises ProtectedRoomError / NotFoundError.
        """
        room = self.room_manager.get_room_by_name(name)
        evicted = self.room_manager.delete_room(room.name)
        self.presence.forget_room(room.name)

        for connection_id in evicted:
            connection = self.connection_manager.get(connection_id)
            if connection is not None:
                await self.connection_manager.send_to(connection, ROOM_DELETED, {"room": room.name})

        await self.router.purge_room(room.name)
        await self._mirror("delete_room", room.name)

    async def announce(self, name: str, text: str) -> Optional[ChatMessage]:
        room = self.room_manager.get_room_by_name(name)
        return await self.router.post_system_message(room.name, text)


def build_broker(settings, store: Optional[MessageStore] = None) -> ChatBroker:
    """Construct every component once and wire them together."""
    room_manager = RoomManager(
        default_rooms=settings.DEFAULT_ROOMS,
        default_max_users=settings.DEFAULT_MAX_USERS,
    )
    connection_manager = ConnectionManager(room_manager=room_manager)
    router = MessageRouter(
        room_manager,
        connection_manager,
        store,
        default_room=settings.DEFAULT_ROOM,
        max_message_length=settings.MAX_MESSAGE_LENGTH,
        history_size=settings.ROOM_HISTORY_SIZE,
        persisted_history_limit=settings.PERSISTED_HISTORY_LIMIT,
        persist_timeout=settings.PERSIST_TIMEOUT_SECONDS,
        keep_history=settings.KEEP_HISTORY,
    )
    return ChatBroker(
        room_manager=room_manager,
        connection_manager=connection_manager,
        access_guard=AccessGuard(room_manager),
        presence=PresenceTracker(room_manager, connection_manager, settings.TYPING_TIMEOUT_SECONDS),
        router=router,
        reactions=ReactionLedger(store, router, settings.PERSIST_TIMEOUT_SECONDS),
        store=store,
        persist_timeout=settings.PERSIST_TIMEOUT_SECONDS,
    )
