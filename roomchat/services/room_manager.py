# roomchat/services/room_manager.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
import logging

from roomchat.core.errors import (
    DuplicateRoomError,
    InvalidNameError,
    NotFoundError,
    ProtectedRoomError,
    RoomFullError,
)
from roomchat.models.models import (
    CreateRoomRequest,
    Room,
    RoomSummary,
    UpdateRoomRequest,
    utc_now_iso,
)
from roomchat.services.access_guard import hash_password

logger = logging.getLogger(__name__)

MAX_ROOM_NAME_LENGTH = 50


@dataclass
class Membership:
    connection_id: str
    username: str
    joined_at: str = field(default_factory=utc_now_iso)


def normalize_room_name(name) -> str:
    """Trim ``name`` and enforce the naming rules; raises InvalidNameError."""
    if not isinstance(name, str):
        raise InvalidNameError("Room name is required")
    trimmed = name.strip()
    if not trimmed:
        raise InvalidNameError("Room name cannot be empty")
    if len(trimmed) > MAX_ROOM_NAME_LENGTH:
        raise InvalidNameError(f"Room name too long (max {MAX_ROOM_NAME_LENGTH} characters)")
    return trimmed


# ============================================================================
# ROOM REGISTRY
# ============================================================================
class RoomManager:
    """
    Authoritative registry of rooms and of who is in them.

    Room metadata may be mirrored to a MessageStore by the broker, but this
    class never awaits anything: every mutation is a single synchronous step
    on the event loop, which is what keeps a room switch atomic.

    Attributes:
        rooms: room name -> Room
        members: room name -> {connection_id -> Membership}
        connection_rooms: connection_id -> room name (at most one room each)

    Usage:
        room_manager = RoomManager(default_rooms=["global"])
        room_manager.create_default_rooms()
        users = room_manager.join("global", "conn-1", "alice")
    """

    def __init__(self, default_rooms: Iterable[str] = (), default_max_users: int = 100,
                 password_hasher=hash_password):
        self.rooms: Dict[str, Room] = {}
        self.members: Dict[str, Dict[str, Membership]] = {}
        self.connection_rooms: Dict[str, str] = {}
        self.default_rooms = list(default_rooms)
        self.default_max_users = default_max_users
        self.password_hasher = password_hasher

    # -- lifecycle -------------------------------------------------------------

    def load_rooms(self, rooms: Iterable[Room]) -> int:
        """Adopt rooms read from persistent storage at startup. Returns how many were new."""
        loaded = 0
        for room in rooms:
            if room.name not in self.rooms:
                self.rooms[room.name] = room
                loaded += 1
        if loaded:
            logger.info("✓ Loaded %d rooms from storage", loaded)
        return loaded

    def create_default_rooms(self) -> List[Room]:
        """
        Create the default rooms that do not exist yet.

        Default rooms are public, have no password and can never be deleted.
        """
        created = []
        for name in self.default_rooms:
            if name in self.rooms:
                continue
            created.append(self.create_room(CreateRoomRequest(
                name=name,
                description=f"Default {name} chat room",
                created_by="System",
            )))
        if created:
            logger.info("✓ Created %d default rooms", len(created))
        return created

    # -- room CRUD -------------------------------------------------------------

    def create_room(self, request: CreateRoomRequest) -> Room:
        """
        Create a new room.

        Raises:
            InvalidNameError: name empty or longer than 50 characters
            DuplicateRoomError: a room with this name already exists
        """
        name = normalize_room_name(request.name)
        if name in self.rooms:
            raise DuplicateRoomError("Room with this name already exists")

        password_hash = None
        if request.password and request.password.strip():
            password_hash = self.password_hasher(request.password.strip())

        room = Room(
            name=name,
            description=request.description.strip(),
            created_by=(request.created_by or "Anonymous").strip() or "Anonymous",
            is_public=request.is_public,
            max_users=request.max_users or self.default_max_users,
            password_hash=password_hash,
            persist_messages=request.persist_messages,
        )
        self.rooms[name] = room
        logger.info("Room created: %s by %s%s", name, room.created_by, " (locked)" if password_hash else "")
        return room

    def find_room(self, name) -> Optional[Room]:
        if not isinstance(name, str):
            return None
        return self.rooms.get(name.strip())

    def get_room_by_name(self, name: str) -> Room:
        room = self.find_room(name)
        if room is None:
            raise NotFoundError("Room not found")
        return room

    def update_room(self, name: str, update: UpdateRoomRequest) -> Room:
        room = self.get_room_by_name(name)
        if update.description is not None:
            room.description = update.description.strip()
        if update.is_public is not None:
            room.is_public = update.is_public
        if update.max_users is not None:
            room.max_users = update.max_users
        logger.info("Room updated: %s", room.name)
        return room

    def is_default(self, name: str) -> bool:
        return name in self.default_rooms

    def delete_room(self, name: str) -> List[str]:
        """
        Delete a room and drop its membership.

        Returns:
            The connection ids that were evicted from the room.

        Raises:
            ProtectedRoomError: for default rooms
            NotFoundError: unknown room
        """
        room = self.get_room_by_name(name)
        if self.is_default(room.name):
            raise ProtectedRoomError("Cannot delete default rooms")

        evicted = list(self.members.pop(room.name, {}).keys())
        for connection_id in evicted:
            self.connection_rooms.pop(connection_id, None)
        del self.rooms[room.name]
        logger.info("Room deleted: %s (%d evicted)", room.name, len(evicted))
        return evicted

    def increment_message_count(self, name: str) -> int:
        room = self.get_room_by_name(name)
        room.message_count += 1
        return room.message_count

    # -- membership ------------------------------------------------------------

    def join(self, room_name: str, connection_id: str, username: str) -> List[str]:
        """
        Put a connection in ``room_name``, leaving its previous room first.

        Idempotent for a connection that is already a member. The capacity
        check happens before anything is mutated, so a refused join leaves
        the connection where it was.

        Returns:
            Usernames currently in the room.

        Raises:
            NotFoundError: unknown room
            RoomFullError: membership already at max_users
        """
        room = self.get_room_by_name(room_name)
        room_members = self.members.get(room.name, {})

        if connection_id in room_members:
            room_members[connection_id].username = username
            return self.usernames_in(room.name)

        if len(room_members) >= room.max_users:
            raise RoomFullError(room.name)

        previous = self.connection_rooms.get(connection_id)
        if previous is not None:
            self.leave(previous, connection_id)

        self.members.setdefault(room.name, {})[connection_id] = Membership(connection_id, username)
        self.connection_rooms[connection_id] = room.name
        return self.usernames_in(room.name)

    def leave(self, room_name: str, connection_id: str) -> Optional[Membership]:
        """Remove a connection from a room. No-op when it is not a member."""
        room_members = self.members.get(room_name)
        if not room_members or connection_id not in room_members:
            return None
        membership = room_members.pop(connection_id)
        if not room_members:
            del self.members[room_name]
        if self.connection_rooms.get(connection_id) == room_name:
            del self.connection_rooms[connection_id]
        return membership

    def room_of(self, connection_id: str) -> Optional[str]:
        return self.connection_rooms.get(connection_id)

    def members_of(self, room_name: str) -> List[str]:
        return list(self.members.get(room_name, {}).keys())

    def usernames_in(self, room_name: str) -> List[str]:
        return [m.username for m in self.members.get(room_name, {}).values()]

    def member_count(self, room_name: str) -> int:
        return len(self.members.get(room_name, {}))

    # -- listings --------------------------------------------------------------

    def summary(self, room: Room) -> RoomSummary:
        return RoomSummary.from_room(room, self.member_count(room.name))

    def list_rooms(self) -> List[Room]:
        return list(self.rooms.values())

    def public_rooms(self) -> List[RoomSummary]:
        """
        Public rooms, newest first, each with its member count computed now
        rather than stored on the room.
        """
        public = [room for room in self.rooms.values() if room.is_public]
        public.sort(key=lambda r: r.created_at, reverse=True)
        return [self.summary(room) for room in public]
