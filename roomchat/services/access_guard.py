# roomchat/services/access_guard.py

from __future__ import annotations

import hashlib
import hmac
from typing import TYPE_CHECKING, Optional

from roomchat.core.errors import InvalidPasswordError, PasswordRequiredError, RoomFullError

if TYPE_CHECKING:
    from roomchat.models.models import Room
    from roomchat.services.room_manager import RoomManager


def hash_password(plaintext: str) -> str:
    """SHA-256 hex digest of ``plaintext``. The only hashing primitive used for rooms."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


class AccessGuard:
    """
    Gates room joins on password and capacity.

    Both checks read the registry and raise; neither mutates membership.
    The broker runs them before calling RoomManager.join().
    """

    def __init__(self, room_manager: RoomManager, hasher=hash_password) -> None:
        self.room_manager = room_manager
        self.hasher = hasher

    def check_password(self, room_name: str, supplied: Optional[str]) -> None:
        room = self.room_manager.get_room_by_name(room_name)
        if not room.password_hash:
            return
        if not supplied or not supplied.strip():
            raise PasswordRequiredError(room.name)
        if not hmac.compare_digest(self.hasher(supplied), room.password_hash):
            raise InvalidPasswordError(room.name)

    def check_capacity(self, room: Room, connection_id: Optional[str] = None) -> None:
        if connection_id is not None and self.room_manager.room_of(connection_id) == room.name:
            return
        if self.room_manager.member_count(room.name) >= room.max_users:
            raise RoomFullError(room.name)
