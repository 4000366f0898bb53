# roomchat/services/presence.py

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Tuple

from roomchat.models.models import USER_LIST, USER_STOP_TYPING, USER_TYPING
from roomchat.services.connection_manager import ConnectionManager
from roomchat.services.room_manager import RoomManager

logger = logging.getLogger(__name__)


class PresenceTracker:
    """
    Per-room online lists and typing indicators.

    Every room is its own presence domain: user lists and typing events are
    only ever sent to the members of the room they describe.

    Typing expiry is one asyncio task per (room, username). A fresh
    set_typing() cancels the pending task and starts a new one, so there is
    never more than one expiry queued for the same user in the same room.
    """

    def __init__(self, room_manager: RoomManager, connection_manager: ConnectionManager,
                 typing_timeout: float = 3.0) -> None:
        self.room_manager = room_manager
        self.connection_manager = connection_manager
        self.typing_timeout = typing_timeout
        self._typing: Dict[Tuple[str, str], asyncio.Task] = {}

    async def broadcast_user_list(self, room_name: str) -> None:
        await self.connection_manager.broadcast_to_room(
            room_name,
            USER_LIST,
            {"room": room_name, "users": self.room_manager.usernames_in(room_name)},
        )

    def is_typing(self, room_name: str, username: str) -> bool:
        return (room_name, username) in self._typing

    async def set_typing(self, room_name: str, username: str) -> None:
        key = (room_name, username)
        pending = self._typing.pop(key, None)
        if pending is not None:
            pending.cancel()
        self._typing[key] = asyncio.create_task(self._expire(room_name, username))
        await self.connection_manager.broadcast_to_room(
            room_name, USER_TYPING, {"room": room_name, "username": username}
        )

    async def stop_typing(self, room_name: str, username: str) -> None:
        pending = self._typing.pop((room_name, username), None)
        if pending is not None and pending is not asyncio.current_task():
            pending.cancel()
        await self.connection_manager.broadcast_to_room(
            room_name, USER_STOP_TYPING, {"room": room_name, "username": username}
        )

    async def clear_user(self, room_name: str, username: str) -> None:
        """Drop a leaving user's typing state, announcing it only if it was set."""
        if self.is_typing(room_name, username):
            await self.stop_typing(room_name, username)

    async def _expire(self, room_name: str, username: str) -> None:
        await asyncio.sleep(self.typing_timeout)
        logger.debug("Typing expired|%s|%s|", username, room_name)
        await self.stop_typing(room_name, username)

    def forget_room(self, room_name: str) -> None:
        """Cancel pending expiries for a room that no longer exists."""
        for key in [k for k in self._typing if k[0] == room_name]:
            self._typing.pop(key).cancel()

    def shutdown(self) -> None:
        for task in self._typing.values():
            task.cancel()
        self._typing.clear()
