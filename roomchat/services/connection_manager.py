# roomchat/services/connection_manager.py

from __future__ import annotations

from typing import Any, Dict, Optional
import logging
import uuid

from fastapi import WebSocket

from roomchat.services.room_manager import RoomManager

logger = logging.getLogger(__name__)


class Connection:
    """
    One client's live socket.

    Holds identity (the display name given on join) and forwards events.
    Which room it is in is owned by the RoomManager; ``room`` here is read
    straight from it.
    """

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None,
                 username: Optional[str] = None, room_manager: Optional[RoomManager] = None) -> None:
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex
        self.username = username
        self.room_manager = room_manager

    @property
    def room(self) -> Optional[str]:
        if self.room_manager is None:
            return None
        return self.room_manager.room_of(self.id)

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"type": event, "data": data})

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, username={self.username!r})"


# ============================================================================
# WEBSOCKET CONNECTION MANAGER
# ============================================================================

class ConnectionManager:
    """
    Tracks live connections and fans events out to rooms.

    Room membership itself lives in the RoomManager; this class turns the
    connection ids found there back into sockets and writes to them.

    Data Structures:
        connections: connection_id -> Connection
    """

    def __init__(self, room_manager: RoomManager) -> None:
        self.connections: Dict[str, Connection] = {}
        self.room_manager = room_manager

    async def connect(self, websocket: WebSocket, username: Optional[str] = None,
                      connection_id: Optional[str] = None) -> Connection:
        """
        Accept a new WebSocket connection.

        Note:
            The connection is not in any room until it sends "join-room".
        """
        await websocket.accept()
        return self.register(websocket, username=username, connection_id=connection_id)

    def register(self, websocket: WebSocket, username: Optional[str] = None,
                 connection_id: Optional[str] = None) -> Connection:
        connection = Connection(websocket, connection_id, username, self.room_manager)
        self.connections[connection.id] = connection
        logger.info("✓ Connection %s opened. Total: %d", connection.id, len(self.connections))
        return connection

    def disconnect(self, connection: Connection) -> None:
        """Forget a connection. Room membership is cleaned up by the broker."""
        if self.connections.pop(connection.id, None) is not None:
            logger.info("✗ Connection %s closed. Total: %d", connection.id, len(self.connections))

    def get(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    async def send_to(self, connection: Connection, event: str, data: Any) -> bool:
        try:
            await connection.send(event, data)
            return True
        except Exception as e:
            logger.warning("Send error to %s: %s", connection.id, e)
            self.disconnect(connection)
            return False

    async def broadcast_to_room(self, room_name: str, event: str, data: Any,
                                exclude: Optional[str] = None) -> int:
        """
        Send an event to every connection currently in ``room_name``.

        Recipients are read from the registry at call time, so a connection
        that left (or never joined) does not receive it. Connections in other
        rooms are never addressed.

        Returns:
            Number of connections the event was delivered to.

        Error Handling:
            A failed send is logged and the connection is dropped from the
            connection table; the broadcast continues with the others.
        """
        member_ids = self.room_manager.members_of(room_name)
        if not member_ids:
            logger.debug("[routing] Skipped %s: room=%s has 0 members", event, room_name)
            return 0

        delivered = 0
        for connection_id in member_ids:
            if connection_id == exclude:
                continue
            connection = self.connections.get(connection_id)
            if connection is None:
                continue
            if await self.send_to(connection, event, data):
                delivered += 1
        return delivered
