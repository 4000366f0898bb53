# roomchat/api/websocket.py

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from roomchat.core import state
from roomchat.models.models import (
    ChatMessagePayload,
    JoinRoomPayload,
    ToggleReactionPayload,
    TypingPayload,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# action -> (payload model, ChatBroker method name)
HANDLERS = {
    "join-room": (JoinRoomPayload, "join_room"),
    "chat-message": (ChatMessagePayload, "chat_message"),
    "typing": (TypingPayload, "typing"),
    "stop-typing": (TypingPayload, "stop_typing"),
    "toggle-reaction": (ToggleReactionPayload, "toggle_reaction"),
}

# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, username: Optional[str] = None):
    """
    WebSocket endpoint for one chat client.

    Protocol:
    =========

    Client -> Server frames: {"action": "<event>", "data": {...}}
    -------------------------
    join-room:        {"room": "general", "username": "alice", "password": "..."}
    chat-message:     {"userMsg": "hi", "room": "general", "replyTo": {...}}
    typing:           {"room": "general"}
    stop-typing:      {"room": "general"}
    toggle-reaction:  {"messageId": "42", "emoji": "👍"}

    Server -> Client frames: {"type": "<event>", "data": ...}
    -------------------------
    user-list, message-history, chat-message, user-typing,
    user-stop-typing, reaction-update, room-error, room-deleted

    Lifecycle:
    ==========
    1. Client connects (optional ?username=...)
    2. Client sends "join-room"; on success gets user-list + message-history
    3. Events are scoped to the one room the connection is in
    4. On disconnect the connection leaves its room implicitly

    Error Handling:
        Malformed frames (bad JSON, unknown action, invalid payload) are
        dropped without a reply; the event model is fire-and-forget.
    """
    broker = state.get_broker()
    connection = await broker.connect(websocket, username=username)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                frame = json.loads(data)
                action = frame.get("action") if isinstance(frame, dict) else None
                handler = HANDLERS.get(action)
                if handler is None:
                    logger.debug("Dropped frame with unknown action %r", action)
                    continue

                payload_model, method = handler
                payload = payload_model.model_validate(frame.get("data") or {})
                await getattr(broker, method)(connection, payload)

            except json.JSONDecodeError:
                logger.debug("Dropped non-JSON frame from %s", connection.id)
            except ValidationError as e:
                logger.debug("Dropped invalid %s payload from %s: %s", action, connection.id, e.error_count())

    except WebSocketDisconnect:
        await broker.disconnect(connection)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
        await broker.disconnect(connection)
