# roomchat/api/routes/rooms.py

from typing import List

from fastapi import APIRouter

from roomchat.core import state
from roomchat.core.errors import ChatError
from roomchat.models.models import CreateRoomRequest, RoomSummary, UpdateRoomRequest
from roomchat.api.routes.utils import http_error

router = APIRouter()

# ============================================================================
# ROOM CRUD ENDPOINTS
# ============================================================================

@router.get("/rooms", response_model=List[RoomSummary])
async def list_rooms():
    """
    List public rooms, newest first.

    Member counts are computed from live membership at request time.
    """
    return state.get_broker().public_rooms()


@router.post("/rooms", response_model=RoomSummary, status_code=201)
async def create_room(request: CreateRoomRequest):
    """
    Create a new chatroom.

    Args:
        request: name, description, createdBy, isPublic, maxUsers,
                 password (stored as a digest only), persistMessages

    Raises:
        HTTPException: 400 if the name is empty, too long or already taken
    """
    broker = state.get_broker()
    try:
        room = await broker.create_room(request)
    except ChatError as e:
        raise http_error(e)
    return broker.room_manager.summary(room)


@router.get("/rooms/{room_name}", response_model=RoomSummary)
async def get_room(room_name: str):
    """
    Get details of a specific room.

    Raises:
        HTTPException: 404 if room not found
    """
    try:
        return state.get_broker().room_summary(room_name)
    except ChatError as e:
        raise http_error(e)


@router.put("/rooms/{room_name}", response_model=RoomSummary)
async def update_room(room_name: str, request: UpdateRoomRequest):
    """Update description, visibility or capacity of a room."""
    broker = state.get_broker()
    try:
        room = await broker.update_room(room_name, request)
    except ChatError as e:
        raise http_error(e)
    return broker.room_manager.summary(room)


@router.delete("/rooms/{room_name}")
async def delete_room(room_name: str):
    """
    Delete a room.

    Members are evicted with a "room-deleted" event and the room's
    buffered and stored messages are purged.

    Raises:
        HTTPException: 403 for default rooms, 404 if room not found
    """
    try:
        await state.get_broker().delete_room(room_name)
    except ChatError as e:
        raise http_error(e)
    return {"status": "deleted", "room": room_name}


@router.get("/rooms/{room_name}/messages")
async def room_messages(room_name: str):
    """The history a client would receive on joining this room, oldest first."""
    broker = state.get_broker()
    try:
        room = broker.room_manager.get_room_by_name(room_name)
    except ChatError as e:
        raise http_error(e)
    history = await broker.router.history_for(room.name)
    return {"room": room.name, "messages": [m.to_wire() for m in history]}
