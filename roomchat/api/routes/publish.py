# roomchat/api/routes/publish.py
from fastapi import APIRouter, HTTPException

from roomchat.core import state
from roomchat.core.errors import ChatError
from roomchat.models.models import AnnounceRequest
from roomchat.api.routes.utils import http_error

# ============================================================================
# SYSTEM ANNOUNCEMENT ENDPOINT
# ============================================================================

router = APIRouter()

@router.post("/rooms/{room_name}/announce")
async def announce(room_name: str, request: AnnounceRequest):
    """
    Post a system message into a room.

    Flow:
        1. Validate room exists
        2. Message Router sanitizes, persists (if the room persists),
           buffers and broadcasts it with messageType "system"

    Returns:
        dict: Success status and the message as broadcast

    Raises:
        HTTPException: 404 if room not found, 400 if the text is rejected
    """
    try:
        message = await state.get_broker().announce(room_name, request.text)
    except ChatError as e:
        raise http_error(e)
    if message is None:
        raise HTTPException(status_code=400, detail="Message rejected")
    return {"status": "success", "message": message.to_wire()}
