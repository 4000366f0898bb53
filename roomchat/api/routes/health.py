# roomchat/api/routes/health.py

from fastapi import APIRouter

from roomchat.core import state

router = APIRouter()

@router.get("/health")
async def health():
    """
    Health check endpoint.

    Returns current system status, connection counts, room counts and
    whether the message store is reachable.
    """
    broker = state.get_broker()
    return {
        "status": "healthy",
        "connections": len(broker.connection_manager.connections),
        "rooms": len(broker.room_manager.rooms),
        "active_rooms_with_members": len(broker.room_manager.members),
        "store_available": broker.router.store_available,
    }
