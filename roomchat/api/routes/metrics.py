# roomchat/api/routes/metrics.py
from fastapi import APIRouter
from datetime import datetime, timezone

from roomchat.core import state

router = APIRouter()

@router.get("/metrics")
async def get_metrics():
    """
    Traffic metrics endpoint.

    Returns:
        dict: message totals and rate since start, live connections,
        rooms and per-room member counts.

    Example Response:
        {
            "total_messages": 1200,
            "uptime_hours": 2.5,
            "messages_per_second": 0.13,
            "concurrent_connections": 14,
            "total_rooms": 5,
            "active_rooms_with_members": 2,
            "members_by_room": {"general": 9, "random": 5}
        }
    """
    broker = state.get_broker()
    uptime_seconds = (datetime.now(timezone.utc) - state.app_start_time).total_seconds()
    total_messages = broker.router.message_counter

    if uptime_seconds > 0:
        messages_per_second = total_messages / uptime_seconds
    else:
        messages_per_second = 0

    return {
        # Statistics
        "total_messages": total_messages,
        "uptime_hours": round(uptime_seconds / 3600, 2) if uptime_seconds > 0 else 0,
        "messages_per_second": round(messages_per_second, 2),

        # Capacity
        "concurrent_connections": len(broker.connection_manager.connections),
        "total_rooms": len(broker.room_manager.rooms),
        "active_rooms_with_members": len(broker.room_manager.members),
        "members_by_room": {
            name: len(members) for name, members in broker.room_manager.members.items()
        },
        "buffered_messages_by_room": {
            name: len(buffer) for name, buffer in broker.router.buffers.items()
        },
    }
