# roomchat/main.py

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roomchat.core import state
from roomchat.core.config import settings
from roomchat.core.logging import setup_logging
from roomchat.api.routes import root, health, metrics, rooms, publish
from roomchat.api import websocket as websocket_module
from roomchat.services.broker import build_broker
from roomchat.services.message_store import InMemoryMessageStore, MessageStore
from roomchat.services.redis_store import RedisMessageStore

# Configure logging first
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(title="Roomchat - Multi-room Chat Broker")

# CORS (relaxed for now – tighten in prod)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# REST routes
app.include_router(root.router)
app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(rooms.router)
app.include_router(publish.router)

# WebSocket routes
app.include_router(websocket_module.router)


async def create_store() -> Optional[MessageStore]:
    """
    Build the message store selected by MESSAGE_STORE.

    A Redis store that cannot be reached is not fatal: the broker runs
    memory-only and logs why.
    """
    if settings.MESSAGE_STORE == "memory":
        return InMemoryMessageStore(max_messages_per_room=settings.MAX_PERSISTED_MESSAGES)

    if settings.MESSAGE_STORE == "redis":
        store = RedisMessageStore(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            max_messages_per_room=settings.MAX_PERSISTED_MESSAGES,
        )
        try:
            await store.connect()
            return store
        except Exception as e:
            logger.warning("Redis unavailable (%s); running without persistence", e)
            return None

    logger.info("Message persistence disabled (MESSAGE_STORE=%s)", settings.MESSAGE_STORE)
    return None


@app.on_event("startup")
async def startup_event():
    logger.info("🚀 Application starting - store=%s", settings.MESSAGE_STORE)
    store = await create_store()
    state.broker = build_broker(settings, store)
    await state.broker.bootstrap()


@app.on_event("shutdown")
async def on_shutdown():
    if state.broker is not None:
        await state.broker.shutdown()
        state.broker = None


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("roomchat.main:app", host="0.0.0.0", port=8000)
