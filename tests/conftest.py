"""Shared fixtures: fake sockets and brokers wired with test settings."""

from types import SimpleNamespace

import pytest

from roomchat.services.broker import build_broker
from roomchat.services.message_store import InMemoryMessageStore

DEFAULT_STORE = object()


def make_settings(**overrides):
    values = {
        "DEFAULT_ROOM": "global",
        "DEFAULT_ROOMS": ["global", "general", "random"],
        "DEFAULT_MAX_USERS": 100,
        "MAX_MESSAGE_LENGTH": 200,
        "KEEP_HISTORY": True,
        "ROOM_HISTORY_SIZE": 100,
        "PERSISTED_HISTORY_LIMIT": 50,
        "MAX_PERSISTED_MESSAGES": 1000,
        "PERSIST_TIMEOUT_SECONDS": 1.0,
        "TYPING_TIMEOUT_SECONDS": 3.0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeWebSocket:
    """Records every frame sent to it; can be told to fail on send."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.accepted = False
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, event_type: str) -> list:
        return [frame["data"] for frame in self.sent if frame["type"] == event_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
async def make_broker():
    created = []

    async def _make(store=DEFAULT_STORE, **overrides):
        settings = make_settings(**overrides)
        if store is DEFAULT_STORE:
            store = InMemoryMessageStore(max_messages_per_room=settings.MAX_PERSISTED_MESSAGES)
        broker = build_broker(settings, store)
        await broker.bootstrap()
        created.append(broker)
        return broker

    yield _make

    for broker in created:
        await broker.shutdown()


@pytest.fixture
async def broker(make_broker, store):
    return await make_broker(store=store)


@pytest.fixture
def connect():
    async def _connect(broker, username=None, fail=False):
        websocket = FakeWebSocket(fail=fail)
        connection = await broker.connect(websocket, username=username)
        return connection, websocket

    return _connect
