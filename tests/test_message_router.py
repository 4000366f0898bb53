"""Tests for the send pipeline, ring buffer and join history."""

import anyio
import pytest

from roomchat.models.models import (
    ChatMessagePayload,
    CreateRoomRequest,
    JoinRoomPayload,
    ReplyContext,
)
from roomchat.services.message_store import InMemoryMessageStore

pytestmark = pytest.mark.anyio


class CountingStore(InMemoryMessageStore):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.saves = 0

    async def save_message(self, message):
        self.saves += 1
        return await super().save_message(message)


class FailingStore(InMemoryMessageStore):
    async def save_message(self, message):
        raise ConnectionError("store down")

    async def get_recent_messages(self, room, limit=50):
        raise ConnectionError("store down")


class SlowStore(InMemoryMessageStore):
    """The first save stalls; later ones return immediately."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.calls = 0

    async def save_message(self, message):
        self.calls += 1
        if self.calls == 1:
            await anyio.sleep(self.delay)
        return await super().save_message(message)


async def join(broker, connection, room, username):
    await broker.join_room(connection, JoinRoomPayload(room=room, username=username))


class TestValidation:
    async def test_201_chars_is_dropped(self, make_broker, connect) -> None:
        store = CountingStore()
        broker = await make_broker(store=store)
        alice, ws = await connect(broker)
        await join(broker, alice, "general", "alice")

        result = await broker.router.send("x" * 201, "alice", "general")

        assert result is None
        assert ws.events("chat-message") == []
        assert "general" not in broker.router.buffers
        assert store.saves == 0

    async def test_200_chars_is_accepted(self, broker, connect) -> None:
        alice, ws = await connect(broker)
        await join(broker, alice, "general", "alice")

        result = await broker.router.send("x" * 200, "alice", "general")

        assert result is not None
        assert ws.events("chat-message")[0]["text"] == "x" * 200

    @pytest.mark.parametrize("text", ["", "   \n", 42, None, ["hi"]])
    async def test_invalid_text_is_dropped(self, broker, text) -> None:
        assert await broker.router.send(text, "alice", "general") is None
        assert broker.router.message_counter == 0

    async def test_markup_is_escaped(self, broker, connect) -> None:
        alice, ws = await connect(broker)
        await join(broker, alice, "general", "alice")

        await broker.router.send("<b>hi</b>", "alice", "general")

        assert ws.events("chat-message")[0]["text"] == "&lt;b&gt;hi&lt;/b&gt;"


class TestStamping:
    async def test_room_defaults(self, broker, connect) -> None:
        assert (await broker.router.send("hi", "alice")).room == "global"
        assert (await broker.router.send("hi", "alice", current_room="random")).room == "random"
        assert (await broker.router.send("hi", "alice", "general", current_room="random")).room == "general"

    async def test_timestamp_kept_or_assigned(self, broker) -> None:
        given = await broker.router.send("hi", "alice", timestamp="2024-01-01T00:00:00+00:00")
        assigned = await broker.router.send("hi", "alice")
        assert given.timestamp == "2024-01-01T00:00:00+00:00"
        assert assigned.timestamp

    async def test_unknown_room_is_dropped(self, broker) -> None:
        for i in range(20):
            assert await broker.router.send("hi", "alice", f"nope{i}") is None

        assert broker.router.buffers == {}
        assert not any(name.startswith("nope") for name in broker.router._locks)
        assert broker.router.message_counter == 0

    async def test_unknown_room_not_replayed_after_creation(self, make_broker, connect) -> None:
        broker = await make_broker(store=None)
        await broker.router.send("early", "mallory", "lounge")
        alice, ws = await connect(broker)

        await join(broker, alice, "lounge", "alice")

        assert ws.events("message-history") == [[]]

    async def test_reply_is_classified(self, broker, connect) -> None:
        alice, ws = await connect(broker)
        await join(broker, alice, "general", "alice")

        original = await broker.router.send("first", "alice", "general")
        reply = ReplyContext(message_id=original.id, username="alice", text="first")
        await broker.chat_message(alice, ChatMessagePayload(user_msg="second", reply_to=reply))

        first, second = ws.events("chat-message")
        assert first["messageType"] == "message"
        assert second["messageType"] == "reply"
        assert second["replyTo"]["messageId"] == original.id
        assert second["username"] == "alice"


class TestBroadcast:
    async def test_only_room_members_receive(self, broker, connect) -> None:
        alice, ws_alice = await connect(broker)
        bob, ws_bob = await connect(broker)
        carol, ws_carol = await connect(broker)
        await join(broker, alice, "general", "alice")
        await join(broker, bob, "general", "bob")
        await join(broker, carol, "random", "carol")

        await broker.chat_message(alice, ChatMessagePayload(user_msg="hello"))

        assert [m["text"] for m in ws_alice.events("chat-message")] == ["hello"]
        assert [m["text"] for m in ws_bob.events("chat-message")] == ["hello"]
        assert ws_carol.events("chat-message") == []

    async def test_fifo_per_room_while_store_is_slow(self, make_broker, connect) -> None:
        broker = await make_broker(store=SlowStore(delay=0.05))
        alice, ws = await connect(broker)
        await join(broker, alice, "general", "alice")

        async with anyio.create_task_group() as tg:
            tg.start_soon(broker.router.send, "one", "alice", "general")
            await anyio.sleep(0.01)
            tg.start_soon(broker.router.send, "two", "alice", "general")

        assert [m["text"] for m in ws.events("chat-message")] == ["one", "two"]
        assert [m["id"] for m in ws.events("chat-message")] == ["1", "2"]


class TestDeleteDuringSend:
    async def test_message_saved_mid_delete_is_purged(self, make_broker, connect) -> None:
        store = SlowStore(delay=0.1)
        broker = await make_broker(store=store)
        await broker.create_room(CreateRoomRequest(name="demo"))
        alice, ws = await connect(broker)
        await join(broker, alice, "demo", "alice")
        results = []

        async def send() -> None:
            results.append(await broker.router.send("secret plan", "alice", "demo"))

        async with anyio.create_task_group() as tg:
            tg.start_soon(send)
            await anyio.sleep(0.02)
            tg.start_soon(broker.delete_room, "demo")

        assert results == [None]
        assert ws.events("chat-message") == []
        assert "demo" not in broker.router.buffers
        assert await store.get_message_count("demo") == 0

        await broker.create_room(CreateRoomRequest(name="demo"))
        assert await broker.router.history_for("demo") == []


class TestPersistence:
    async def test_persisted_room_gets_durable_id(self, broker, store) -> None:
        message = await broker.router.send("hi", "alice", "general")

        assert message.id == "1"
        assert await store.get_message_count("general") == 1
        assert broker.room_manager.get_room_by_name("general").message_count == 1
        assert (await store.get_room_by_name("general")).message_count == 1

    async def test_memory_only_room_gets_ephemeral_id(self, broker, store) -> None:
        await broker.create_room(CreateRoomRequest(name="demo", persist_messages=False))

        message = await broker.router.send("hi", "alice", "demo")

        assert message.id.startswith("local-")
        assert await store.get_message_count("demo") == 0
        assert list(broker.router.buffers["demo"]) == [message]

    async def test_store_failure_degrades_to_memory(self, make_broker, connect) -> None:
        broker = await make_broker(store=FailingStore())
        alice, ws = await connect(broker)
        await join(broker, alice, "general", "alice")

        message = await broker.router.send("still here", "alice", "general")

        assert message.id.startswith("local-")
        assert ws.events("chat-message")[0]["text"] == "still here"
        assert [m.text for m in await broker.router.history_for("general")] == ["still here"]

    async def test_slow_store_times_out(self, make_broker) -> None:
        broker = await make_broker(store=SlowStore(delay=1.0), PERSIST_TIMEOUT_SECONDS=0.05)

        message = await broker.router.send("hi", "alice", "general")

        assert message.id.startswith("local-")
        assert len(broker.router.buffers["general"]) == 1

    async def test_unsaveable_text_still_delivered(self, broker, store) -> None:
        # 200 '<' expand to 800 chars after escaping, beyond the stored cap
        message = await broker.router.send("<" * 200, "alice", "general")

        assert message.id.startswith("local-")
        assert await store.get_message_count("general") == 0

    async def test_no_store(self, make_broker) -> None:
        broker = await make_broker(store=None)
        message = await broker.router.send("hi", "alice", "general")
        assert message.id.startswith("local-")


class TestRingBuffer:
    async def test_capacity_evicts_oldest(self, make_broker) -> None:
        broker = await make_broker(store=None)

        for i in range(101):
            await broker.router.send(f"m{i}", "alice", "general")

        buffer = broker.router.buffers["general"]
        assert len(buffer) == 100
        assert [m.text for m in buffer] == [f"m{i}" for i in range(1, 101)]

    async def test_buffers_are_per_room(self, make_broker) -> None:
        broker = await make_broker(store=None, ROOM_HISTORY_SIZE=3)
        for i in range(5):
            await broker.router.send(f"g{i}", "alice", "general")
        await broker.router.send("r0", "alice", "random")

        assert [m.text for m in broker.router.buffers["general"]] == ["g2", "g3", "g4"]
        assert [m.text for m in broker.router.buffers["random"]] == ["r0"]


class TestHistory:
    async def test_prefers_store_for_persisted_rooms(self, broker) -> None:
        for i in range(3):
            await broker.router.send(f"m{i}", "alice", "general")
        broker.router.buffers.clear()

        history = await broker.router.history_for("general")

        assert [m.text for m in history] == ["m0", "m1", "m2"]

    async def test_stored_history_limited_to_most_recent(self, broker) -> None:
        for i in range(60):
            await broker.router.send(f"m{i}", "alice", "general")

        history = await broker.router.history_for("general")

        assert len(history) == 50
        assert history[0].text == "m10"
        assert history[-1].text == "m59"

    async def test_memory_room_uses_buffer(self, broker) -> None:
        await broker.create_room(CreateRoomRequest(name="demo", persist_messages=False))
        await broker.router.send("a", "alice", "demo")
        await broker.router.send("b", "alice", "demo")

        assert [m.text for m in await broker.router.history_for("demo")] == ["a", "b"]

    async def test_history_sent_once_on_join(self, broker, connect) -> None:
        await broker.router.send("earlier", "bob", "general")
        alice, ws = await connect(broker)

        await join(broker, alice, "general", "alice")

        histories = ws.events("message-history")
        assert len(histories) == 1
        assert [m["text"] for m in histories[0]] == ["earlier"]

    async def test_history_disabled(self, make_broker, store) -> None:
        broker = await make_broker(store=store, KEEP_HISTORY=False)

        await broker.router.send("hi", "alice", "general")

        assert await broker.router.history_for("general") == []
        assert await store.get_message_count("general") == 0


class TestSystemMessages:
    async def test_announce(self, broker, connect) -> None:
        alice, ws = await connect(broker)
        await join(broker, alice, "general", "alice")

        message = await broker.announce("general", "Maintenance at <noon>")

        event = ws.events("chat-message")[0]
        assert event["messageType"] == "system"
        assert event["username"] == "System"
        assert event["text"] == "Maintenance at &lt;noon&gt;"
        assert event["id"] == message.id
