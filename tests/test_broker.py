"""End-to-end broker scenarios driven through connection events."""

import pytest

from roomchat.core.errors import NotFoundError, ProtectedRoomError
from roomchat.models.models import (
    ChatMessagePayload,
    CreateRoomRequest,
    JoinRoomPayload,
    Room,
    UpdateRoomRequest,
)
from roomchat.services.access_guard import hash_password
from roomchat.services.message_store import InMemoryMessageStore

pytestmark = pytest.mark.anyio


async def join(broker, connection, room, username, password=None):
    return await broker.join_room(
        connection, JoinRoomPayload(room=room, username=username, password=password)
    )


class TestCapacityScenario:
    async def test_demo_room_with_one_slot(self, broker, connect) -> None:
        await broker.create_room(CreateRoomRequest(name="demo", max_users=1, persist_messages=False))
        a, ws_a = await connect(broker)
        b, ws_b = await connect(broker)

        assert await join(broker, a, "demo", "alice")
        assert not await join(broker, b, "demo", "bob")
        assert ws_b.events("room-error") == [{"message": "Room is full"}]
        assert broker.room_manager.usernames_in("demo") == ["alice"]
        assert ws_b.events("message-history") == []

        await broker.chat_message(a, ChatMessagePayload(user_msg="hi"))
        assert [m["text"] for m in ws_a.events("chat-message")] == ["hi"]
        assert ws_b.events("chat-message") == []

        await broker.disconnect(a)
        assert await join(broker, b, "demo", "bob")
        assert broker.room_manager.usernames_in("demo") == ["bob"]

    async def test_refused_join_keeps_current_room(self, broker, connect) -> None:
        await broker.create_room(CreateRoomRequest(name="demo", max_users=1))
        a, _ = await connect(broker)
        b, _ = await connect(broker)
        await join(broker, a, "demo", "alice")
        await join(broker, b, "general", "bob")

        assert not await join(broker, b, "demo", "bob")
        assert b.room == "general"


class TestPasswordScenario:
    async def test_secret_room(self, broker, connect) -> None:
        await broker.create_room(CreateRoomRequest(name="vault", password="secret"))
        assert broker.room_manager.get_room_by_name("vault").password_hash == hash_password("secret")
        conn, ws = await connect(broker)

        assert not await join(broker, conn, "vault", "alice")
        assert not await join(broker, conn, "vault", "alice", password="wrong")
        assert ws.events("room-error") == [
            {"message": "Password required"},
            {"message": "Incorrect password"},
        ]
        assert broker.room_manager.usernames_in("vault") == []

        assert await join(broker, conn, "vault", "alice", password="secret")
        assert broker.room_manager.usernames_in("vault") == ["alice"]


class TestJoin:
    async def test_switch_is_single_membership(self, broker, connect, store) -> None:
        conn, _ = await connect(broker)
        await join(broker, conn, "general", "alice")
        await join(broker, conn, "random", "alice")

        assert broker.room_manager.usernames_in("general") == []
        assert broker.room_manager.usernames_in("random") == ["alice"]
        assert store.active_users("general") == []
        assert store.active_users("random") == ["alice"]

    async def test_rejoin_same_room_is_idempotent(self, broker, connect) -> None:
        conn, ws = await connect(broker)
        await join(broker, conn, "general", "alice")
        await join(broker, conn, "general", "alice")

        assert broker.room_manager.usernames_in("general") == ["alice"]
        assert len(ws.events("message-history")) == 2

    async def test_unknown_room_is_created(self, broker, connect, store) -> None:
        conn, _ = await connect(broker)

        assert await join(broker, conn, " lounge ", "alice")

        room = broker.room_manager.get_room_by_name("lounge")
        assert room.created_by == "alice"
        assert await store.get_room_by_name("lounge") is not None

    async def test_invalid_room_name_is_dropped(self, broker, connect) -> None:
        conn, ws = await connect(broker)

        assert not await join(broker, conn, "x" * 51, "alice")
        assert ws.sent == []

    async def test_message_lands_in_current_room(self, broker, connect) -> None:
        conn, _ = await connect(broker)
        await join(broker, conn, "random", "alice")

        message = await broker.chat_message(conn, ChatMessagePayload(user_msg="hi", username="mallory"))

        assert message.room == "random"
        assert message.username == "alice"


class TestDisconnect:
    async def test_disconnect_leaves_room(self, broker, connect, store) -> None:
        conn, _ = await connect(broker)
        await join(broker, conn, "general", "alice")

        await broker.disconnect(conn)

        assert broker.room_manager.room_of(conn.id) is None
        assert broker.connection_manager.get(conn.id) is None
        assert store.active_users("general") == []

    async def test_disconnect_without_room(self, broker, connect) -> None:
        conn, _ = await connect(broker)
        await broker.disconnect(conn)
        assert broker.connection_manager.connections == {}

    async def test_failed_send_drops_connection(self, broker, connect) -> None:
        alice, ws_alice = await connect(broker)
        broken, _ = await connect(broker, fail=True)
        await join(broker, alice, "general", "alice")
        broker.room_manager.join("general", broken.id, "ghost")

        await broker.chat_message(alice, ChatMessagePayload(user_msg="hi"))

        assert [m["text"] for m in ws_alice.events("chat-message")] == ["hi"]
        assert broker.connection_manager.get(broken.id) is None


class TestAdministration:
    async def test_bootstrap_loads_stored_rooms(self, make_broker) -> None:
        store = InMemoryMessageStore()
        await store.create_room(Room(name="lounge", max_users=7))

        broker = await make_broker(store=store)

        assert broker.room_manager.get_room_by_name("lounge").max_users == 7
        assert {r.name for r in await store.list_rooms()} == {"lounge", "global", "general", "random"}

    async def test_delete_room_cascades(self, broker, connect, store) -> None:
        await broker.create_room(CreateRoomRequest(name="demo"))
        conn, ws = await connect(broker)
        await join(broker, conn, "demo", "alice")
        await broker.chat_message(conn, ChatMessagePayload(user_msg="hi"))
        assert await store.get_message_count("demo") == 1

        await broker.delete_room("demo")

        assert ws.events("room-deleted") == [{"room": "demo"}]
        assert conn.room is None
        assert await store.get_message_count("demo") == 0
        assert await store.get_room_by_name("demo") is None
        assert "demo" not in broker.router.buffers

    async def test_delete_protected_and_missing(self, broker) -> None:
        with pytest.raises(ProtectedRoomError):
            await broker.delete_room("global")
        with pytest.raises(NotFoundError):
            await broker.delete_room("nowhere")

    async def test_update_room_is_mirrored(self, broker, store) -> None:
        await broker.update_room("general", UpdateRoomRequest(max_users=2))
        assert (await store.get_room_by_name("general")).max_users == 2

    async def test_public_rooms_hide_digest(self, broker, connect) -> None:
        await broker.create_room(CreateRoomRequest(name="vault", password="secret"))
        conn, _ = await connect(broker)
        await join(broker, conn, "vault", "alice", password="secret")

        vault = next(r for r in broker.public_rooms() if r.name == "vault")
        wire = vault.to_wire()
        assert wire["hasPassword"] is True
        assert wire["memberCount"] == 1
        assert "passwordHash" not in wire
