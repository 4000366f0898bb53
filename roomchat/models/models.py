# roomchat/models/models.py
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Outbound event names
USER_LIST = "user-list"
MESSAGE_HISTORY = "message-history"
CHAT_MESSAGE = "chat-message"
USER_TYPING = "user-typing"
USER_STOP_TYPING = "user-stop-typing"
REACTION_UPDATE = "reaction-update"
ROOM_ERROR = "room-error"
ROOM_DELETED = "room-deleted"

MessageType = Literal["message", "reply", "system"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WireModel(BaseModel):
    """Models exchanged with clients use camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class Room(WireModel):
    name: str
    description: str = ""
    is_public: bool = True
    password_hash: Optional[str] = None
    max_users: int = 100
    persist_messages: bool = True
    message_count: int = 0
    created_by: str = "Anonymous"
    created_at: str = Field(default_factory=utc_now_iso)

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)


class RoomSummary(WireModel):
    """Client-facing view of a room: no password digest, live member count."""

    name: str
    description: str = ""
    is_public: bool = True
    has_password: bool = False
    max_users: int = 100
    persist_messages: bool = True
    message_count: int = 0
    created_by: str = "Anonymous"
    created_at: str
    member_count: int = 0

    @classmethod
    def from_room(cls, room: Room, member_count: int) -> "RoomSummary":
        data = room.model_dump(exclude={"password_hash"})
        return cls(**data, has_password=room.has_password, member_count=member_count)


class CreateRoomRequest(WireModel):
    name: str
    description: str = Field(default="", max_length=200)
    created_by: str = "Anonymous"
    is_public: bool = True
    max_users: Optional[int] = Field(default=None, ge=1)
    password: Optional[str] = None
    persist_messages: bool = True


class UpdateRoomRequest(WireModel):
    description: Optional[str] = Field(default=None, max_length=200)
    is_public: Optional[bool] = None
    max_users: Optional[int] = Field(default=None, ge=1)


class ReplyContext(WireModel):
    message_id: str
    username: str = ""
    text: str = ""
    timestamp: Optional[str] = None


class ChatMessage(WireModel):
    id: str
    username: str
    text: str
    room: str
    timestamp: str
    message_type: MessageType = "message"
    reply_to: Optional[ReplyContext] = None
    reactions: Dict[str, List[str]] = Field(default_factory=dict)
    is_edited: bool = False
    edited_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Inbound event payloads
# ---------------------------------------------------------------------------

class JoinRoomPayload(WireModel):
    room: str
    username: str = "Anonymous"
    password: Optional[str] = None


class ChatMessagePayload(WireModel):
    user_msg: str
    room: Optional[str] = None
    timestamp: Optional[str] = None
    reply_to: Optional[ReplyContext] = None
    username: Optional[str] = None


class TypingPayload(WireModel):
    room: Optional[str] = None
    username: Optional[str] = None


class ToggleReactionPayload(WireModel):
    message_id: str
    emoji: str = Field(min_length=1, max_length=32)
    username: Optional[str] = None
    room: Optional[str] = None


class AnnounceRequest(WireModel):
    text: str = Field(min_length=1, max_length=500)
