# roomchat/core/errors.py
"""
Error taxonomy for the room broker.

Structural registry errors (invalid/duplicate names, protected rooms) surface
to the caller of the administrative operation. Access errors are turned into
``room-error`` events for the requesting connection. Persistence errors are
logged and degrade to memory-only behaviour.
"""


class ChatError(Exception):
    """Base class for every error raised by the broker."""


class InvalidNameError(ChatError):
    pass


class DuplicateRoomError(ChatError):
    pass


class NotFoundError(ChatError):
    pass


class MessageNotFoundError(NotFoundError):
    pass


class ProtectedRoomError(ChatError):
    pass


class AccessDeniedError(ChatError):
    """A join was refused. ``client_message`` is what the client is shown."""

    client_message = "Access denied"

    def __init__(self, room_name: str = ""):
        super().__init__(f"{self.client_message}: {room_name}" if room_name else self.client_message)
        self.room_name = room_name


class RoomFullError(AccessDeniedError):
    client_message = "Room is full"


class PasswordRequiredError(AccessDeniedError):
    client_message = "Password required"


class InvalidPasswordError(AccessDeniedError):
    client_message = "Incorrect password"


class PersistenceUnavailableError(ChatError):
    """The message store is missing or failed. Never fatal for delivery."""
