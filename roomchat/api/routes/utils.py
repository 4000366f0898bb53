# roomchat/api/routes/utils.py

from __future__ import annotations

from fastapi import HTTPException

from roomchat.core.errors import (
    ChatError,
    DuplicateRoomError,
    InvalidNameError,
    NotFoundError,
    ProtectedRoomError,
)


def http_error(exc: ChatError) -> HTTPException:
    """
    Map a registry error onto the HTTP status the room routes answer with.

        InvalidNameError / DuplicateRoomError -> 400
        ProtectedRoomError                    -> 403
        NotFoundError                         -> 404
    """
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, ProtectedRoomError):
        status = 403
    elif isinstance(exc, (InvalidNameError, DuplicateRoomError)):
        status = 400
    else:
        status = 500
    return HTTPException(status_code=status, detail=str(exc))
