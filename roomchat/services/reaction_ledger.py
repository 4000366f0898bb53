# roomchat/services/reaction_ledger.py

from __future__ import annotations

import asyncio
import bisect
import logging
from typing import Dict, List, Optional, Tuple

from roomchat.core.errors import MessageNotFoundError, PersistenceUnavailableError
from roomchat.models.models import ChatMessage
from roomchat.services.message_router import MessageRouter
from roomchat.services.message_store import MessageStore

logger = logging.getLogger(__name__)

Reactions = Dict[str, List[str]]


def toggle_reaction(reactions: Reactions, emoji: str, username: str) -> Reactions:
    """
    Return a new reaction map with ``username`` toggled under ``emoji``.

    Removing the last user drops the emoji key; an emoji is never kept with
    an empty list. Usernames are inserted in sorted position, so toggling the
    same (emoji, username) twice gives back the original map whichever user
    it was. The input map is left untouched.
    """
    updated = {key: list(users) for key, users in reactions.items()}
    users = updated.get(emoji, [])
    if username in users:
        users.remove(username)
        if users:
            updated[emoji] = users
        else:
            updated.pop(emoji, None)
    else:
        bisect.insort(users, username)
        updated[emoji] = users
    return updated


class ReactionLedger:
    """
    Emoji reactions on stored messages.

    Only messages with a durable id (i.e. saved by the store) can carry
    reactions. Toggles are serialized so each read-modify-write is applied
    as a whole.
    """

    def __init__(
        self,
        store: Optional[MessageStore],
        router: MessageRouter,
        persist_timeout: float = 5.0,
    ) -> None:
        self.store = store
        self.router = router
        self.persist_timeout = persist_timeout
        self._lock = asyncio.Lock()

    async def toggle(self, message_id: str, emoji: str, username: str) -> Tuple[ChatMessage, Reactions]:
        """
        Toggle ``username``'s ``emoji`` reaction on a message.

        Returns:
            (message, full reaction map after the toggle)

        Raises:
            PersistenceUnavailableError: no usable store, or a store call
                took longer than persist_timeout
            MessageNotFoundError: the store does not know ``message_id``
        """
        if self.store is None or not self.store.available:
            raise PersistenceUnavailableError("Reactions need a message store")

        async with self._lock:
            try:
                message = await asyncio.wait_for(self.store.get_message(message_id), self.persist_timeout)
                if message is None:
                    raise MessageNotFoundError(f"Message not found: {message_id}")

                reactions = toggle_reaction(message.reactions, emoji, username)
                await asyncio.wait_for(
                    self.store.update_reactions(message_id, reactions), self.persist_timeout
                )
            except asyncio.TimeoutError as e:
                raise PersistenceUnavailableError(f"Store timed out on message {message_id}") from e

        self.router.apply_reactions(message.room, message_id, reactions)
        logger.info("Reaction|%s|%s|%s|", username, emoji, message_id)
        return message.model_copy(update={"reactions": reactions}), reactions
