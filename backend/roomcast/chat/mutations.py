"""Reactions and read receipts on existing messages.

Messages are located through the RoomDirectory id index, so the cost of a
mutation does not depend on the number of rooms or the length of their
logs. Missing messages (never existed, evicted, or part of a forgotten
private thread) are dropped without raising.
"""
import logging
from enum import Enum
from typing import Optional

from .rooms import RoomDirectory
from .schemas import ChatMessage, Reaction

logger = logging.getLogger(__name__)


class ReactionPolicy(str, Enum):
    """How repeated reactions from one user are treated.

    Attributes:
        ALLOW_MULTIPLE: Every reaction is appended, duplicates included.
        UNIQUE: A reaction identical to one the user already left is ignored.
    """
    ALLOW_MULTIPLE = "allow_multiple"
    UNIQUE = "unique"


class MessageMutationService:
    """Applies append-only mutations to indexed messages."""

    def __init__(
        self,
        rooms: RoomDirectory,
        reaction_policy: ReactionPolicy = ReactionPolicy.ALLOW_MULTIPLE,
    ) -> None:
        self.rooms = rooms
        self.reaction_policy = ReactionPolicy(reaction_policy)

    def add_reaction(
        self, message_id: int, reaction: str, user_id: str
    ) -> Optional[ChatMessage]:
        """Append a reaction to a message.

        Returns:
            The mutated message, or None if the message was not found or
            the reaction policy rejected a duplicate.
        """
        message = self.rooms.lookup(message_id)
        if message is None:
            logger.debug(f"[Mutations] Reaction dropped: message {message_id} not found")
            return None

        entry = Reaction(userId=user_id, reaction=reaction)
        if self.reaction_policy is ReactionPolicy.UNIQUE and entry in message.reactions:
            logger.debug(
                f"[Mutations] Duplicate reaction {reaction!r} by {user_id} on {message_id} ignored"
            )
            return None

        message.reactions.append(entry)
        return message

    def mark_read(self, message_id: int, reader_name: str) -> Optional[ChatMessage]:
        """Record that ``reader_name`` has read a message.

        Returns:
            The mutated message, or None if it was not found or the reader
            was already recorded (idempotent).
        """
        message = self.rooms.lookup(message_id)
        if message is None:
            logger.debug(f"[Mutations] Read receipt dropped: message {message_id} not found")
            return None
        if reader_name in message.readers:
            return None
        message.readers.append(reader_name)
        return message
