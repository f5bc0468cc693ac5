"""Room directory: room membership, per-room logs and the message index.

The directory is the only owner of message ids. Every message, room or
private, gets its id from ``next_message_id()`` and is registered in a
single id -> message index so reactions and read receipts can find it
without scanning rooms.
"""
import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Optional, Set

from .message_log import MessageLog
from .schemas import ChatMessage

logger = logging.getLogger(__name__)


@dataclass
class Room:
    """A named broadcast scope with its own ordered log."""
    name: str
    log: MessageLog
    members: Set[str] = field(default_factory=set)


def _thread_key(a: str, b: str) -> FrozenSet[str]:
    return frozenset((a, b))


class RoomDirectory:
    """Mapping from room name to its Message Log and current member set.

    Args:
        max_room_history: Per-room (and per private thread) retention limit,
            0 for unlimited.
    """

    def __init__(self, max_room_history: int = 0) -> None:
        self.max_room_history = max_room_history
        self._rooms: Dict[str, Room] = {}
        self._index: Dict[int, ChatMessage] = {}
        # {a, b} -> messages exchanged privately between two connections
        self._private_threads: Dict[FrozenSet[str], List[ChatMessage]] = {}
        self._ids = itertools.count(1)

    # =========================================================================
    # Rooms and membership
    # =========================================================================

    def get(self, name: str) -> Optional[Room]:
        return self._rooms.get(name)

    def ensure(self, name: str) -> Room:
        """Return the room, creating it on first reference."""
        room = self._rooms.get(name)
        if room is None:
            room = Room(name=name, log=MessageLog(self.max_room_history))
            self._rooms[name] = room
            logger.info(f"[Rooms] Created room {name}")
        return room

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def add_member(self, name: str, session_id: str) -> Room:
        room = self.ensure(name)
        room.members.add(session_id)
        return room

    def remove_member(self, name: Optional[str], session_id: str) -> None:
        if name is None:
            return
        room = self._rooms.get(name)
        if room is not None:
            room.members.discard(session_id)

    def list_members(self, name: str) -> Set[str]:
        """Return the ids of the sessions currently subscribed to a room."""
        room = self._rooms.get(name)
        return set(room.members) if room else set()

    # =========================================================================
    # Messages
    # =========================================================================

    def next_message_id(self) -> int:
        return next(self._ids)

    def append(self, name: str, message: ChatMessage) -> ChatMessage:
        """Append a room message and index it by id."""
        room = self.ensure(name)
        evicted = room.log.append(message)
        self._index[message.id] = message
        for old in evicted:
            self._index.pop(old.id, None)
        if evicted:
            logger.debug(f"[Rooms] Evicted {len(evicted)} message(s) from room {name}")
        return message

    def record_private(self, message: ChatMessage) -> ChatMessage:
        """Keep a private message reachable by id without touching any room log."""
        key = _thread_key(message.senderId, message.recipientId or message.senderId)
        thread = self._private_threads.setdefault(key, [])
        thread.append(message)
        self._index[message.id] = message
        if self.max_room_history and len(thread) > self.max_room_history:
            overflow = len(thread) - self.max_room_history
            for old in thread[:overflow]:
                self._index.pop(old.id, None)
            del thread[:overflow]
        return message

    def lookup(self, message_id: int) -> Optional[ChatMessage]:
        """Find a retained message (room or private) by id."""
        return self._index.get(message_id)

    def history(self, name: str) -> List[ChatMessage]:
        room = self._rooms.get(name)
        return room.log.all() if room else []

    def page_before(
        self, name: str, cursor_id: Optional[int], page_size: int
    ) -> List[ChatMessage]:
        """Page backwards through a room log; unknown rooms yield an empty page."""
        room = self._rooms.get(name)
        if room is None:
            return []
        return room.log.page_before(cursor_id, page_size)

    def has_before(self, name: str, cursor_id: int) -> bool:
        room = self._rooms.get(name)
        return room.log.has_before(cursor_id) if room else False

    def drop_private_threads(self, session_id: str) -> int:
        """Forget every private thread involving a departed connection.

        Returns:
            Number of messages removed from the index.
        """
        removed = 0
        for key in [k for k in self._private_threads if session_id in k]:
            for message in self._private_threads.pop(key):
                self._index.pop(message.id, None)
                removed += 1
        return removed

    def snapshot(self) -> Dict[str, List[dict]]:
        """Room name -> serialized log, for read-only introspection."""
        return {
            room.name: [m.model_dump() for m in room.log.all()]
            for room in self
        }
