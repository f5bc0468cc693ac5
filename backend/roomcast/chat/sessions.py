"""Session registry: who is online and which room they are in.

The registry is the single source of truth for session records. It keeps
room membership in the RoomDirectory consistent with each session's
``currentRoom``: every transition here updates both sides before returning.
"""
import logging
from typing import Dict, List, Optional, Tuple

from .rooms import RoomDirectory
from .schemas import ChatMessage, Session

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Maps connection ids to Session records.

    Args:
        rooms: Directory whose membership sets this registry maintains.
        default_room: Room every new session starts in.
    """

    def __init__(self, rooms: RoomDirectory, default_room: str = "global") -> None:
        self.rooms = rooms
        self.default_room = default_room
        self._sessions: Dict[str, Session] = {}

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def all(self) -> List[Session]:
        """All sessions in join order."""
        return list(self._sessions.values())

    def online_users(self) -> List[dict]:
        return [s.public() for s in self._sessions.values()]

    def in_room(self, room: str) -> List[Session]:
        """Sessions subscribed to a room, in join order."""
        members = self.rooms.list_members(room)
        return [s for s in self._sessions.values() if s.id in members]

    def join(self, connection_id: str, display_name: str) -> Session:
        """Register a new session in the default room.

        Raises:
            KeyError: If the connection already has a session.
        """
        if connection_id in self._sessions:
            raise KeyError(connection_id)

        session = Session(
            id=connection_id,
            displayName=display_name,
            currentRoom=self.default_room,
        )
        self._sessions[connection_id] = session
        self.rooms.add_member(self.default_room, connection_id)
        logger.info(f"[Sessions] {display_name} ({connection_id}) joined {self.default_room}")
        return session

    def leave(self, connection_id: str) -> Optional[Session]:
        """Remove a session and its room membership.

        Unknown connections are tolerated: the call is a no-op returning None.
        """
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return None
        self.rooms.remove_member(session.currentRoom, connection_id)
        logger.info(f"[Sessions] {session.displayName} ({connection_id}) left")
        return session

    def switch_room(
        self, connection_id: str, room_name: str
    ) -> Optional[Tuple[Session, Optional[str], List[ChatMessage]]]:
        """Move a session to another room, creating the room if needed.

        Returns:
            Tuple of (session, previous_room, target_room_history), or None
            if the connection has no session.
        """
        session = self._sessions.get(connection_id)
        if session is None:
            return None

        previous = session.currentRoom
        self.rooms.remove_member(previous, connection_id)
        self.rooms.add_member(room_name, connection_id)
        session.currentRoom = room_name
        logger.info(
            f"[Sessions] {session.displayName} switched room {previous} -> {room_name}"
        )
        return session, previous, self.rooms.history(room_name)
