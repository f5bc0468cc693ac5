"""Chat hub: turns client events into state changes and broadcasts.

The hub composes one instance of each registry (sessions, rooms, presence),
the mutation service and the dispatcher. Every operation follows the same
shape:

    1. read and validate what it needs
    2. apply its mutation synchronously (no await before this point)
    3. await the resulting broadcasts

so a broadcast is never computed from state that changed halfway through
an operation, and disconnect always retracts a session completely before
anything else is published.

Thread Safety:
    Designed for a single asyncio event loop. It is NOT thread-safe.
"""
import json
import logging
from typing import Any, List, Optional

from fastapi import WebSocket
from pydantic import ValidationError

from roomcast.config import AppSettings, ChatSettings, get_config

from .dispatcher import BroadcastDispatcher
from .mutations import MessageMutationService, ReactionPolicy
from .presence import PresenceTracker
from .rooms import RoomDirectory
from .schemas import (
    Attachment,
    AttachmentEvent,
    ChatMessage,
    FetchOlderEvent,
    JoinEvent,
    PrivateMessageEvent,
    ReactEvent,
    ReadEvent,
    RoomMessageEvent,
    Session,
    SwitchRoomEvent,
    TypingEvent,
    client_event_adapter,
)
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)


class ChatError(Exception):
    """A client request the hub refuses; reported back to the sender only."""


class ChatHub:
    """Process-wide coordinator for sessions, rooms and broadcasts.

    Args:
        settings: Chat behaviour settings (defaults when omitted).
        presence: Optional pre-built tracker (tests inject a fake clock).
    """

    def __init__(
        self,
        settings: Optional[ChatSettings] = None,
        presence: Optional[PresenceTracker] = None,
    ) -> None:
        self.settings = settings or ChatSettings()
        self.rooms = RoomDirectory(max_room_history=self.settings.max_room_history)
        self.sessions = SessionRegistry(self.rooms, default_room=self.settings.default_room)
        self.presence = presence or PresenceTracker(
            timeout_seconds=self.settings.typing_timeout_seconds
        )
        self.mutations = MessageMutationService(
            self.rooms, ReactionPolicy(self.settings.reaction_policy)
        )
        self.dispatcher = BroadcastDispatcher(
            self.sessions,
            send_timeout=self.settings.send_timeout_seconds,
            on_drop=self._connection_dropped,
        )
        # The default room always exists, even before anyone joins.
        self.rooms.ensure(self.settings.default_room)

    @classmethod
    def from_config(cls, config: AppSettings) -> "ChatHub":
        return cls(config.chat)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, connection_id: str, websocket: WebSocket) -> None:
        """Attach an accepted WebSocket and tell the client its identity."""
        self.dispatcher.attach(connection_id, websocket)
        await self.dispatcher.unicast(
            connection_id, {"type": "connected", "connectionId": connection_id}
        )

    async def disconnect(self, connection_id: str) -> Optional[Session]:
        """Retract a connection from every registry, then notify the others.

        Safe to call for connections that never joined, and more than once.
        """
        self.dispatcher.detach(connection_id)
        was_typing = self.presence.clear(connection_id)
        session = self.sessions.leave(connection_id)
        if session is None:
            return None
        dropped = self.rooms.drop_private_threads(connection_id)
        if dropped:
            logger.debug(f"[Hub] Forgot {dropped} private message(s) of {connection_id}")

        room = session.currentRoom
        await self.dispatcher.broadcast_all({"type": "user_left", "user": session.public()})
        await self._publish_online_users()
        if room is not None:
            await self._publish_room_users(room)
            if was_typing:
                await self._publish_typing(room)
        return session

    async def _connection_dropped(self, connection_id: str) -> None:
        """A send to this connection failed; retract its session now."""
        session = await self.disconnect(connection_id)
        if session is not None:
            logger.info(
                f"[Hub] {session.displayName} ({connection_id}) dropped after a failed send"
            )

    # =========================================================================
    # Operations
    # =========================================================================

    async def join(self, connection_id: str, display_name: str) -> Session:
        """Register a session in the default room.

        Raises:
            ChatError: Connection already joined, or the name is too long.
        """
        display_name = display_name.strip()
        if len(display_name) > self.settings.max_display_name_length:
            raise ChatError(
                f"Display name exceeds {self.settings.max_display_name_length} characters"
            )
        if connection_id in self.sessions:
            raise ChatError("Session already registered")

        session = self.sessions.join(connection_id, display_name)
        room = session.currentRoom
        history = self.rooms.history(room)

        await self._publish_online_users()
        await self.dispatcher.broadcast_all({"type": "user_joined", "user": session.public()})
        await self._send_room_history(connection_id, room, history)
        await self._publish_room_users(room)
        return session

    async def switch_room(
        self, connection_id: str, room_name: str
    ) -> Optional[List[ChatMessage]]:
        """Move a session to ``room_name`` and send it the room's history.

        Returns:
            The target room's full log, or None for unknown sessions.
        """
        if connection_id not in self.sessions:
            logger.debug(f"[Hub] switch_room from unknown connection {connection_id} ignored")
            return None

        was_typing = self.presence.clear(connection_id)
        _, previous, history = self.sessions.switch_room(connection_id, room_name)

        await self._send_room_history(connection_id, room_name, history)
        if previous is not None and previous != room_name:
            await self._publish_room_users(previous)
        await self._publish_room_users(room_name)
        if was_typing and previous is not None:
            await self._publish_typing(previous)
        return history

    async def send_room_message(
        self,
        connection_id: str,
        content: str,
        attachment: Optional[Attachment] = None,
    ) -> Optional[ChatMessage]:
        """Append a message to the sender's current room and broadcast it."""
        session = self.sessions.get(connection_id)
        if session is None:
            logger.debug(f"[Hub] message from unknown connection {connection_id} ignored")
            return None
        self._check_length(content)
        if session.currentRoom is None:
            raise ChatError("Not in a room")

        message = ChatMessage(
            id=self.rooms.next_message_id(),
            senderId=session.id,
            senderName=session.displayName,
            content=content,
            attachment=attachment,
            room=session.currentRoom,
        )
        self.rooms.append(session.currentRoom, message)

        await self.dispatcher.broadcast_room(
            session.currentRoom, {"type": "message", **message.model_dump()}
        )
        return message

    async def send_attachment(
        self, connection_id: str, ref: str, name: str, content: str = ""
    ) -> Optional[ChatMessage]:
        """Room message carrying an attachment reference; text is optional."""
        return await self.send_room_message(
            connection_id, content, attachment=Attachment(ref=ref, name=name)
        )

    async def send_private_message(
        self, connection_id: str, recipient_id: str, content: str
    ) -> Optional[ChatMessage]:
        """Deliver a one-to-one message to sender and recipient only.

        Raises:
            ChatError: The recipient has no session.
        """
        session = self.sessions.get(connection_id)
        if session is None:
            logger.debug(f"[Hub] private message from unknown connection {connection_id} ignored")
            return None
        self._check_length(content)
        if recipient_id not in self.sessions:
            raise ChatError(f"Unknown recipient: {recipient_id}")

        message = ChatMessage(
            id=self.rooms.next_message_id(),
            senderId=session.id,
            senderName=session.displayName,
            content=content,
            isPrivate=True,
            recipientId=recipient_id,
        )
        self.rooms.record_private(message)

        await self.dispatcher.send_private(
            session.id, recipient_id, {"type": "message", **message.model_dump()}
        )
        return message

    async def set_typing(self, connection_id: str, is_typing: bool) -> bool:
        """Toggle a session's typing flag.

        Returns:
            True if the flag changed and the typing list was re-broadcast.
        """
        session = self.sessions.get(connection_id)
        if session is None:
            return False
        changed = self.presence.set_typing(session.id, session.displayName, is_typing)
        if changed and session.currentRoom is not None:
            await self._publish_typing(session.currentRoom)
        return changed

    async def add_reaction(
        self, connection_id: str, message_id: int, reaction: str
    ) -> Optional[ChatMessage]:
        if connection_id not in self.sessions:
            return None
        message = self.mutations.add_reaction(message_id, reaction, connection_id)
        if message is None:
            return None
        await self._notify_message_audience(message, {
            "type": "reaction_added",
            "messageId": message.id,
            "reaction": reaction,
            "userId": connection_id,
        })
        return message

    async def mark_read(self, connection_id: str, message_id: int) -> Optional[ChatMessage]:
        session = self.sessions.get(connection_id)
        if session is None:
            return None
        message = self.mutations.mark_read(message_id, session.displayName)
        if message is None:
            return None
        await self._notify_message_audience(message, {
            "type": "read_receipt",
            "messageId": message.id,
            "readers": list(message.readers),
        })
        return message

    async def fetch_older_messages(
        self,
        connection_id: str,
        room: str,
        before: Optional[int] = None,
        limit: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> Optional[dict]:
        """Reply to the requester with one page of older room messages."""
        if connection_id not in self.sessions:
            return None
        page = self.page(room, before, limit)
        reply = {"type": "older_messages", "room": room, **page, "requestId": request_id}
        await self.dispatcher.unicast(connection_id, reply)
        return reply

    async def expire_typing(self) -> List[str]:
        """Clear stale typing flags and refresh the affected typing lists."""
        stale = self.presence.expire()
        rooms = set()
        for sid in stale:
            session = self.sessions.get(sid)
            if session is not None and session.currentRoom is not None:
                rooms.add(session.currentRoom)
        targets = sorted(rooms)
        if self.settings.typing_scope == "global":
            # one global list covers every room
            targets = targets[:1]
        for room in targets:
            await self._publish_typing(room)
        return stale

    # =========================================================================
    # Inbound event dispatch
    # =========================================================================

    async def handle(self, connection_id: str, raw: str) -> None:
        """Parse, validate and execute one client frame.

        Invalid frames and refused requests produce an ``error`` event for
        the originating connection only; shared state is left untouched.
        """
        try:
            data: Any = json.loads(raw)
        except ValueError:
            await self._send_error(connection_id, "Invalid JSON", None)
            return

        request_type = data.get("type") if isinstance(data, dict) else None
        try:
            event = client_event_adapter.validate_python(data)
        except ValidationError as exc:
            await self._send_error(
                connection_id,
                f"Invalid {request_type or 'unknown'} payload: {_summarize(exc)}",
                request_type,
            )
            return

        logger.debug(f"[Hub] {connection_id} -> {event.type}")
        try:
            await self._execute(connection_id, event)
        except ChatError as exc:
            logger.info(f"[Hub] Rejected {event.type} from {connection_id}: {exc}")
            await self._send_error(connection_id, str(exc), event.type)

    async def _execute(self, connection_id: str, event: Any) -> None:
        if isinstance(event, JoinEvent):
            await self.join(connection_id, event.displayName)
        elif isinstance(event, SwitchRoomEvent):
            await self.switch_room(connection_id, event.room)
        elif isinstance(event, RoomMessageEvent):
            await self.send_room_message(connection_id, event.content)
        elif isinstance(event, PrivateMessageEvent):
            await self.send_private_message(connection_id, event.to, event.content)
        elif isinstance(event, AttachmentEvent):
            await self.send_attachment(connection_id, event.ref, event.name, event.content)
        elif isinstance(event, TypingEvent):
            await self.set_typing(connection_id, event.isTyping)
        elif isinstance(event, ReactEvent):
            await self.add_reaction(connection_id, event.messageId, event.reaction)
        elif isinstance(event, ReadEvent):
            await self.mark_read(connection_id, event.messageId)
        elif isinstance(event, FetchOlderEvent):
            await self.fetch_older_messages(
                connection_id, event.room, event.before, event.limit, event.requestId
            )

    # =========================================================================
    # Read-only views
    # =========================================================================

    def page(
        self, room: str, before: Optional[int] = None, limit: Optional[int] = None
    ) -> dict:
        """One page of room history plus whether older messages remain."""
        limit = min(limit or self.settings.default_page_size, self.settings.max_page_size)
        messages = self.rooms.page_before(room, before, limit)
        has_more = bool(messages) and self.rooms.has_before(room, messages[0].id)
        return {"messages": [m.model_dump() for m in messages], "hasMore": has_more}

    def online_users(self) -> List[dict]:
        return self.sessions.online_users()

    def room_users(self, room: str) -> List[dict]:
        return [s.public() for s in self.sessions.in_room(room)]

    def typing_names(self, room: str) -> List[str]:
        if self.settings.typing_scope == "global":
            return self.presence.all_names()
        return self.presence.names_for(self.rooms.list_members(room))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_length(self, content: str) -> None:
        if len(content) > self.settings.max_message_length:
            raise ChatError(
                f"Message exceeds {self.settings.max_message_length} characters"
            )

    async def _publish_online_users(self) -> None:
        await self.dispatcher.broadcast_all(
            {"type": "online_users", "users": self.online_users()}
        )

    async def _publish_room_users(self, room: str) -> None:
        await self.dispatcher.broadcast_room(
            room, {"type": "room_users", "room": room, "users": self.room_users(room)}
        )

    async def _publish_typing(self, room: str) -> None:
        if self.settings.typing_scope == "global":
            await self.dispatcher.broadcast_all(
                {"type": "typing_users", "room": None, "users": self.presence.all_names()}
            )
            return
        await self.dispatcher.broadcast_room(
            room, {"type": "typing_users", "room": room, "users": self.typing_names(room)}
        )

    async def _send_room_history(
        self, connection_id: str, room: str, history: List[ChatMessage]
    ) -> None:
        await self.dispatcher.unicast(connection_id, {
            "type": "room_history",
            "room": room,
            "messages": [m.model_dump() for m in history],
        })

    async def _notify_message_audience(self, message: ChatMessage, event: dict) -> None:
        if message.isPrivate:
            await self.dispatcher.send_private(message.senderId, message.recipientId, event)
        else:
            await self.dispatcher.broadcast_room(message.room, event)

    async def _send_error(
        self, connection_id: str, error: str, request_type: Optional[str]
    ) -> None:
        await self.dispatcher.unicast(
            connection_id, {"type": "error", "error": error, "requestType": request_type}
        )


def _summarize(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


# =============================================================================
# Process-wide instance
# =============================================================================

_hub: Optional[ChatHub] = None


def get_hub() -> ChatHub:
    """Return the process-wide hub, building it from config on first use."""
    global _hub
    if _hub is None:
        _hub = ChatHub.from_config(get_config())
    return _hub


def set_hub(hub: Optional[ChatHub]) -> None:
    """Set (or clear) the process-wide hub."""
    global _hub
    _hub = hub
