"""Pydantic models for chat state and the WebSocket protocol.

Stored records (Session, ChatMessage) and the client event envelopes live
here. Field names are camelCase because they go over the wire unchanged.
"""
import time
from typing import Annotated, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, Field, TypeAdapter


# =============================================================================
# Stored records
# =============================================================================


class Session(BaseModel):
    """Server-side record for one connected client.

    Attributes:
        id: Connection identity assigned by the server on accept.
        displayName: Name chosen at join time (immutable).
        currentRoom: Group room the session is subscribed to.
        joinedAt: Unix timestamp of the join.
    """
    id: str = Field(..., frozen=True, description="Connection identity")
    displayName: str = Field(..., frozen=True, description="Display name shown in UI")
    currentRoom: Optional[str] = Field(default=None, description="Subscribed room")
    joinedAt: float = Field(default_factory=time.time, frozen=True)

    def public(self) -> dict:
        """Shape used in online-user and member lists."""
        return {"id": self.id, "displayName": self.displayName, "room": self.currentRoom}


class Attachment(BaseModel):
    """Reference to a file the client uploaded elsewhere."""
    ref: str = Field(..., description="Opaque attachment reference (URL or data URI)")
    name: str = Field(..., description="Original file name")


class Reaction(BaseModel):
    userId: str
    reaction: str


class ChatMessage(BaseModel):
    """Complete chat message with all metadata.

    Core fields are frozen once the message is created; only ``reactions``
    and ``readers`` grow afterwards.

    Attributes:
        id: Process-wide, strictly increasing message id.
        senderId: Connection id of the sender.
        senderName: Display name of the sender.
        content: Message text (may be empty for attachments).
        attachment: Optional attachment reference.
        timestamp: Unix timestamp (seconds since epoch).
        room: Room the message belongs to, None for private messages.
        isPrivate: True for one-to-one messages.
        recipientId: Recipient connection id (private messages only).
        reactions: Reactions in the order they were added.
        readers: Display names that acknowledged the message.
    """
    id: int = Field(..., frozen=True, description="Message id (ordering key)")
    senderId: str = Field(..., frozen=True)
    senderName: str = Field(..., frozen=True)
    content: str = Field(default="", frozen=True)
    attachment: Optional[Attachment] = Field(default=None, frozen=True)
    timestamp: float = Field(default_factory=time.time, frozen=True)
    room: Optional[str] = Field(default=None, frozen=True)
    isPrivate: bool = Field(default=False, frozen=True)
    recipientId: Optional[str] = Field(default=None, frozen=True)
    reactions: List[Reaction] = Field(default_factory=list)
    readers: List[str] = Field(default_factory=list)


# =============================================================================
# Client -> server events
# =============================================================================


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


NonBlankStr = Annotated[str, AfterValidator(_not_blank)]
RoomName = Annotated[str, AfterValidator(_not_blank), AfterValidator(str.strip)]


class JoinEvent(BaseModel):
    type: Literal["join"]
    displayName: NonBlankStr


class SwitchRoomEvent(BaseModel):
    type: Literal["switch_room"]
    room: RoomName


class RoomMessageEvent(BaseModel):
    type: Literal["message"]
    content: NonBlankStr


class PrivateMessageEvent(BaseModel):
    type: Literal["private_message"]
    to: NonBlankStr
    content: NonBlankStr


class AttachmentEvent(BaseModel):
    type: Literal["attachment"]
    ref: NonBlankStr
    name: NonBlankStr
    content: str = ""


class TypingEvent(BaseModel):
    type: Literal["typing"]
    isTyping: bool


class ReactEvent(BaseModel):
    type: Literal["react"]
    messageId: int
    reaction: NonBlankStr


class ReadEvent(BaseModel):
    type: Literal["read"]
    messageId: int


class FetchOlderEvent(BaseModel):
    """Request for the page of messages older than ``before``."""
    type: Literal["fetch_older"]
    room: RoomName
    before: Optional[int] = Field(default=None, description="Exclusive id cursor")
    limit: Optional[int] = Field(default=None, ge=1)
    requestId: Optional[str] = Field(default=None, description="Echoed in the reply")


ClientEvent = Annotated[
    Union[
        JoinEvent,
        SwitchRoomEvent,
        RoomMessageEvent,
        PrivateMessageEvent,
        AttachmentEvent,
        TypingEvent,
        ReactEvent,
        ReadEvent,
        FetchOlderEvent,
    ],
    Field(discriminator="type"),
]

client_event_adapter: TypeAdapter = TypeAdapter(ClientEvent)
