"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - GET /chat/{room}/history: Paginated message history
    - WebSocket /ws/chat: Real-time chat messaging

The WebSocket protocol supports:
    - Server-assigned connection identity on connect
    - Join, room switching and room history delivery
    - Room and private messages, attachments
    - Typing indicators
    - Reactions and read receipts
    - Backward pagination with request ids

Protocol Message Types (client -> server):
    - join: Session registration
    - switch_room: Leave the current room, enter another
    - message: Room message
    - private_message: One-to-one message
    - attachment: Room message with an attachment reference
    - typing: Typing indicator (start/stop)
    - react: Add a reaction to a message
    - read: Mark a message as read
    - fetch_older: Request an older page of a room's history
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from .hub import get_hub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/chat/{room}/history")
async def get_message_history(
    room: str,
    before: Optional[int] = Query(None, description="Message id cursor (get messages older than this id)"),
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
) -> JSONResponse:
    """Get paginated message history for a room.

    Clients fetch older messages by passing the id of the oldest message
    they currently hold as `before`. A page shorter than `limit` means the
    start of the room's log was reached.

    Args:
        room: The room name.
        before: Exclusive id cursor. If not provided, returns the newest page.
        limit: Maximum number of messages (capped by chat.max_page_size).

    Returns:
        JSON with messages array and hasMore boolean.

    Example:
        GET /chat/global/history?limit=50
        GET /chat/global/history?before=120&limit=50
    """
    return JSONResponse({"room": room, **get_hub().page(room, before, limit)})


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time chat.

    Protocol Flow:
        1. Client connects -> Server assigns a connection id
           -> Server sends: {type: "connected", connectionId: "xxx"}
        2. Client sends: {type: "join", displayName}
           -> All sessions: {type: "online_users"}, {type: "user_joined"}
           -> Joiner: {type: "room_history", room, messages}
           -> Room: {type: "room_users", room, users}
        3. Client sends: {type: "message", content}
           -> Room: {type: "message", ...fullMessage}
        4. Client sends: {type: "fetch_older", room, before, limit, requestId}
           -> Requester: {type: "older_messages", messages, hasMore, requestId}
        5. On disconnect -> All sessions: {type: "user_left"}, {type: "online_users"}

    Invalid frames get {type: "error", error, requestType} back and change
    nothing.
    """
    hub = get_hub()
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    logger.info(f"[WS] Connection accepted. Assigned connectionId={connection_id}")
    await hub.connect(connection_id, websocket)

    try:
        # Main message loop
        while True:
            raw = await websocket.receive_text()
            await hub.handle(connection_id, raw)
    except WebSocketDisconnect:
        logger.info(f"[WS] Client {connection_id} disconnected")
    finally:
        # Runs for abnormal exits too so no registry keeps the connection.
        session = await hub.disconnect(connection_id)
        if session is not None:
            logger.info(
                f"[WS] {session.displayName} left. "
                f"{len(hub.sessions)} session(s) still online"
            )
