"""Read-only introspection REST API router.

Endpoints:
    GET /api/users                 - Online users
    GET /api/rooms                 - Room -> message log snapshot
    GET /api/rooms/{room}/members  - Members of one room

These are diagnostic snapshots; clients get real-time updates over the
WebSocket, never by polling here.
"""
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .hub import get_hub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["introspection"])


class OnlineUser(BaseModel):
    """Response model for one online session."""
    id: str
    displayName: str
    room: Optional[str] = None


class RoomMembersResponse(BaseModel):
    """Response model for a room's member list."""
    room: str
    users: List[OnlineUser]


@router.get("/users", response_model=List[OnlineUser])
async def list_online_users() -> List[OnlineUser]:
    """List every registered session.

    Returns:
        Online users in join order.
    """
    return [OnlineUser(**u) for u in get_hub().online_users()]


@router.get("/rooms")
async def rooms_snapshot() -> JSONResponse:
    """Snapshot of every room's message log.

    Returns:
        JSON object mapping room name to its messages, oldest first.
    """
    snapshot: Dict[str, List[dict]] = get_hub().rooms.snapshot()
    logger.debug(f"[Introspection] Rooms snapshot: {len(snapshot)} room(s)")
    return JSONResponse(snapshot)


@router.get("/rooms/{room}/members", response_model=RoomMembersResponse)
async def room_members(room: str) -> RoomMembersResponse:
    """List the sessions currently subscribed to a room.

    Args:
        room: The room name.

    Returns:
        RoomMembersResponse (empty for unknown rooms).
    """
    users = [OnlineUser(**u) for u in get_hub().room_users(room)]
    return RoomMembersResponse(room=room, users=users)
