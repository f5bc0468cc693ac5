"""Audience resolution and delivery of server -> client events.

Audiences:
    - everyone: every registered session (online list, join/leave notices)
    - room: sessions whose currentRoom is the target room
    - private: exactly the sender and the recipient

Ordering:
    The audience is resolved synchronously when a publish call starts, and
    each connection has its own FIFO send lock. Since every hub operation
    mutates state before its first await, events reach each connection in
    the order the mutations happened, and a slow peer only delays itself.

Performance Notes:
    - Delivery within one event uses asyncio.gather() across connections
    - A send that fails or exceeds the timeout drops the connection: it is
      detached, its socket is closed and the ``on_drop`` callback runs
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from fastapi import WebSocket

from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

# Close code sent to a peer that could not keep up
CLOSE_SEND_FAILED = 1011


class BroadcastDispatcher:
    """Delivers events to the connections of an audience.

    Args:
        sessions: Registry used to resolve global and room audiences.
        send_timeout: Seconds a single send may take before the connection
            is considered dead.
        on_drop: Awaited with the connection id after a failed send has
            detached and closed that connection.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        send_timeout: float = 5.0,
        on_drop: Optional[Callable[[str], Awaitable[object]]] = None,
    ) -> None:
        self.sessions = sessions
        self.send_timeout = send_timeout
        self.on_drop = on_drop
        # connection_id -> WebSocket
        self.connections: Dict[str, WebSocket] = {}
        # connection_id -> lock serializing sends to that connection
        self._send_locks: Dict[str, asyncio.Lock] = {}

    # =========================================================================
    # Connection bookkeeping
    # =========================================================================

    def attach(self, connection_id: str, websocket: WebSocket) -> None:
        self.connections[connection_id] = websocket
        self._send_locks[connection_id] = asyncio.Lock()

    def detach(self, connection_id: str) -> Optional[WebSocket]:
        """Forget a connection; returns its socket if it was attached."""
        self._send_locks.pop(connection_id, None)
        websocket = self.connections.pop(connection_id, None)
        if websocket is not None:
            logger.debug(f"[Dispatcher] Detached connection {connection_id}")
        return websocket

    # =========================================================================
    # Audiences
    # =========================================================================

    def everyone(self) -> List[str]:
        return [s.id for s in self.sessions.all()]

    def room_audience(self, room: str) -> List[str]:
        return [s.id for s in self.sessions.in_room(room)]

    @staticmethod
    def private_audience(sender_id: str, recipient_id: str) -> List[str]:
        if sender_id == recipient_id:
            return [sender_id]
        return [sender_id, recipient_id]

    # =========================================================================
    # Publishing
    # =========================================================================

    async def unicast(self, connection_id: str, event: dict) -> int:
        return await self.deliver([connection_id], event)

    async def broadcast_all(self, event: dict) -> int:
        return await self.deliver(self.everyone(), event)

    async def broadcast_room(self, room: str, event: dict) -> int:
        return await self.deliver(self.room_audience(room), event)

    async def send_private(self, sender_id: str, recipient_id: str, event: dict) -> int:
        return await self.deliver(self.private_audience(sender_id, recipient_id), event)

    async def deliver(self, audience: Iterable[str], event: dict) -> int:
        """Send one event to every attached connection in ``audience``.

        Connections whose send fails or times out are dropped afterwards.

        Returns:
            Number of connections the event was delivered to.
        """
        targets = [
            (cid, self.connections[cid], self._send_locks[cid])
            for cid in audience
            if cid in self.connections
        ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *[self._locked_send(conn, lock, event) for _, conn, lock in targets],
            return_exceptions=True
        )

        failed = [cid for (cid, _, _), ok in zip(targets, results) if ok is not True]
        for cid in failed:
            await self._drop(cid)
        return len(targets) - len(failed)

    async def _locked_send(self, connection: WebSocket, lock: asyncio.Lock, event: dict) -> bool:
        async with lock:
            return await self._safe_send(connection, event)

    async def _safe_send(self, connection: WebSocket, event: dict) -> bool:
        """Send an event to a WebSocket connection with error handling.

        Returns:
            True if successful, False if the connection failed or timed out.
        """
        try:
            await asyncio.wait_for(connection.send_json(event), self.send_timeout)
            return True
        except Exception as e:
            logger.debug(f"[Dispatcher] Failed to send to connection: {e!r}")
            return False

    async def _drop(self, connection_id: str) -> None:
        """Detach and close a connection that stopped accepting events."""
        websocket = self.detach(connection_id)
        if websocket is None:
            # Already dropped by a concurrent delivery
            return
        logger.warning(f"[Dispatcher] Dropping unresponsive connection {connection_id}")
        try:
            await asyncio.wait_for(
                websocket.close(code=CLOSE_SEND_FAILED), self.send_timeout
            )
        except Exception as e:
            logger.debug(f"[Dispatcher] Close of {connection_id} failed: {e!r}")
        if self.on_drop is not None:
            await self.on_drop(connection_id)
