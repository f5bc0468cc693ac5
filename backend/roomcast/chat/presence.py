"""Typing presence tracker."""
import logging
import time
from typing import Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Transient set of sessions currently marked as typing.

    Entries are cleared by an explicit toggle-off, by the disconnect path,
    or by ``expire()`` when a timeout is configured.

    Args:
        timeout_seconds: Age after which ``expire()`` drops an entry
            (0 disables expiry).
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        timeout_seconds: float = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        # session_id -> (display_name, last_update)
        self._typing: Dict[str, Tuple[str, float]] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._typing

    def set_typing(self, session_id: str, display_name: str, is_typing: bool) -> bool:
        """Mark or unmark a session as typing.

        Returns:
            True if the typing set changed (start or stop), False if the
            call only refreshed or repeated the current state.
        """
        if is_typing:
            changed = session_id not in self._typing
            self._typing[session_id] = (display_name, self._clock())
            return changed
        return self._typing.pop(session_id, None) is not None

    def clear(self, session_id: str) -> bool:
        """Drop a session's entry; True if it was typing."""
        return self._typing.pop(session_id, None) is not None

    def names_for(self, session_ids) -> List[str]:
        """Display names of the given sessions that are typing, in start order."""
        wanted = set(session_ids)
        return [name for sid, (name, _) in self._typing.items() if sid in wanted]

    def all_names(self) -> List[str]:
        return [name for name, _ in self._typing.values()]

    def expire(self) -> List[str]:
        """Remove entries older than the timeout.

        Returns:
            Session ids whose typing flag was cleared.
        """
        if not self.timeout_seconds:
            return []
        cutoff = self._clock() - self.timeout_seconds
        stale = [sid for sid, (_, ts) in self._typing.items() if ts <= cutoff]
        for sid in stale:
            del self._typing[sid]
        if stale:
            logger.debug(f"[Presence] Expired {len(stale)} stale typing flag(s)")
        return stale
