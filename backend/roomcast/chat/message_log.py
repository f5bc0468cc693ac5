"""Append-only, id-ordered message log for a single room."""
import bisect
import logging
from typing import List, Optional

from .schemas import ChatMessage

logger = logging.getLogger(__name__)


class MessageLog:
    """Ordered sequence of messages for one room.

    Messages must be appended in increasing id order, so the log is always
    sorted by id and cursor lookups can bisect instead of scanning.

    Args:
        max_size: Maximum number of retained messages (0 = unlimited). When
            the limit is exceeded the oldest messages are evicted.
    """

    def __init__(self, max_size: int = 0) -> None:
        self.max_size = max_size
        self._messages: List[ChatMessage] = []

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: ChatMessage) -> List[ChatMessage]:
        """Append a message at the tail.

        Args:
            message: Message whose id is greater than every id already logged.

        Returns:
            Messages evicted to honour ``max_size`` (oldest first).

        Raises:
            ValueError: If the id would break the log's ordering.
        """
        if self._messages and message.id <= self._messages[-1].id:
            raise ValueError(
                f"message id {message.id} is not newer than {self._messages[-1].id}"
            )
        self._messages.append(message)

        if self.max_size and len(self._messages) > self.max_size:
            overflow = len(self._messages) - self.max_size
            evicted = self._messages[:overflow]
            del self._messages[:overflow]
            return evicted
        return []

    def all(self) -> List[ChatMessage]:
        """Return a copy of the full log, oldest first."""
        return list(self._messages)

    def page_before(self, cursor_id: Optional[int], page_size: int) -> List[ChatMessage]:
        """Return up to ``page_size`` messages with id < ``cursor_id``, oldest first.

        A ``cursor_id`` of None starts from the newest message. A result
        shorter than ``page_size`` means the start of the log was reached.
        """
        if page_size <= 0:
            return []
        if cursor_id is None:
            end = len(self._messages)
        else:
            end = bisect.bisect_left(self._messages, cursor_id, key=lambda m: m.id)
        start = max(0, end - page_size)
        return self._messages[start:end]

    def has_before(self, cursor_id: int) -> bool:
        """True if at least one retained message is older than ``cursor_id``."""
        return bool(self._messages) and self._messages[0].id < cursor_id
