# =============================================================================
# pumpchat-client -- Message History Buffer
# =============================================================================

from __future__ import annotations

import threading

from collections import deque
from typing import Iterable

from .constants import DEFAULT_HISTORY_LIMIT
from .types import ChatMessage


class MessageHistoryBuffer:
    """Bounded, oldest-first store of recent chat messages.

    Written from the receive loop (``append``/``replace``) and from
    moderation calls (``remove``), which may run on other tasks or threads;
    every operation holds an internal lock.

    Args:
        capacity: Maximum number of messages kept. Default 100.
    """

    def __init__(self, capacity: int = DEFAULT_HISTORY_LIMIT) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._messages: deque[ChatMessage] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def replace(self, messages: Iterable[ChatMessage]) -> tuple[ChatMessage, ...]:
        """Swap contents for *messages*, sorted by timestamp, newest kept.

        Returns the resulting snapshot.
        """
        ordered = sorted(messages, key=lambda m: m.timestamp)
        with self._lock:
            self._messages = deque(ordered[-self._capacity :], maxlen=self._capacity)
            return tuple(self._messages)

    def append(self, message: ChatMessage) -> None:
        """Add a newly arrived message, evicting the oldest when full."""
        with self._lock:
            self._messages.append(message)

    def remove(self, message_id: str) -> bool:
        """Drop every message with *message_id*. Returns True if any was found."""
        with self._lock:
            kept = [m for m in self._messages if m.id != message_id]
            if len(kept) == len(self._messages):
                return False
            self._messages = deque(kept, maxlen=self._capacity)
            return True

    def snapshot(self, limit: int | None = None) -> tuple[ChatMessage, ...]:
        """The most recent *limit* messages (all when None), oldest first."""
        with self._lock:
            if not limit:
                return tuple(self._messages)
            if limit < 0:
                raise ValueError(f"limit must be positive, got {limit}")
            return tuple(self._messages)[-limit:]

    def latest(self) -> ChatMessage | None:
        with self._lock:
            return self._messages[-1] if self._messages else None

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        with self._lock:
            return any(m.id == message_id for m in self._messages)
