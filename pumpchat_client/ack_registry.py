# =============================================================================
# pumpchat-client -- Acknowledgment Registry
# =============================================================================
#
# socket.io correlates requests and replies with a small integer: we send
# 42N[...] and the server answers 43N[...]. The server only honours one
# digit, so ids cycle through a fixed ring of ten slots.
# =============================================================================

from __future__ import annotations

import time

from typing import Callable

from ._logging import logger
from .constants import ACK_ID_SLOTS, ACK_STALE_AFTER
from .types import AckEvent, PendingAck


class AckRegistry:
    """Ten-slot ring of in-flight requests awaiting a numbered reply.

    Correlation is best-effort. Ids wrap around after nine, and
    :meth:`issue` always hands out the next id in the ring even when that
    slot is still occupied; the older request is dropped and its reply, if
    it ever arrives, is attributed to the newer one. With a 30 second
    staleness window and sub-second reply latency this does not happen in
    practice, but callers must not treat an id as a unique key.

    Args:
        stale_after: Seconds after which an unanswered request is dropped
            by :meth:`sweep`.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        *,
        stale_after: float = ACK_STALE_AFTER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stale_after = stale_after
        self._clock = clock
        self._slots: list[PendingAck | None] = [None] * ACK_ID_SLOTS
        self._next_id = 0

    def issue(self, event: AckEvent) -> int:
        """Allocate the next ack id and record *event* against it."""
        ack_id = self._next_id
        self._next_id = (ack_id + 1) % ACK_ID_SLOTS

        previous = self._slots[ack_id]
        if previous is not None:
            logger.debug(
                "Ack id %d reused while %s still pending", ack_id, previous.event.value
            )
        self._slots[ack_id] = PendingAck(
            ack_id=ack_id, event=event, issued_at=self._clock()
        )
        return ack_id

    def resolve(self, ack_id: int) -> PendingAck | None:
        """Remove and return the pending request for *ack_id*, if any."""
        if not 0 <= ack_id < ACK_ID_SLOTS:
            return None
        pending = self._slots[ack_id]
        self._slots[ack_id] = None
        return pending

    def sweep(self, now: float | None = None) -> list[PendingAck]:
        """Drop requests older than ``stale_after``; return what was dropped."""
        if now is None:
            now = self._clock()
        dropped: list[PendingAck] = []
        for ack_id, pending in enumerate(self._slots):
            if pending is not None and now - pending.issued_at > self._stale_after:
                self._slots[ack_id] = None
                dropped.append(pending)
                logger.debug("Cleaned up stale ack %d for %s", ack_id, pending.event.value)
        return dropped

    def pending(self) -> list[PendingAck]:
        """Outstanding requests in ack-id order."""
        return [p for p in self._slots if p is not None]

    def clear(self) -> None:
        self._slots = [None] * ACK_ID_SLOTS

    def __len__(self) -> int:
        return sum(1 for p in self._slots if p is not None)
