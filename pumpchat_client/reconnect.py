# =============================================================================
# pumpchat-client -- Reconnect Policy
# =============================================================================

from __future__ import annotations

from .types import ReconnectConfig


class ReconnectPolicy:
    """Exponential backoff with an optional attempt ceiling.

    ``delay(n) = min(base_delay * 2**n, max_delay)`` for attempt ``n``
    starting at 1, so the defaults give 2, 4, 8, 16, 30, 30... seconds.
    The attempt counter is reset by :meth:`reset` whenever a transport
    comes up.
    """

    def __init__(self, config: ReconnectConfig | None = None) -> None:
        self._cfg = config or ReconnectConfig()
        self._attempts = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def max_attempts(self) -> int | None:
        return self._cfg.max_attempts

    @property
    def exhausted(self) -> bool:
        limit = self._cfg.max_attempts
        return limit is not None and self._attempts >= limit

    def next_delay(self, attempt: int) -> float:
        # Exponent is capped so unbounded retry counts cannot overflow a float.
        return min(self._cfg.base_delay * (2 ** min(attempt, 32)), self._cfg.max_delay)

    def next_attempt(self) -> float | None:
        """Count a new attempt and return its delay, or None to give up."""
        if self.exhausted:
            return None
        self._attempts += 1
        return self.next_delay(self._attempts)

    def reset(self) -> None:
        self._attempts = 0
