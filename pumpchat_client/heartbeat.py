# =============================================================================
# pumpchat-client -- Heartbeat Monitor
# =============================================================================
#
# Engine.IO v4 servers ping, clients only answer. We never send pings of
# our own; instead we watch the gap between server pings (and any pongs)
# and declare the connection dead when it grows past the timeout.
# =============================================================================

from __future__ import annotations

import asyncio
import inspect
import time

from typing import Any, Callable

from ._logging import logger
from .constants import HEARTBEAT_GRACE, HEARTBEAT_MAX_CHECK_INTERVAL


class HeartbeatMonitor:
    """Watchdog that fires ``on_timeout`` when the server goes silent.

    The monitor owns no transport. When the silence exceeds the timeout it
    stops itself and calls ``on_timeout`` exactly once; the connection
    decides how to tear down and reconnect.

    Args:
        on_timeout: Called (or awaited, if it returns an awaitable) on
            missed heartbeat.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        on_timeout: Callable[[], Any],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_timeout = on_timeout
        self._clock = clock
        self._timeout: float | None = None
        self._last_liveness: float = 0.0
        self._task: asyncio.Task[None] | None = None

    @staticmethod
    def compute_timeout(ping_interval: float) -> float:
        """Allowed silence for a server ping interval (both in seconds)."""
        return max(ping_interval * 2, ping_interval + HEARTBEAT_GRACE)

    @property
    def timeout(self) -> float | None:
        return self._timeout

    @property
    def check_interval(self) -> float | None:
        if self._timeout is None:
            return None
        return min(self._timeout, HEARTBEAT_MAX_CHECK_INTERVAL)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_liveness(self) -> float:
        return self._last_liveness

    def start(self, ping_interval: float) -> None:
        """Arm the watchdog for a server ping interval in seconds."""
        self.stop()
        self._timeout = self.compute_timeout(ping_interval)
        self._last_liveness = self._clock()
        self._task = asyncio.create_task(self._run())
        logger.debug(
            "Heartbeat armed: timeout=%.1fs check every %.1fs",
            self._timeout,
            self.check_interval,
        )

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def record_liveness(self) -> None:
        self._last_liveness = self._clock()

    def is_expired(self, now: float | None = None) -> bool:
        if self._timeout is None:
            return False
        if now is None:
            now = self._clock()
        return now - self._last_liveness > self._timeout

    async def _run(self) -> None:
        interval = self.check_interval
        assert interval is not None
        while True:
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                return

            if self.is_expired():
                logger.warning(
                    "Heartbeat missed (%.1fs silent), reconnecting",
                    self._clock() - self._last_liveness,
                )
                # Detach first so on_timeout can call stop() safely.
                self._task = None
                result = self._on_timeout()
                if inspect.isawaitable(result):
                    await result
                return
