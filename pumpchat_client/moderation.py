# =============================================================================
# pumpchat-client -- Moderation Client
# =============================================================================
#
# Message deletion goes over plain HTTPS, not the socket, so it works in
# any connection state. The endpoint rate-limits aggressively; 429s are
# retried honouring Retry-After.
# =============================================================================

from __future__ import annotations

import asyncio
import math
import random

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Callable
from urllib.parse import quote

import httpx

from ._logging import logger
from .constants import (
    DEFAULT_DELETE_REASON,
    MODERATION_BASE_DELAY,
    MODERATION_MAX_DELAY,
    MODERATION_MAX_JITTER,
    MODERATION_MAX_RETRIES,
    MODERATION_TIMEOUT,
    MODERATION_URL,
    ORIGIN,
    TOKEN_HEADER,
    USER_AGENT,
)
from .errors import PumpChatAuthError, PumpChatModerationError
from .history import MessageHistoryBuffer
from .types import ChatMessage, ModerationKey, ModerationResult


class ModerationClient:
    """Deletes chat messages through the moderation HTTP endpoint.

    Args:
        room_id: Token address of the room.
        token: Auth token; required for :meth:`delete_message`.
        history: Buffer to drop deleted messages from.
        key: How messages are identified in the URL (see
            :class:`~pumpchat_client.types.ModerationKey`).
        emit: Notification callback, ``emit(name, *args)``.
        max_retries: Retries after the first request. Default 5.
        transport: Custom httpx transport (tests, proxies).
    """

    def __init__(
        self,
        room_id: str,
        *,
        token: str | None = None,
        history: MessageHistoryBuffer | None = None,
        key: ModerationKey = ModerationKey.TIMESTAMP,
        emit: Callable[..., Any] | None = None,
        max_retries: int = MODERATION_MAX_RETRIES,
        timeout: float = MODERATION_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._room_id = room_id
        self._token = token
        self._history = history
        self._key = key
        self._emit_cb = emit
        self._max_retries = max_retries
        self._timeout = timeout
        self._transport = transport

    def message_key(self, message: ChatMessage) -> str:
        if self._key == ModerationKey.TIMESTAMP and message.timestamp_ms is not None:
            return str(message.timestamp_ms)
        return message.id

    def build_url(self, message: ChatMessage) -> str:
        return MODERATION_URL.format(
            room_id=quote(self._room_id, safe=""),
            key=quote(self.message_key(message), safe=""),
        )

    def _headers(self) -> dict[str, str]:
        assert self._token is not None
        # Which of these the service reads is undocumented, so send all three.
        return {
            "Content-Type": "application/json",
            "Accept": "application/json, text/plain, */*",
            "Origin": ORIGIN,
            "User-Agent": USER_AGENT,
            "Cookie": f"{TOKEN_HEADER}={self._token}",
            TOKEN_HEADER: self._token,
            "Authorization": f"Bearer {self._token}",
        }

    async def delete_message(
        self,
        message: ChatMessage,
        reason: str = DEFAULT_DELETE_REASON,
    ) -> ModerationResult:
        """Delete *message* from the room.

        HTTP failures never raise: the outcome is returned as a
        :class:`ModerationResult` (``status == 0`` when the server was never
        reached) and also reported as ``server_error`` / ``error``.

        Raises:
            PumpChatAuthError: No auth token is configured.
        """
        if not self._token:
            raise PumpChatAuthError(
                "delete_message requires an auth token; pass token= to the client"
            )

        url = self.build_url(message)
        headers = self._headers()
        attempt = 0

        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as http:
            while True:
                try:
                    response = await http.post(url, headers=headers, json={"reason": reason})
                except httpx.TransportError as exc:
                    if attempt >= self._max_retries:
                        logger.error(
                            "Moderation delete failed after %d attempts: %s",
                            attempt + 1,
                            exc,
                        )
                        self._emit(
                            "error",
                            PumpChatModerationError(0, f"Moderation request failed: {exc}"),
                        )
                        return ModerationResult(ok=False, status=0)
                    delay = backoff_delay(attempt)
                    attempt += 1
                    logger.warning(
                        "Moderation request error (%s), retry %d/%d in %.1fs",
                        exc,
                        attempt,
                        self._max_retries,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue

                if response.status_code == 429:
                    if attempt >= self._max_retries:
                        body = _parse_body(response)
                        logger.error(
                            "Moderation delete still rate limited after %d attempts",
                            attempt + 1,
                        )
                        self._emit("server_error", body if body is not None else {"status": 429})
                        return ModerationResult(ok=False, status=429, body=body)
                    delay = parse_retry_after(response.headers.get("Retry-After"))
                    if not delay:
                        delay = backoff_delay(attempt, jitter=True)
                    attempt += 1
                    logger.warning(
                        "Moderation rate limited, retry %d/%d in %.1fs",
                        attempt,
                        self._max_retries,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue

                body = _parse_body(response)
                if not response.is_success:
                    logger.error(
                        "Moderation delete rejected (HTTP %d): %s",
                        response.status_code,
                        body,
                    )
                    self._emit(
                        "server_error",
                        body if body is not None else {"status": response.status_code},
                    )
                    return ModerationResult(
                        ok=False, status=response.status_code, body=body
                    )
                break

        if self._history is not None and self._history.remove(message.id):
            logger.debug("Removed deleted message %s from history", message.id)
        logger.info("Deleted message %s (%s)", message.id, reason)
        return ModerationResult(ok=True, status=response.status_code, body=body)

    def _emit(self, name: str, *args: Any) -> None:
        if self._emit_cb is None:
            return
        try:
            self._emit_cb(name, *args)
        except Exception:
            logger.exception("Notification handler for '%s' failed", name)


def backoff_delay(attempt: int, *, jitter: bool = False) -> float:
    """``min(30s, 0.5s * 2**attempt)``, plus up to 250ms jitter if asked."""
    delay = min(MODERATION_MAX_DELAY, MODERATION_BASE_DELAY * (2 ** min(attempt, 32)))
    if jitter:
        delay += random.uniform(0, MODERATION_MAX_JITTER)
    return delay


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Seconds to wait from a ``Retry-After`` header, or None if unusable.

    Accepts delta-seconds (``"2"``) and HTTP dates.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=UTC)
        if now is None:
            now = datetime.now(UTC)
        return max(0.0, (when - now).total_seconds())
    if not math.isfinite(seconds):
        return None
    return max(0.0, seconds)


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
