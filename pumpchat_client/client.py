# =============================================================================
# pumpchat-client -- Async Client
# =============================================================================
#
# Primary public API.  Async context manager, async iterator, callbacks.
# =============================================================================

from __future__ import annotations

import asyncio

from collections import defaultdict
from typing import Any, Callable

from ._logging import logger
from .config import ClientConfig
from .connection import ConnectionManager
from .constants import DEFAULT_DELETE_REASON, DEFAULT_HISTORY_LIMIT, DEFAULT_USERNAME
from .history import MessageHistoryBuffer
from .moderation import ModerationClient
from .types import (
    NOTIFICATIONS,
    ChatMessage,
    ConnectionState,
    ModerationKey,
    ModerationResult,
    ReconnectConfig,
)

# Handlers receive the notification's arguments; coroutine handlers are
# scheduled as tasks.
Handler = Callable[..., Any]


class PumpChatClient:
    """Async client for a pump.fun token chat room.

    Args:
        room_id: Token address of the room to join.
        username: Display name for joins and sent messages.
        message_history_limit: Number of recent messages kept in memory.
        token: Auth token. Required for :meth:`send` and
            :meth:`delete_message`.
        reconnect: Reconnection config. Defaults to exponential backoff,
            unbounded retries.
        moderation_key: How messages are identified for deletion.
        extra_headers: Additional HTTP headers for the WebSocket upgrade.
        queue_size: Max messages buffered for the async iterator. When full,
            the oldest are dropped. Default 1000.

    Notifications (register with :meth:`on`):

    ``connected()``, ``disconnected()``, ``message(ChatMessage)``,
    ``message_history(tuple[ChatMessage, ...])``, ``user_left(payload)``,
    ``server_error(payload)``, ``error(Exception)``,
    ``reconnect_exhausted(attempts)``.

    Example::

        async with PumpChatClient("TOKEN_ADDRESS") as client:
            async for message in client:
                print(f"{message.username}: {message.message}")
    """

    def __init__(
        self,
        room_id: str,
        *,
        username: str = DEFAULT_USERNAME,
        message_history_limit: int = DEFAULT_HISTORY_LIMIT,
        token: str | None = None,
        reconnect: ReconnectConfig | None = None,
        moderation_key: ModerationKey = ModerationKey.TIMESTAMP,
        extra_headers: dict[str, str] | None = None,
        queue_size: int = 1000,
    ) -> None:
        if not room_id:
            raise ValueError("room_id is required")
        self._room_id = room_id
        self._username = username or DEFAULT_USERNAME
        self._token = token

        self._history = MessageHistoryBuffer(message_history_limit)

        # Callback handlers: notification -> list of handlers
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._background_tasks: set[asyncio.Task[Any]] = set()

        # New messages for async iteration; None marks the end of the stream
        self._message_queue: asyncio.Queue[ChatMessage | None] = asyncio.Queue(
            maxsize=queue_size
        )

        self._connection = ConnectionManager(
            room_id,
            username=self._username,
            token=token,
            history=self._history,
            reconnect=reconnect,
            extra_headers=extra_headers,
            emit=self._on_notification,
        )
        self._moderation = ModerationClient(
            room_id,
            token=token,
            history=self._history,
            key=moderation_key,
            emit=self._on_notification,
        )

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs: Any) -> PumpChatClient:
        """Create a client from a :class:`ClientConfig`."""
        return cls(
            config.room_id,
            username=config.username,
            message_history_limit=config.message_history_limit,
            token=config.token,
            reconnect=config.reconnect_config(),
            moderation_key=config.moderation_key,
            **kwargs,
        )

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> PumpChatClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # -- Async iterator -------------------------------------------------------

    def __aiter__(self) -> PumpChatClient:
        return self

    async def __anext__(self) -> ChatMessage:
        message = await self._message_queue.get()
        if message is None:
            raise StopAsyncIteration
        return message

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self) -> None:
        """Open the connection. Joining and history load continue in the background."""
        self._reset_stream()
        await self._connection.connect()

    async def disconnect(self) -> None:
        """Disconnect and stop reconnecting. In-flight deletes keep running."""
        await self._connection.disconnect()
        self._end_stream()

    async def close(self) -> None:
        """Alias for disconnect."""
        await self.disconnect()

    # -- Properties -----------------------------------------------------------

    @property
    def room_id(self) -> str:
        return self._room_id

    @property
    def username(self) -> str:
        return self._username

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.is_connected

    @property
    def is_active(self) -> bool:
        return self._connection.is_active

    # -- Commands -------------------------------------------------------------

    async def send(self, text: str) -> bool:
        """Send a chat message.

        Returns:
            True if the frame was written. A server-side rejection is
            reported later through ``server_error``.
        """
        return await self._connection.send_chat_message(text)

    async def delete_message(
        self,
        message: ChatMessage,
        reason: str = DEFAULT_DELETE_REASON,
    ) -> ModerationResult:
        """Delete *message* via the moderation endpoint.

        Raises:
            PumpChatAuthError: No auth token is configured.
        """
        return await self._moderation.delete_message(message, reason)

    def get_messages(self, limit: int | None = None) -> list[ChatMessage]:
        """Stored messages, oldest first; the most recent *limit* if given."""
        return list(self._history.snapshot(limit))

    def get_latest_message(self) -> ChatMessage | None:
        return self._history.latest()

    # -- Handler registration -------------------------------------------------

    def on(self, name: str) -> Callable[[Handler], Handler]:
        """Decorator to register a handler for a notification.

        Example::

            @client.on("user_left")
            def handle(payload):
                print(payload)
        """
        if name not in NOTIFICATIONS:
            raise ValueError(f"Unknown notification {name!r}")

        def decorator(fn: Handler) -> Handler:
            self._handlers[name].append(fn)
            return fn

        return decorator

    def on_message(self, fn: Handler) -> Handler:
        """Register a handler for new chat messages."""
        self._handlers["message"].append(fn)
        return fn

    def off(self, name: str, fn: Handler) -> None:
        """Remove a specific handler."""
        handlers = self._handlers.get(name, [])
        if fn in handlers:
            handlers.remove(fn)

    # -- Internal: notifications ----------------------------------------------

    def _on_notification(self, name: str, *args: Any) -> None:
        if name == "message":
            self._enqueue(args[0])
        elif name == "reconnect_exhausted":
            self._end_stream()
        self._invoke_handlers(name, *args)

    def _invoke_handlers(self, name: str, *args: Any) -> None:
        """Call every handler for *name*; one failing does not stop the rest."""
        for handler in list(self._handlers.get(name, ())):
            try:
                result = handler(*args)
                if asyncio.iscoroutine(result):
                    self._fire_task(result, name)
            except Exception:
                logger.exception("Handler error for '%s'", name)

    def _fire_task(self, coro: Any, name: str) -> None:
        """Schedule a coroutine handler with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(lambda t: _log_handler_failure(t, name))

    def _enqueue(self, item: ChatMessage | None) -> None:
        try:
            self._message_queue.put_nowait(item)
        except asyncio.QueueFull:
            # Drop oldest to make room
            try:
                self._message_queue.get_nowait()
                self._message_queue.put_nowait(item)
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                logger.debug("Message queue contention, dropping item")

    def _end_stream(self) -> None:
        self._enqueue(None)

    def _reset_stream(self) -> None:
        """Drop end markers left by an earlier session, keeping queued messages."""
        pending: list[ChatMessage] = []
        while not self._message_queue.empty():
            item = self._message_queue.get_nowait()
            if item is not None:
                pending.append(item)
        for item in pending:
            self._message_queue.put_nowait(item)


def _log_handler_failure(task: asyncio.Task[Any], name: str) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Async handler error for '%s': %s", name, exc)
