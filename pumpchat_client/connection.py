# =============================================================================
# pumpchat-client -- Connection Manager
# =============================================================================
#
# WebSocket lifecycle and socket.io session state machine:
#
#   DISCONNECTED -> CONNECTING -> HANDSHAKE_PENDING   (transport up)
#   HANDSHAKE_PENDING: recv 0{...}  -> send 40{origin,timestamp,token}
#                      recv 40      -> send 42N["joinRoom",...]   -> JOINING
#   JOINING:           recv 43N (joinRoom) or setCookie
#                                   -> send 42N["getMessageHistory",...]
#                                                                 -> AWAITING_HISTORY
#   AWAITING_HISTORY:  recv history -> ACTIVE
#
# Any transport loss returns to DISCONNECTED and schedules a reconnect
# unless disconnect() was called.
# =============================================================================

from __future__ import annotations

import asyncio
import time

from typing import Any, Awaitable, Callable

import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from ._logging import logger
from .ack_registry import AckRegistry
from .constants import (
    ACCEPT_LANGUAGE,
    ACK_SWEEP_INTERVAL,
    CONNECTION_TIMEOUT,
    DEFAULT_USERNAME,
    EVENT_MESSAGE_DELETED,
    EVENT_NEW_MESSAGE,
    EVENT_SET_COOKIE,
    EVENT_USER_LEFT,
    LOG_PAYLOAD_PREVIEW,
    ORIGIN,
    TOKEN_HEADER,
    USER_AGENT,
    WS_URL,
)
from .errors import (
    PumpChatConnectionError,
    PumpChatProtocolError,
    PumpChatTimeoutError,
)
from .heartbeat import HeartbeatMonitor
from .history import MessageHistoryBuffer
from .protocol import FrameCodec
from .reconnect import ReconnectPolicy
from .types import (
    SENDABLE_STATES,
    AckEvent,
    ChatMessage,
    ConnectionState,
    DecodedFrame,
    FrameKind,
    ReconnectConfig,
)

EmitCallback = Callable[..., Any]


class ConnectionManager:
    """Owns the WebSocket and drives the join/history sequence.

    All state on this object is mutated from a single event loop: the
    receive task handles one frame at a time, and the heartbeat, ack sweep
    and reconnect timers only ever tear the transport down or start a new
    one. ``PumpChatClient`` uses it for all socket I/O.

    Notifications go through ``emit(name, *args)``: ``connected``,
    ``disconnected``, ``message``, ``message_history``, ``user_left``,
    ``server_error``, ``error`` and ``reconnect_exhausted``.
    """

    def __init__(
        self,
        room_id: str,
        *,
        username: str = DEFAULT_USERNAME,
        token: str | None = None,
        history: MessageHistoryBuffer | None = None,
        reconnect: ReconnectConfig | None = None,
        url: str = WS_URL,
        extra_headers: dict[str, str] | None = None,
        emit: EmitCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._room_id = room_id
        self._username = username
        self._token = token
        self._url = url
        self._extra_headers = extra_headers or {}
        self._emit_cb = emit

        self._codec = FrameCodec()
        self._acks = AckRegistry(clock=clock)
        self._heartbeat = HeartbeatMonitor(self._on_heartbeat_timeout, clock=clock)
        self._policy = ReconnectPolicy(reconnect)
        self._history = history if history is not None else MessageHistoryBuffer()

        # State
        self._ws: websockets.asyncio.client.ClientConnection | None = None
        self._state = ConnectionState.DISCONNECTED
        self._closing = False
        self._handshake_sent = False
        # Bumped by every connect/disconnect; an upgrade that finishes under
        # an older generation is discarded.
        self._generation = 0

        # Tasks
        self._recv_task: asyncio.Task[None] | None = None
        self._sweep_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._frame_handlers: dict[FrameKind, Callable[[DecodedFrame], Awaitable[None]]] = {
            FrameKind.OPEN: self._handle_open,
            FrameKind.HANDSHAKE_ACCEPTED: self._handle_handshake_accepted,
            FrameKind.EVENT: self._handle_event,
            FrameKind.ACK: self._handle_ack,
            FrameKind.PING: self._handle_ping,
            FrameKind.PONG: self._handle_pong,
            FrameKind.UNKNOWN: self._handle_unknown,
        }

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self._state != ConnectionState.DISCONNECTED

    @property
    def is_active(self) -> bool:
        return self._state == ConnectionState.ACTIVE

    @property
    def room_id(self) -> str:
        return self._room_id

    @property
    def username(self) -> str:
        return self._username

    @property
    def history(self) -> MessageHistoryBuffer:
        return self._history

    @property
    def acks(self) -> AckRegistry:
        return self._acks

    @property
    def heartbeat(self) -> HeartbeatMonitor:
        return self._heartbeat

    @property
    def reconnect_policy(self) -> ReconnectPolicy:
        return self._policy

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self) -> None:
        """Open the WebSocket; the handshake then runs from the receive loop.

        Does nothing if a connection is already open or opening. Failures
        are reported through the ``error`` notification and retried by the
        reconnect policy rather than raised.
        """
        if self._state != ConnectionState.DISCONNECTED:
            return

        self._closing = False
        self._cancel_reconnect()
        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)

        try:
            ws = await asyncio.wait_for(self._open_transport(), timeout=CONNECTION_TIMEOUT)
        except asyncio.CancelledError:
            if generation == self._generation:
                self._set_state(ConnectionState.DISCONNECTED)
            raise
        except Exception as exc:
            if generation != self._generation:
                logger.debug("Superseded connect attempt failed: %s", exc)
                return
            if isinstance(exc, asyncio.TimeoutError):
                self._connect_failed(
                    PumpChatTimeoutError(f"Connection timed out after {CONNECTION_TIMEOUT}s")
                )
            else:
                self._connect_failed(PumpChatConnectionError(f"Failed to connect: {exc}"))
            return

        if self._closing or generation != self._generation:
            # disconnect() or a newer connect() ran during the upgrade.
            await self._close_quietly(ws)
            return

        self._ws = ws
        self._handshake_sent = False
        self._policy.reset()
        self._set_state(ConnectionState.HANDSHAKE_PENDING)
        logger.info("WebSocket connected (room %s)", self._room_id)
        self._emit("connected")

        self._recv_task = asyncio.create_task(self._recv_loop(ws))
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def _open_transport(self) -> websockets.asyncio.client.ClientConnection:
        headers = {
            "Accept-Language": ACCEPT_LANGUAGE,
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }
        headers.update(self._extra_headers)
        if self._token:
            headers[TOKEN_HEADER] = self._token

        return await websockets.asyncio.client.connect(
            self._url,
            additional_headers=headers,
            user_agent_header=USER_AGENT,
            origin=ORIGIN,
            open_timeout=None,  # asyncio.wait_for handles timeout
            # Engine.IO heartbeats replace websocket-level keepalive.
            ping_interval=None,
        )

    def _connect_failed(self, error: Exception) -> None:
        logger.warning("Connection failed: %s", error)
        self._set_state(ConnectionState.DISCONNECTED)
        self._emit("error", error)
        self._schedule_reconnect()

    async def disconnect(self) -> None:
        """Close the connection and stop every timer; no reconnect follows."""
        self._closing = True
        self._generation += 1
        self._cancel_reconnect()
        self._heartbeat.stop()
        self._cancel_sweep()
        self._acks.clear()

        recv = self._recv_task
        self._recv_task = None
        if recv is not None and recv is not asyncio.current_task():
            recv.cancel()
            await asyncio.gather(recv, return_exceptions=True)

        ws = self._ws
        self._ws = None
        self._handshake_sent = False
        if ws is not None:
            await self._close_quietly(ws)

        was_open = self._state != ConnectionState.DISCONNECTED
        self._set_state(ConnectionState.DISCONNECTED)
        if was_open:
            self._emit("disconnected")

    async def _close_quietly(self, ws: websockets.asyncio.client.ClientConnection) -> None:
        try:
            await ws.close()
        except Exception as exc:
            logger.debug("Error while closing WebSocket: %s", exc)

    # -- Send -----------------------------------------------------------------

    async def send_chat_message(self, text: str) -> bool:
        """Post *text* to the room. Returns False if it could not be sent.

        Requires an auth token; the server answers with an error reply
        otherwise. Rejections arrive later as ``server_error``.
        """
        if not self._token:
            logger.warning("Cannot send message: no auth token configured")
            return False
        if self._state not in SENDABLE_STATES:
            logger.error("Cannot send message: not connected (state=%s)", self._state.value)
            return False

        ack_id = self._acks.issue(AckEvent.SEND_MESSAGE)
        frame = self._codec.encode_send_message(ack_id, self._room_id, self._username, text)
        return await self._send(frame)

    async def _send(self, data: str) -> bool:
        ws = self._ws
        if ws is None:
            logger.debug("Cannot send data: not connected")
            return False
        try:
            await ws.send(data)
            return True
        except ConnectionClosed:
            logger.debug("Send failed: connection closed")
            return False
        except Exception as exc:
            logger.warning("Send failed: %s", exc)
            return False

    # -- Internal: receive loop -----------------------------------------------

    async def _recv_loop(self, ws: websockets.asyncio.client.ClientConnection) -> None:
        """Read frames until the socket closes, then hand off to reconnect."""
        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    logger.debug("Ignoring binary frame (%d bytes)", len(raw))
                    continue
                await self._handle_frame(raw)
            logger.info("WebSocket closed normally")
        except asyncio.CancelledError:
            return
        except ConnectionClosedError as exc:
            logger.warning("WebSocket closed: %s", exc)
            self._emit("error", PumpChatConnectionError(f"Connection lost: {exc}"))
        except Exception as exc:
            logger.warning("Receive loop error: %s", exc)
            self._emit("error", PumpChatConnectionError(f"Receive loop error: {exc}"))

        if ws is self._ws:
            self._recv_task = None
            self._handle_transport_lost()

    async def _handle_frame(self, raw: str) -> None:
        """Decode and route a single frame."""
        try:
            frame = self._codec.decode(raw)
        except PumpChatProtocolError as exc:
            logger.warning("Dropping malformed frame: %s", exc)
            self._emit("error", exc)
            return

        handler = self._frame_handlers[frame.kind]
        try:
            await handler(frame)
        except Exception as exc:
            logger.exception("Error handling %s frame", frame.kind.value)
            self._emit(
                "error",
                PumpChatProtocolError(f"Error handling '{frame.prefix}' frame: {exc}", raw),
            )

    # -- Internal: frame handlers ---------------------------------------------

    async def _handle_open(self, frame: DecodedFrame) -> None:
        ping_interval = frame.data.get("pingInterval")
        if isinstance(ping_interval, (int, float)) and ping_interval > 0:
            self._heartbeat.start(ping_interval / 1000.0)

        if self._state != ConnectionState.HANDSHAKE_PENDING:
            logger.debug("Ignoring server hello in state %s", self._state.value)
            return

        self._handshake_sent = await self._send(self._codec.encode_handshake(self._token))

    async def _handle_handshake_accepted(self, frame: DecodedFrame) -> None:
        if self._state != ConnectionState.HANDSHAKE_PENDING or not self._handshake_sent:
            logger.debug("Ignoring unexpected '40' in state %s", self._state.value)
            return

        ack_id = self._acks.issue(AckEvent.JOIN_ROOM)
        self._set_state(ConnectionState.JOINING)
        await self._send(self._codec.encode_join_room(ack_id, self._room_id, self._username))

    async def _handle_event(self, frame: DecodedFrame) -> None:
        name = frame.event
        payload = frame.data

        if name == EVENT_SET_COOKIE:
            # Alternate readiness signal; may duplicate the joinRoom ack path.
            if self._state in SENDABLE_STATES:
                await self._request_history()
        elif name == EVENT_NEW_MESSAGE:
            if self._state not in SENDABLE_STATES:
                logger.debug("Ignoring newMessage in state %s", self._state.value)
                return
            try:
                message = ChatMessage.from_wire(payload)
            except PumpChatProtocolError as exc:
                logger.warning("Dropping newMessage: %s", exc)
                self._emit("error", exc)
                return
            self._history.append(message)
            self._emit("message", message)
        elif name == EVENT_USER_LEFT:
            self._emit("user_left", payload)
        elif name == EVENT_MESSAGE_DELETED:
            logger.debug("Message deleted: %s", payload)
        else:
            logger.debug("Unknown event: %s", name)

    async def _handle_ack(self, frame: DecodedFrame) -> None:
        if frame.ack_id is None:
            # Un-numbered reply: only history responses come back this way.
            if self._state not in SENDABLE_STATES:
                logger.debug("Ignoring un-numbered ack in state %s", self._state.value)
                return
            messages = _extract_history(frame.data)
            if messages is not None:
                self._apply_history(messages)
            return

        pending = self._acks.resolve(frame.ack_id)
        if pending is None:
            logger.debug("Ack %s has no pending request", frame.prefix)
            return
        logger.debug("Received ack %s for %s", frame.prefix, pending.event.value)

        if pending.event == AckEvent.JOIN_ROOM:
            await self._request_history()
        elif pending.event == AckEvent.GET_MESSAGE_HISTORY:
            messages = _extract_history(frame.data)
            if messages is None:
                logger.warning(
                    "Unexpected getMessageHistory ack shape: %s",
                    _preview(frame.data),
                )
                return
            self._apply_history(messages)
        elif pending.event == AckEvent.SEND_MESSAGE:
            reply = frame.data[0] if frame.data else None
            if isinstance(reply, dict) and reply.get("error"):
                logger.error("Server rejected message: %s", reply)
                self._emit("server_error", reply)

    async def _handle_ping(self, frame: DecodedFrame) -> None:
        self._heartbeat.record_liveness()
        await self._send(self._codec.encode_pong())

    async def _handle_pong(self, frame: DecodedFrame) -> None:
        self._heartbeat.record_liveness()

    async def _handle_unknown(self, frame: DecodedFrame) -> None:
        logger.warning("Unknown message type: %r", frame.prefix or _preview(frame.data))

    async def _request_history(self) -> None:
        ack_id = self._acks.issue(AckEvent.GET_MESSAGE_HISTORY)
        if self._state == ConnectionState.JOINING:
            self._set_state(ConnectionState.AWAITING_HISTORY)
        await self._send(
            self._codec.encode_get_message_history(
                ack_id, self._room_id, self._history.capacity
            )
        )

    def _apply_history(self, raw_messages: list[Any]) -> None:
        parsed: list[ChatMessage] = []
        for raw in raw_messages:
            try:
                parsed.append(ChatMessage.from_wire(raw))
            except PumpChatProtocolError as exc:
                logger.warning("Skipping history entry: %s", exc)

        snapshot = self._history.replace(parsed)
        self._set_state(ConnectionState.ACTIVE)
        logger.info("Loaded %d history messages", len(snapshot))
        self._emit("message_history", snapshot)

    # -- Internal: timers -----------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(ACK_SWEEP_INTERVAL)
            except asyncio.CancelledError:
                return
            self._acks.sweep()

    def _cancel_sweep(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None

    async def _on_heartbeat_timeout(self) -> None:
        """Server went silent: drop the socket and go through reconnect."""
        recv = self._recv_task
        self._recv_task = None
        if recv is not None:
            recv.cancel()
        self._handle_transport_lost()

    # -- Internal: reconnection -----------------------------------------------

    def _handle_transport_lost(self) -> None:
        if self._state == ConnectionState.DISCONNECTED:
            return

        self._heartbeat.stop()
        self._cancel_sweep()
        ws = self._ws
        self._ws = None
        if ws is not None:
            self._fire_task(self._close_quietly(ws))
        self._handshake_sent = False
        self._set_state(ConnectionState.DISCONNECTED)
        self._emit("disconnected")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule a reconnection attempt with backoff."""
        if self._closing:
            return

        delay = self._policy.next_attempt()
        if delay is None:
            logger.error(
                "Max reconnect attempts (%d) reached", self._policy.max_attempts
            )
            self._emit("reconnect_exhausted", self._policy.attempts)
            return

        limit = self._policy.max_attempts
        logger.info(
            "Reconnecting in %.1fs (attempt %d/%s)",
            delay,
            self._policy.attempts,
            limit if limit is not None else "inf",
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        """Wait, then try to reconnect."""
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        self._reconnect_task = None
        await self.connect()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # -- State management -----------------------------------------------------

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state == self._state:
            return
        old = self._state
        self._state = new_state
        logger.debug("State: %s -> %s", old.value, new_state.value)

    def _emit(self, name: str, *args: Any) -> None:
        if self._emit_cb is None:
            return
        try:
            self._emit_cb(name, *args)
        except Exception:
            logger.exception("Notification handler for '%s' failed", name)


def _extract_history(reply: Any) -> list[Any] | None:
    """Pull the message list out of a history reply.

    The server has answered with ``[[...]]`` and ``[{"messages": [...]}]``.
    """
    if not isinstance(reply, list) or not reply:
        return None
    first = reply[0]
    if isinstance(first, list):
        return first
    if isinstance(first, dict) and isinstance(first.get("messages"), list):
        return first["messages"]
    return None


def _preview(data: Any) -> str:
    return repr(data)[:LOG_PAYLOAD_PREVIEW]
