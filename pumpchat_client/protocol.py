# =============================================================================
# pumpchat-client -- Wire Protocol Codec
# =============================================================================
#
# Engine.IO v4 text frames carrying socket.io packets. Every frame starts
# with a run of digits naming its kind, optionally followed by JSON:
#
#   0{...}          server hello (pingInterval, pingTimeout, sid)
#   40{...}         socket.io connect: our handshake out, acceptance in
#   42[name, data]  event, fire-and-forget
#   42N[name, data] event expecting reply N (N = 0..9)
#   43[...]         reply without id
#   43N[...]        reply to request N
#   2 / 3           ping / pong
#
# Inbound and outbound are handled separately, so an inbound "40" is
# always a handshake acceptance and outbound "40" always a handshake request.
# =============================================================================

from __future__ import annotations

import json
import re
import time

from typing import Any

from ._logging import logger
from .constants import (
    EVENT_GET_MESSAGE_HISTORY,
    EVENT_JOIN_ROOM,
    EVENT_SEND_MESSAGE,
    ORIGIN,
    PREFIX_ACK,
    PREFIX_CONNECT,
    PREFIX_EVENT,
    PREFIX_OPEN,
    PREFIX_PING,
    PREFIX_PONG,
)
from .errors import PumpChatProtocolError
from .types import DecodedFrame, FrameKind

_PREFIX_RE = re.compile(r"^(\d+)")


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


class FrameCodec:
    """Decode inbound frames and encode outbound requests.

    Stateless; ack ids are allocated by
    :class:`~pumpchat_client.ack_registry.AckRegistry` and passed in.
    """

    # -- Decoding --------------------------------------------------------------

    def decode(self, raw: str) -> DecodedFrame:
        """Decode one inbound text frame.

        Unknown prefixes decode to ``FrameKind.UNKNOWN``.

        Raises:
            PumpChatProtocolError: A known prefix carried malformed JSON or
                a payload of the wrong shape.
        """
        match = _PREFIX_RE.match(raw)
        if match is None:
            return DecodedFrame(kind=FrameKind.UNKNOWN, prefix="", data=raw)

        prefix = match.group(1)
        body = raw[len(prefix) :]

        if prefix == PREFIX_PING:
            return DecodedFrame(kind=FrameKind.PING, prefix=prefix)
        if prefix == PREFIX_PONG:
            return DecodedFrame(kind=FrameKind.PONG, prefix=prefix)

        if prefix == PREFIX_OPEN:
            hello = self._loads(body, prefix, raw)
            if not isinstance(hello, dict):
                raise PumpChatProtocolError("Server hello is not an object", raw)
            return DecodedFrame(kind=FrameKind.OPEN, prefix=prefix, data=hello)

        if prefix == PREFIX_CONNECT:
            # Acceptance needs no payload; keep whatever parses for logging.
            data: Any = None
            if body:
                try:
                    data = json.loads(body)
                except ValueError:
                    data = body
            return DecodedFrame(
                kind=FrameKind.HANDSHAKE_ACCEPTED, prefix=prefix, data=data
            )

        if prefix.startswith(PREFIX_EVENT) and len(prefix) <= 3:
            packet = self._loads(body, prefix, raw)
            if (
                not isinstance(packet, list)
                or not packet
                or not isinstance(packet[0], str)
            ):
                raise PumpChatProtocolError(
                    "Event frame is not a [name, payload] array", raw
                )
            return DecodedFrame(
                kind=FrameKind.EVENT,
                prefix=prefix,
                ack_id=_ack_digit(prefix),
                event=packet[0],
                data=packet[1] if len(packet) > 1 else None,
            )

        if prefix.startswith(PREFIX_ACK) and len(prefix) <= 3:
            reply = self._loads(body, prefix, raw)
            if not isinstance(reply, list):
                raise PumpChatProtocolError("Ack frame is not an array", raw)
            return DecodedFrame(
                kind=FrameKind.ACK,
                prefix=prefix,
                ack_id=_ack_digit(prefix),
                data=reply,
            )

        return DecodedFrame(kind=FrameKind.UNKNOWN, prefix=prefix, data=body)

    @staticmethod
    def _loads(body: str, prefix: str, raw: str) -> Any:
        try:
            return json.loads(body)
        except ValueError as exc:
            logger.debug("Malformed JSON in %s frame: %s", prefix, exc)
            raise PumpChatProtocolError(
                f"Malformed JSON in '{prefix}' frame: {exc}", raw
            ) from exc

    # -- Encoding --------------------------------------------------------------

    def encode_pong(self) -> str:
        return PREFIX_PONG

    def encode_handshake(self, token: str | None, timestamp_ms: int | None = None) -> str:
        """Client half of the ``40`` exchange."""
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        payload = {"origin": ORIGIN, "timestamp": timestamp_ms, "token": token}
        return f"{PREFIX_CONNECT}{_json_dumps(payload)}"

    def encode_event(
        self,
        event: str,
        payload: Any,
        ack_id: int | None = None,
    ) -> str:
        """Encode ``42[event, payload]``, tagged with *ack_id* when given."""
        if ack_id is not None and not 0 <= ack_id <= 9:
            raise ValueError(f"ack_id must be 0..9, got {ack_id}")
        tag = "" if ack_id is None else str(ack_id)
        return f"{PREFIX_EVENT}{tag}{_json_dumps([event, payload])}"

    def encode_join_room(self, ack_id: int, room_id: str, username: str) -> str:
        return self.encode_event(
            EVENT_JOIN_ROOM, {"roomId": room_id, "username": username}, ack_id
        )

    def encode_get_message_history(
        self,
        ack_id: int,
        room_id: str,
        limit: int,
        before: str | None = None,
    ) -> str:
        return self.encode_event(
            EVENT_GET_MESSAGE_HISTORY,
            {"roomId": room_id, "before": before, "limit": limit},
            ack_id,
        )

    def encode_send_message(
        self, ack_id: int, room_id: str, username: str, text: str
    ) -> str:
        return self.encode_event(
            EVENT_SEND_MESSAGE,
            {"roomId": room_id, "message": text, "username": username},
            ack_id,
        )


def _ack_digit(prefix: str) -> int | None:
    return int(prefix[2]) if len(prefix) == 3 else None
