# =============================================================================
# pumpchat-client -- Type Definitions
# =============================================================================

from __future__ import annotations

import math

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Mapping

from .constants import RECONNECT_BASE_DELAY, RECONNECT_MAX_DELAY
from .errors import PumpChatProtocolError

# Placeholder for timestamps that could not be parsed. Sorts before every
# real instant so malformed entries end up oldest in the history buffer.
INVALID_TIMESTAMP = datetime.min.replace(tzinfo=UTC)

# Numeric epochs below this are seconds, above it milliseconds.
_EPOCH_MS_THRESHOLD = 1e11

NOTIFICATIONS = frozenset(
    {
        "connected",
        "disconnected",
        "message",
        "message_history",
        "error",
        "server_error",
        "user_left",
        "reconnect_exhausted",
    }
)


class ConnectionState(str, Enum):
    """Connection lifecycle state.

    Typical flow: DISCONNECTED -> CONNECTING -> HANDSHAKE_PENDING -> JOINING
    -> AWAITING_HISTORY -> ACTIVE.  Any transport loss returns to
    DISCONNECTED.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKE_PENDING = "handshake_pending"
    JOINING = "joining"
    AWAITING_HISTORY = "awaiting_history"
    ACTIVE = "active"


# States in which chat messages may be sent. Sends are pipelined ahead of
# the history reply, so JOINING and AWAITING_HISTORY are included.
SENDABLE_STATES = frozenset(
    {
        ConnectionState.JOINING,
        ConnectionState.AWAITING_HISTORY,
        ConnectionState.ACTIVE,
    }
)


class FrameKind(str, Enum):
    """Logical type of an inbound wire frame."""

    OPEN = "open"
    HANDSHAKE_ACCEPTED = "handshake_accepted"
    EVENT = "event"
    ACK = "ack"
    PING = "ping"
    PONG = "pong"
    UNKNOWN = "unknown"


class AckEvent(str, Enum):
    """Outbound requests that expect a numbered reply."""

    JOIN_ROOM = "joinRoom"
    GET_MESSAGE_HISTORY = "getMessageHistory"
    SEND_MESSAGE = "sendMessage"


class ModerationKey(str, Enum):
    """How a message is identified in the moderation URL.

    TIMESTAMP -- epoch milliseconds of the message timestamp, falling back
    to the message id when the timestamp is invalid.
    ID -- always the server-assigned message id.
    """

    TIMESTAMP = "timestamp"
    ID = "id"


@dataclass(frozen=True, slots=True)
class DecodedFrame:
    """A single decoded inbound frame.

    Attributes:
        kind: Logical frame type.
        prefix: The leading digit run exactly as received, e.g. ``"431"``.
        ack_id: Ack digit following ``42``/``43``, if any.
        event: Event name for EVENT frames.
        data: Parsed JSON: the hello object for OPEN, the event payload for
            EVENT, the reply array for ACK.
    """

    kind: FrameKind
    prefix: str
    ack_id: int | None = None
    event: str | None = None
    data: Any = None


@dataclass(frozen=True, slots=True)
class PendingAck:
    """An outbound request waiting for its numbered reply."""

    ack_id: int
    event: AckEvent
    issued_at: float


@dataclass(frozen=True, slots=True)
class ModerationResult:
    """Outcome of a moderation delete.

    ``status`` is 0 when no HTTP response was ever received.
    """

    ok: bool
    status: int
    body: Any = None


@dataclass
class ReconnectConfig:
    """Configuration for automatic reconnection.

    Attributes:
        base_delay: Seconds multiplied by ``2 ** attempt``.
        max_delay: Maximum delay cap in seconds.
        max_attempts: Max retries, ``None`` for unbounded.
    """

    base_delay: float = RECONNECT_BASE_DELAY
    max_delay: float = RECONNECT_MAX_DELAY
    max_attempts: int | None = None


def normalize_timestamp(value: Any) -> datetime:
    """Convert a raw timestamp into an aware UTC datetime.

    Accepts datetimes, numeric epochs (seconds or milliseconds) and ISO-8601
    strings. Anything unparseable becomes :data:`INVALID_TIMESTAMP`.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        try:
            return value.astimezone(UTC)
        except (OverflowError, ValueError):
            return INVALID_TIMESTAMP

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return INVALID_TIMESTAMP
        try:
            return _from_epoch(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return INVALID_TIMESTAMP
        return normalize_timestamp(parsed)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return _from_epoch(float(value))
        except OverflowError:
            return INVALID_TIMESTAMP

    return INVALID_TIMESTAMP


def _from_epoch(value: float) -> datetime:
    if not math.isfinite(value):
        return INVALID_TIMESTAMP
    seconds = value if abs(value) < _EPOCH_MS_THRESHOLD else value / 1000.0
    try:
        return datetime.fromtimestamp(seconds, UTC)
    except (OverflowError, OSError, ValueError):
        return INVALID_TIMESTAMP


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """A chat message received from the room.

    Attributes:
        id: Server-assigned message id.
        room_id: Token address of the room.
        username: Display name of the sender.
        user_address: Wallet address of the sender, if known.
        message: Message text.
        profile_image: URL of the sender's profile image.
        timestamp: When the message was sent (UTC). Unparseable values are
            :data:`INVALID_TIMESTAMP`.
        message_type: Server tag, e.g. ``"REGULAR"``.
        expires_at: When the message goes stale, if the server said.
    """

    id: str
    room_id: str | None
    username: str | None
    user_address: str | None
    message: str
    profile_image: str | None
    timestamp: datetime
    message_type: str | None
    expires_at: datetime | None = None

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any]) -> ChatMessage:
        """Build a message from its wire representation (camelCase keys)."""
        if not isinstance(raw, Mapping):
            raise PumpChatProtocolError(
                f"Expected message object, got {type(raw).__name__}"
            )
        msg_id = raw.get("id")
        expires = raw.get("expiresAt")
        return cls(
            id="" if msg_id is None else str(msg_id),
            room_id=raw.get("roomId"),
            username=raw.get("username"),
            user_address=raw.get("userAddress"),
            message="" if raw.get("message") is None else str(raw.get("message")),
            profile_image=raw.get("profile_image"),
            timestamp=normalize_timestamp(raw.get("timestamp")),
            message_type=raw.get("messageType"),
            expires_at=None if expires is None else normalize_timestamp(expires),
        )

    @property
    def has_valid_timestamp(self) -> bool:
        return self.timestamp != INVALID_TIMESTAMP

    @property
    def timestamp_ms(self) -> int | None:
        """Epoch milliseconds of ``timestamp``, or None when invalid."""
        if not self.has_valid_timestamp:
            return None
        return int(round(self.timestamp.timestamp() * 1000))

    def to_dict(self) -> dict[str, Any]:
        """Render back to wire shape with ISO-8601 timestamps."""
        return {
            "id": self.id,
            "roomId": self.room_id,
            "username": self.username,
            "userAddress": self.user_address,
            "message": self.message,
            "profile_image": self.profile_image,
            "timestamp": (
                self.timestamp.isoformat() if self.has_valid_timestamp else None
            ),
            "messageType": self.message_type,
            "expiresAt": (
                None
                if self.expires_at is None or self.expires_at == INVALID_TIMESTAMP
                else self.expires_at.isoformat()
            ),
        }
