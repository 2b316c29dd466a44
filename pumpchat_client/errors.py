# =============================================================================
# pumpchat-client -- Error Types
# =============================================================================


class PumpChatError(Exception):
    """Base exception for all pumpchat client errors."""


class PumpChatConnectionError(PumpChatError):
    """Connection-related errors (failed to connect, lost connection)."""


class PumpChatAuthError(PumpChatError):
    """Operation requires an auth token that was not configured."""


class PumpChatProtocolError(PumpChatError):
    """Wire protocol errors (malformed frames, unexpected payloads)."""

    def __init__(self, message: str, frame: str | None = None) -> None:
        self.frame = frame
        super().__init__(message)


class PumpChatTimeoutError(PumpChatError):
    """Operation timed out."""


class PumpChatModerationError(PumpChatError):
    """Moderation request failed after exhausting its retries."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        super().__init__(message)
