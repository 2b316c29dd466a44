"""Python client for pump.fun token chat rooms.

Async usage::

    from pumpchat_client import connect

    async with connect("TOKEN_ADDRESS", username="watcher") as client:
        async for message in client:
            print(message.username, message.message)

Callbacks::

    client = PumpChatClient("TOKEN_ADDRESS", token="...")

    @client.on("message")
    async def moderate(message):
        if "spam" in message.message:
            await client.delete_message(message)

    await client.connect()
"""

from ._version import __version__
from .client import PumpChatClient
from .config import ClientConfig
from .errors import (
    PumpChatAuthError,
    PumpChatConnectionError,
    PumpChatError,
    PumpChatModerationError,
    PumpChatProtocolError,
    PumpChatTimeoutError,
)
from .types import (
    INVALID_TIMESTAMP,
    ChatMessage,
    ConnectionState,
    ModerationKey,
    ModerationResult,
    ReconnectConfig,
)


def connect(room_id: str, **kwargs) -> PumpChatClient:
    """Create a chat client for *room_id*.

    Use as an async context manager. Keyword arguments are forwarded
    to :class:`PumpChatClient` -- common ones: ``username``, ``token``,
    ``message_history_limit``, ``reconnect``.

    Example::

        async with connect("TOKEN_ADDRESS", token="jwt") as client:
            await client.send("gm")
    """
    return PumpChatClient(room_id, **kwargs)


__all__ = [
    "__version__",
    "connect",
    "PumpChatClient",
    "ClientConfig",
    "ChatMessage",
    "ConnectionState",
    "ModerationKey",
    "ModerationResult",
    "ReconnectConfig",
    "INVALID_TIMESTAMP",
    "PumpChatError",
    "PumpChatConnectionError",
    "PumpChatAuthError",
    "PumpChatProtocolError",
    "PumpChatTimeoutError",
    "PumpChatModerationError",
]
