# =============================================================================
# pumpchat-client -- Client Configuration
# =============================================================================

from __future__ import annotations

import os

from dataclasses import dataclass
from typing import Any, Mapping

from .constants import DEFAULT_HISTORY_LIMIT, DEFAULT_USERNAME
from .types import ModerationKey, ReconnectConfig

ENV_ROOM_ID = "PUMP_ROOM_ID"
ENV_USERNAME = "PUMP_USERNAME"
ENV_HISTORY_LIMIT = "PUMP_HISTORY_LIMIT"
ENV_TOKEN = "PUMP_TOKEN"
ENV_MAX_RECONNECT_ATTEMPTS = "PUMP_MAX_RECONNECT_ATTEMPTS"


@dataclass
class ClientConfig:
    """Settings consumed by :class:`~pumpchat_client.client.PumpChatClient`.

    Attributes:
        room_id: Token address of the room to join (required).
        username: Display name sent with joins and messages.
        message_history_limit: Capacity of the history buffer.
        token: Auth token. Without it sending and deleting are disabled.
        max_reconnect_attempts: Reconnect ceiling, ``None`` for unbounded.
        moderation_key: How messages are identified for deletion.
    """

    room_id: str
    username: str = DEFAULT_USERNAME
    message_history_limit: int = DEFAULT_HISTORY_LIMIT
    token: str | None = None
    max_reconnect_attempts: int | None = None
    moderation_key: ModerationKey = ModerationKey.TIMESTAMP

    def __post_init__(self) -> None:
        if not self.room_id:
            raise ValueError("room_id is required")
        if not self.username:
            self.username = DEFAULT_USERNAME
        if self.message_history_limit < 1:
            raise ValueError(
                f"message_history_limit must be positive, got {self.message_history_limit}"
            )
        if self.max_reconnect_attempts is not None and self.max_reconnect_attempts < 0:
            raise ValueError(
                f"max_reconnect_attempts must be >= 0, got {self.max_reconnect_attempts}"
            )

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> ClientConfig:
        """Build a config from ``PUMP_*`` variables.

        Keyword arguments that are not None take precedence over the
        environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {
            "room_id": env.get(ENV_ROOM_ID) or "",
            "username": env.get(ENV_USERNAME) or DEFAULT_USERNAME,
            "token": env.get(ENV_TOKEN) or None,
        }
        limit = _env_int(env, ENV_HISTORY_LIMIT)
        if limit is not None:
            values["message_history_limit"] = limit
        values["max_reconnect_attempts"] = _env_int(env, ENV_MAX_RECONNECT_ATTEMPTS)

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def reconnect_config(self) -> ReconnectConfig:
        return ReconnectConfig(max_attempts=self.max_reconnect_attempts)


def _env_int(env: Mapping[str, str], name: str) -> int | None:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
