"""Command-line chat tail.

Connects to a room and prints every new message until interrupted::

    python -m pumpchat_client --room <TOKEN_ADDRESS> [--username NAME] [--token JWT]

Every option falls back to its ``PUMP_*`` environment variable.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal

from typing import Any, Sequence

from ._logging import logger
from .client import PumpChatClient
from .config import (
    ENV_HISTORY_LIMIT,
    ENV_MAX_RECONNECT_ATTEMPTS,
    ENV_ROOM_ID,
    ENV_TOKEN,
    ENV_USERNAME,
    ClientConfig,
)
from .types import ChatMessage, ModerationKey


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pumpchat",
        description="Tail a pump.fun token chat room",
    )
    parser.add_argument(
        "-r", "--room", help=f"Token address (room id) to join [${ENV_ROOM_ID}]"
    )
    parser.add_argument(
        "-u", "--username", help=f"Display name (default: anonymous) [${ENV_USERNAME}]"
    )
    parser.add_argument(
        "-l",
        "--limit",
        type=int,
        help=f"Message history limit (default: 100) [${ENV_HISTORY_LIMIT}]",
    )
    parser.add_argument(
        "-t", "--token", help=f"Auth token for sending and deleting [${ENV_TOKEN}]"
    )
    parser.add_argument(
        "--max-reconnect-attempts",
        type=int,
        help=f"Give up after this many reconnects (default: never) "
        f"[${ENV_MAX_RECONNECT_ATTEMPTS}]",
    )
    parser.add_argument(
        "--moderation-key",
        choices=[k.value for k in ModerationKey],
        default=ModerationKey.TIMESTAMP.value,
        help="How messages are identified when deleting (default: timestamp)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser


def load_config(args: argparse.Namespace) -> ClientConfig:
    return ClientConfig.from_env(
        room_id=args.room,
        username=args.username,
        message_history_limit=args.limit,
        token=args.token,
        max_reconnect_attempts=args.max_reconnect_attempts,
        moderation_key=ModerationKey(args.moderation_key),
    )


def format_message(message: ChatMessage) -> str:
    return f"{message.username or '?'}: {message.message}"


async def run(config: ClientConfig) -> int:
    """Tail the room until a signal arrives or reconnecting gives up."""
    stop = asyncio.Event()
    exit_code = 0

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            logger.debug("Signal handlers unsupported; rely on KeyboardInterrupt")

    client = PumpChatClient.from_config(config)

    @client.on("connected")
    def _connected() -> None:
        print(f"Connected to room {config.room_id}", flush=True)

    @client.on("message")
    def _message(message: ChatMessage) -> None:
        print(format_message(message), flush=True)

    @client.on("user_left")
    def _user_left(payload: Any) -> None:
        print(f"User left: {json.dumps(payload)}", flush=True)

    @client.on("server_error")
    def _server_error(payload: Any) -> None:
        logger.error("Server error: %s", json.dumps(payload))

    @client.on("error")
    def _error(exc: Exception) -> None:
        logger.error("Error: %s", exc)

    @client.on("disconnected")
    def _disconnected() -> None:
        print("Disconnected from chat", flush=True)

    @client.on("reconnect_exhausted")
    def _exhausted(attempts: int) -> None:
        nonlocal exit_code
        logger.error("Max reconnection attempts reached (%d). Exiting.", attempts)
        exit_code = 1
        stop.set()

    await client.connect()
    try:
        await stop.wait()
    finally:
        await client.disconnect()
    return exit_code


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(args)
    except ValueError as exc:
        parser.error(str(exc))

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(config))
    except KeyboardInterrupt:
        return 0
