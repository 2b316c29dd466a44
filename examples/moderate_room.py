"""Delete chat messages containing banned words.

Requires an auth token for an account with moderator rights on the room.

    python examples/moderate_room.py --room <TOKEN_ADDRESS> --token <JWT> --ban rug,scam
"""

import argparse
import asyncio
import logging

from pumpchat_client import PumpChatClient


async def main(room: str, token: str, banned: list[str]):
    client = PumpChatClient(room, token=token)

    @client.on("message")
    async def moderate(message):
        text = message.message.lower()
        if any(word in text for word in banned):
            result = await client.delete_message(message, reason="SPAM")
            status = "deleted" if result.ok else f"failed (HTTP {result.status})"
            print(f"{message.username}: {message.message!r} -> {status}")

    @client.on("server_error")
    def on_server_error(payload):
        print(f"Server error: {payload}")

    async with client:
        print(f"Moderating {room}, banned: {banned}")
        await asyncio.Event().wait()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="pump.fun chat moderator")
    parser.add_argument("--room", required=True, help="Token address")
    parser.add_argument("--token", required=True, help="Moderator auth token")
    parser.add_argument("--ban", default="rug,scam", help="Comma-separated words")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    banned = [w.strip().lower() for w in args.ban.split(",") if w.strip()]
    try:
        asyncio.run(main(args.room, args.token, banned))
    except KeyboardInterrupt:
        pass
