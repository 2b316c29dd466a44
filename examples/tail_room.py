"""Print a pump.fun chat room.

Joins a token's chat room, prints the loaded history, then every new
message as it arrives.

    pip install pumpchat-client

    python examples/tail_room.py --room <TOKEN_ADDRESS>
    python examples/tail_room.py --room <TOKEN_ADDRESS> --limit 20
"""

import argparse
import asyncio
import signal

from pumpchat_client import connect


async def main(room: str, limit: int):
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    client = connect(room, message_history_limit=limit)

    @client.on("message_history")
    def show_history(messages):
        print(f"--- {len(messages)} earlier messages ---")
        for m in messages:
            print(f"[{m.timestamp:%H:%M:%S}] {m.username}: {m.message}")
        print("--- live ---")

    async with client:
        print(f"Connected to room {room} (Ctrl+C to stop)\n")

        async for message in client:
            print(f"[{message.timestamp:%H:%M:%S}] {message.username}: {message.message}")

            if stop.is_set():
                break


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Tail a pump.fun chat room")
    parser.add_argument("--room", required=True, help="Token address")
    parser.add_argument("--limit", type=int, default=50, help="History size (default: 50)")
    args = parser.parse_args()

    asyncio.run(main(args.room, args.limit))
