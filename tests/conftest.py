"""Shared fixtures for pumpchat client tests."""

import asyncio

import pytest
from websockets.exceptions import ConnectionClosedError

_real_sleep = asyncio.sleep


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWebSocket:
    """Stands in for a websockets ClientConnection.

    Frames pushed with :meth:`feed` are yielded by ``async for``; everything
    the client writes lands in :attr:`sent`.
    """

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def feed(self, frame: str) -> None:
        self._incoming.put_nowait(frame)

    def drop(self) -> None:
        """Simulate an abnormal close from the server side."""
        self._incoming.put_nowait(ConnectionClosedError(None, None))

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class EventRecorder:
    """Collects ``emit(name, *args)`` notifications."""

    def __init__(self) -> None:
        self.events: list[tuple[str, tuple]] = []

    def __call__(self, name: str, *args) -> None:
        self.events.append((name, args))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def args_for(self, name: str) -> list[tuple]:
        return [args for n, args in self.events if n == name]


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await _real_sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def sleeps(monkeypatch):
    """Make asyncio.sleep instant and record the requested delays."""
    delays: list[float] = []

    async def fake_sleep(delay, *args, **kwargs):
        delays.append(delay)
        await _real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return delays


def make_raw_message(
    idx: int,
    *,
    timestamp="2025-01-01T00:00:00.000Z",
    **overrides,
) -> dict:
    raw = {
        "id": f"msg-{idx}",
        "roomId": "ROOM",
        "username": f"user{idx}",
        "userAddress": f"addr{idx}",
        "message": f"hello {idx}",
        "profile_image": f"https://img.example/{idx}.png",
        "timestamp": timestamp,
        "messageType": "REGULAR",
        "expiresAt": 1767225600,
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def run_pending():
    """Coroutine function that lets scheduled tasks run."""
    return settle


@pytest.fixture
def ws_factory():
    """Build fresh FakeWebSocket instances."""
    return FakeWebSocket


@pytest.fixture
def raw_message():
    """Build a wire-format chat message dict."""
    return make_raw_message
