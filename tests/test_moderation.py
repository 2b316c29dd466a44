"""Tests for the moderation HTTP client (httpx MockTransport)."""

import json

from datetime import UTC, datetime

import httpx
import pytest

from pumpchat_client.errors import PumpChatAuthError, PumpChatModerationError
from pumpchat_client.history import MessageHistoryBuffer
from pumpchat_client.moderation import ModerationClient, backoff_delay, parse_retry_after
from pumpchat_client.types import ChatMessage, ModerationKey


class Server:
    """Scripted moderation endpoint: replays *responses* in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def message(raw_message):
    return ChatMessage.from_wire(raw_message(1))


@pytest.fixture
def history(message, raw_message):
    buf = MessageHistoryBuffer(10)
    buf.replace([message, ChatMessage.from_wire(raw_message(2))])
    return buf


@pytest.fixture
def make_client(history, recorder):
    def factory(server, **kwargs):
        kwargs.setdefault("token", "tok")
        return ModerationClient(
            "ROOM",
            history=history,
            emit=recorder,
            transport=httpx.MockTransport(server),
            **kwargs,
        )

    return factory


class TestDelete:
    @pytest.mark.asyncio
    async def test_success_removes_from_history(self, make_client, message, history, sleeps):
        server = Server(httpx.Response(200, json={"ok": True}))
        result = await make_client(server).delete_message(message)

        assert result.ok is True
        assert result.status == 200
        assert result.body == {"ok": True}
        assert "msg-1" not in history
        assert "msg-2" in history
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_request_shape(self, make_client, message, sleeps):
        server = Server(httpx.Response(200))
        await make_client(server).delete_message(message, reason="SPAM")

        (request,) = server.requests
        assert request.method == "POST"
        assert str(request.url) == (
            "https://livechat.pump.fun/chat/moderation/rooms/ROOM"
            "/messages/1735689600000/delete"
        )
        assert request.headers["auth-token"] == "tok"
        assert request.headers["authorization"] == "Bearer tok"
        assert request.headers["cookie"] == "auth-token=tok"
        assert request.headers["origin"] == "https://pump.fun"
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {"reason": "SPAM"}

    @pytest.mark.asyncio
    async def test_default_reason(self, make_client, message, sleeps):
        server = Server(httpx.Response(200))
        await make_client(server).delete_message(message)
        assert json.loads(server.requests[0].content) == {"reason": "TOXIC"}

    @pytest.mark.asyncio
    async def test_empty_success_body(self, make_client, message, sleeps):
        server = Server(httpx.Response(204))
        result = await make_client(server).delete_message(message)
        assert result.ok is True
        assert result.body is None

    @pytest.mark.asyncio
    async def test_rate_limited_then_ok(self, make_client, message, history, sleeps):
        server = Server(
            httpx.Response(429, headers={"Retry-After": "2"}),
            httpx.Response(200, json={"ok": True}),
        )
        result = await make_client(server).delete_message(message)

        assert result.ok is True
        assert sleeps == [2.0]
        assert len(server.requests) == 2
        assert "msg-1" not in history

    @pytest.mark.asyncio
    async def test_rate_limited_without_header_uses_backoff(self, make_client, message, sleeps):
        server = Server(httpx.Response(429), httpx.Response(429), httpx.Response(200))
        await make_client(server).delete_message(message)

        assert len(sleeps) == 2
        assert 0.5 <= sleeps[0] <= 0.75
        assert 1.0 <= sleeps[1] <= 1.25

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, make_client, message, history, recorder, sleeps):
        server = Server(httpx.Response(429, headers={"Retry-After": "1"}))
        result = await make_client(server).delete_message(message)

        assert result.ok is False
        assert result.status == 429
        assert len(server.requests) == 6
        assert sleeps == [1.0] * 5
        assert "msg-1" in history
        assert recorder.names() == ["server_error"]

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self, make_client, message, history, recorder, sleeps):
        server = Server(httpx.Response(403, json={"error": "not a moderator"}))
        result = await make_client(server).delete_message(message)

        assert result.ok is False
        assert result.status == 403
        assert result.body == {"error": "not a moderator"}
        assert len(server.requests) == 1
        assert recorder.args_for("server_error") == [({"error": "not a moderator"},)]
        assert "msg-1" in history

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, make_client, message, recorder, sleeps):
        server = Server(httpx.Response(500, text="<html>oops</html>"))
        result = await make_client(server).delete_message(message)
        assert result.body is None
        assert recorder.args_for("server_error") == [({"status": 500},)]

    @pytest.mark.asyncio
    async def test_network_errors_retried_then_reported(self, make_client, message, recorder, sleeps):
        server = Server(httpx.ConnectError("connection refused"))
        result = await make_client(server).delete_message(message)

        assert result.ok is False
        assert result.status == 0
        assert len(server.requests) == 6
        assert sleeps == [0.5, 1.0, 2.0, 4.0, 8.0]
        (err,) = recorder.args_for("error")[0]
        assert isinstance(err, PumpChatModerationError)
        assert err.status == 0

    @pytest.mark.asyncio
    async def test_network_error_then_success(self, make_client, message, sleeps):
        server = Server(httpx.ReadTimeout("slow"), httpx.Response(200))
        result = await make_client(server).delete_message(message)
        assert result.ok is True
        assert sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_custom_retry_limit(self, make_client, message, sleeps):
        server = Server(httpx.Response(429, headers={"Retry-After": "1"}))
        result = await make_client(server, max_retries=0).delete_message(message)
        assert result.status == 429
        assert len(server.requests) == 1

    @pytest.mark.asyncio
    async def test_requires_token(self, make_client, message):
        server = Server(httpx.Response(200))
        with pytest.raises(PumpChatAuthError):
            await make_client(server, token=None).delete_message(message)
        assert server.requests == []


class TestMessageKey:
    def test_timestamp_key(self, message):
        assert ModerationClient("R").message_key(message) == "1735689600000"

    def test_invalid_timestamp_falls_back_to_id(self, raw_message):
        broken = ChatMessage.from_wire(raw_message(3, timestamp="??"))
        assert ModerationClient("R").message_key(broken) == "msg-3"

    def test_id_key(self, message):
        client = ModerationClient("R", key=ModerationKey.ID)
        assert client.message_key(message) == "msg-1"

    def test_url_quoting(self, raw_message):
        odd = ChatMessage.from_wire(raw_message(4, id="a/b c", timestamp=None))
        url = ModerationClient("R").build_url(odd)
        assert url.endswith("/messages/a%2Fb%20c/delete")


class TestBackoff:
    def test_exponential_and_capped(self):
        assert [backoff_delay(a) for a in range(8)] == [
            0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0,
        ]

    def test_jitter_bounded(self):
        for attempt in range(8):
            base = backoff_delay(attempt)
            assert base <= backoff_delay(attempt, jitter=True) <= base + 0.25


class TestRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("2") == 2.0
        assert parse_retry_after(" 1.5 ") == 1.5

    def test_negative_clamped(self):
        assert parse_retry_after("-3") == 0.0

    def test_http_date(self):
        now = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Wed, 01 Jan 2025 12:00:05 GMT", now=now) == 5.0

    def test_http_date_in_past(self):
        now = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Wed, 01 Jan 2025 11:00:00 GMT", now=now) == 0.0

    @pytest.mark.parametrize("value", [None, "", "soon", "inf", "nan"])
    def test_unusable(self, value):
        assert parse_retry_after(value) is None
