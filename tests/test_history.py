"""Tests for the bounded message history buffer."""

from datetime import UTC, datetime, timedelta

import pytest

from pumpchat_client.history import MessageHistoryBuffer
from pumpchat_client.types import INVALID_TIMESTAMP, ChatMessage

BASE = datetime(2025, 1, 1, tzinfo=UTC)


def msg(idx: int, *, seconds: int | None = None, timestamp=None) -> ChatMessage:
    if timestamp is None:
        timestamp = BASE + timedelta(seconds=idx if seconds is None else seconds)
    return ChatMessage(
        id=f"m{idx}",
        room_id="ROOM",
        username=f"u{idx}",
        user_address=None,
        message=f"text {idx}",
        profile_image=None,
        timestamp=timestamp,
        message_type="REGULAR",
    )


class TestAppend:
    def test_evicts_oldest_when_full(self):
        buf = MessageHistoryBuffer(3)
        for i in range(5):
            buf.append(msg(i))
        assert [m.id for m in buf.snapshot()] == ["m2", "m3", "m4"]
        assert len(buf) == 3

    def test_keeps_arrival_order(self):
        buf = MessageHistoryBuffer(5)
        buf.append(msg(2))
        buf.append(msg(1))
        assert [m.id for m in buf.snapshot()] == ["m2", "m1"]

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            MessageHistoryBuffer(0)


class TestReplace:
    def test_sorts_by_timestamp(self):
        buf = MessageHistoryBuffer(10)
        snapshot = buf.replace([msg(3), msg(1), msg(2)])
        assert [m.id for m in snapshot] == ["m1", "m2", "m3"]

    def test_keeps_newest_when_over_capacity(self):
        buf = MessageHistoryBuffer(2)
        buf.replace([msg(i) for i in range(5)])
        assert [m.id for m in buf.snapshot()] == ["m3", "m4"]

    def test_discards_previous_contents(self):
        buf = MessageHistoryBuffer(10)
        buf.append(msg(99))
        buf.replace([msg(1)])
        assert "m99" not in buf
        assert "m1" in buf

    def test_idempotent(self):
        buf = MessageHistoryBuffer(10)
        batch = [msg(2), msg(1)]
        first = buf.replace(batch)
        second = buf.replace(batch)
        assert first == second

    def test_invalid_timestamps_sort_oldest(self):
        buf = MessageHistoryBuffer(10)
        buf.replace([msg(1), msg(2, timestamp=INVALID_TIMESTAMP)])
        assert [m.id for m in buf.snapshot()] == ["m2", "m1"]


class TestSnapshot:
    def test_snapshot_is_immutable_copy(self):
        buf = MessageHistoryBuffer(10)
        buf.append(msg(1))
        snap = buf.snapshot()
        buf.append(msg(2))
        assert isinstance(snap, tuple)
        assert len(snap) == 1

    def test_limit_returns_most_recent(self):
        buf = MessageHistoryBuffer(10)
        for i in range(5):
            buf.append(msg(i))
        assert [m.id for m in buf.snapshot(2)] == ["m3", "m4"]

    def test_limit_larger_than_contents(self):
        buf = MessageHistoryBuffer(10)
        buf.append(msg(1))
        assert len(buf.snapshot(50)) == 1

    def test_zero_limit_means_all(self):
        buf = MessageHistoryBuffer(10)
        buf.append(msg(1))
        buf.append(msg(2))
        assert len(buf.snapshot(0)) == 2

    def test_negative_limit(self):
        buf = MessageHistoryBuffer(10)
        buf.append(msg(1))
        with pytest.raises(ValueError):
            buf.snapshot(-1)

    def test_latest(self):
        buf = MessageHistoryBuffer(10)
        assert buf.latest() is None
        buf.append(msg(1))
        buf.append(msg(2))
        assert buf.latest().id == "m2"


class TestRemove:
    def test_remove_existing(self):
        buf = MessageHistoryBuffer(10)
        buf.replace([msg(1), msg(2), msg(3)])
        assert buf.remove("m2") is True
        assert [m.id for m in buf.snapshot()] == ["m1", "m3"]

    def test_remove_missing(self):
        buf = MessageHistoryBuffer(10)
        buf.append(msg(1))
        assert buf.remove("nope") is False
        assert len(buf) == 1

    def test_capacity_survives_remove(self):
        buf = MessageHistoryBuffer(2)
        buf.replace([msg(1), msg(2)])
        buf.remove("m1")
        buf.append(msg(3))
        buf.append(msg(4))
        assert [m.id for m in buf.snapshot()] == ["m3", "m4"]

    def test_clear(self):
        buf = MessageHistoryBuffer(10)
        buf.append(msg(1))
        buf.clear()
        assert len(buf) == 0
