"""Tests for the command-line entry point."""

import pytest

from pumpchat_client import cli
from pumpchat_client.types import ChatMessage, ModerationKey


class TestParser:
    def test_options(self):
        args = cli.build_parser().parse_args(
            ["-r", "ROOM", "-u", "dave", "-l", "10", "--moderation-key", "id"]
        )
        cfg = cli.load_config(args)
        assert cfg.room_id == "ROOM"
        assert cfg.username == "dave"
        assert cfg.message_history_limit == 10
        assert cfg.moderation_key == ModerationKey.ID

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setenv("PUMP_ROOM_ID", "ENVROOM")
        monkeypatch.setenv("PUMP_TOKEN", "jwt")
        cfg = cli.load_config(cli.build_parser().parse_args([]))
        assert cfg.room_id == "ENVROOM"
        assert cfg.token == "jwt"

    def test_missing_room_exits(self, monkeypatch, capsys):
        monkeypatch.delenv("PUMP_ROOM_ID", raising=False)
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 2
        assert "room_id is required" in capsys.readouterr().err


def test_format_message(raw_message):
    message = ChatMessage.from_wire(raw_message(1))
    assert cli.format_message(message) == "user1: hello 1"


def test_main_runs_client(monkeypatch):
    seen = {}

    async def fake_run(config):
        seen["config"] = config
        return 0

    monkeypatch.setattr(cli, "run", fake_run)
    assert cli.main(["--room", "ROOM", "--log-level", "DEBUG"]) == 0
    assert seen["config"].room_id == "ROOM"
