import asyncio
from datetime import datetime
from pathlib import Path

from conftest import DONE_LINE

from crossplay.main import format_entry, handle_input, parse_args
from crossplay.storage.models import LogCategory, LogEntry, ServerState


def test_parse_args_defaults():
    args = parse_args([])

    assert args.config is None
    assert args.start is False


def test_parse_args_config_and_start():
    args = parse_args(["--config", "custom.yaml", "--start"])

    assert args.config == Path("custom.yaml")
    assert args.start is True


def test_format_entry():
    entry = LogEntry(
        sequence=1,
        timestamp=datetime(2026, 5, 1, 9, 8, 7),
        message="✅ Server startup complete",
        category=LogCategory.SUCCESS,
    )

    assert format_entry(entry) == "[09:08:07] [OK] ✅ Server startup complete"


def test_console_commands_drive_manager(make_manager, factory, capsys):
    manager = make_manager()

    async def scenario():
        assert await handle_input(manager, "!start\n") is True
        server = factory.by_name("minecraft")[0]
        server.emit(DONE_LINE)
        assert await handle_input(manager, "say hello\n") is True
        assert await handle_input(manager, "!status\n") is True
        assert await handle_input(manager, "!stop\n") is True
        return server

    server = asyncio.run(scenario())

    assert server.commands == ["say hello", "stop"]
    assert manager.state == ServerState.STOPPING
    assert '"state": "online"' in capsys.readouterr().out


def test_console_reports_rejected_commands(make_manager, capsys):
    manager = make_manager()

    assert asyncio.run(handle_input(manager, "say hi")) is True
    assert "! Server must be online to send commands" in capsys.readouterr().out


def test_console_quit_and_blank_lines(make_manager):
    manager = make_manager()

    assert asyncio.run(handle_input(manager, "   \n")) is True
    assert asyncio.run(handle_input(manager, "!quit\n")) is False
