# tests/services/test_log_watcher.py
"""Tests for the incremental log tail."""

import asyncio
from pathlib import Path

import pytest

from karma_node.core.errors import TransientIOError
from karma_node.services.log_parser import SessionEvent, SessionEventType
from karma_node.services.log_watcher import LogWatcher

STEAM64 = "76561198012345678"


def join_line(name: str = "JohnDoe", steam64: str = STEAM64, minute: int = 23) -> str:
    return f"[2024.12.05-14.{minute:02d}.15:123][456]LogSquad: Player connected: {name} ({steam64})\n"


def leave_line(name: str = "JohnDoe", steam64: str = STEAM64, minute: int = 50) -> str:
    return (
        f"[2024.12.05-14.{minute:02d}.00:000][456]LogSquad: Player disconnected: "
        f"{name} ({steam64})\n"
    )


def append(path, text: str) -> None:
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text)


@pytest.fixture()
def log_file(tmp_path):
    path = tmp_path / "SquadGame.log"
    path.write_text("", encoding="utf-8")
    return path


@pytest.fixture()
def collected():
    return []


@pytest.fixture()
def watcher(log_file, collected):
    watcher = LogWatcher(log_file, poll_interval_ms=50)
    watcher.on_event(collected.append)
    return watcher


@pytest.mark.asyncio
async def test_historical_lines_are_not_replayed(log_file, watcher, collected):
    """Starting from EOF means lines present before start produce no events."""
    append(log_file, join_line("Old") + leave_line("Old"))
    watcher.prime()

    assert await watcher.poll_once() == 0
    assert collected == []

    append(log_file, join_line("New"))
    assert await watcher.poll_once() == 1
    assert [event.player_name for event in collected] == ["New"]


@pytest.mark.asyncio
async def test_events_are_emitted_in_file_order(log_file, watcher, collected):
    watcher.prime()
    append(log_file, join_line("A", minute=1) + "noise line\n" + leave_line("A", minute=2))

    assert await watcher.poll_once() == 2
    assert [event.type for event in collected] == [
        SessionEventType.JOIN,
        SessionEventType.DISCONNECT,
    ]
    assert watcher.state.lines_read == 3


@pytest.mark.asyncio
async def test_partial_line_waits_for_newline(log_file, watcher, collected):
    watcher.prime()
    line = join_line()
    append(log_file, line[:30])

    assert await watcher.poll_once() == 0

    append(log_file, line[30:])
    assert await watcher.poll_once() == 1
    assert collected[0].steam64 == STEAM64


@pytest.mark.asyncio
async def test_truncation_resets_to_start(log_file, watcher, collected):
    watcher.prime()
    append(log_file, join_line("A") + join_line("B") + join_line("C"))
    assert await watcher.poll_once() == 3

    # Rotation: the file is replaced by a shorter one.
    log_file.write_text(leave_line("A"), encoding="utf-8")

    assert await watcher.poll_once() == 1
    assert collected[-1].type is SessionEventType.DISCONNECT
    assert watcher.state.position == log_file.stat().st_size


@pytest.mark.asyncio
async def test_missing_file_is_waited_for(tmp_path, collected):
    path = tmp_path / "later.log"
    watcher = LogWatcher(path)
    watcher.on_event(collected.append)
    watcher.prime()

    assert watcher.state.file_missing
    assert await watcher.poll_once() == 0

    path.write_text(join_line(), encoding="utf-8")

    assert await watcher.poll_once() == 1
    assert not watcher.state.file_missing


@pytest.mark.asyncio
async def test_file_removed_while_running_is_not_fatal(log_file, watcher, collected):
    watcher.prime()
    log_file.unlink()

    assert await watcher.poll_once() == 0
    assert watcher.get_stats()["fileMissing"] is True


@pytest.mark.asyncio
async def test_invalid_ids_are_skipped_with_warning(log_file, watcher, collected, caplog):
    watcher.prime()
    append(log_file, join_line(steam64="12345678901234567"))

    with caplog.at_level("WARNING"):
        assert await watcher.poll_once() == 0

    assert collected == []
    assert "12345678901234567" in caplog.text


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_others(log_file, collected):
    watcher = LogWatcher(log_file)

    def broken(event: SessionEvent) -> None:
        raise RuntimeError("boom")

    async def recorder(event: SessionEvent) -> None:
        collected.append(event)

    watcher.on_event(broken)
    watcher.on_event(recorder)
    watcher.prime()
    append(log_file, join_line())

    assert await watcher.poll_once() == 1
    assert len(collected) == 1
    assert watcher.state.errors == 1


@pytest.mark.asyncio
async def test_start_and_stop_poll_loop(log_file, watcher, collected):
    await watcher.start()
    assert watcher.is_running

    append(log_file, join_line())
    for _ in range(50):
        if collected:
            break
        await asyncio.sleep(0.05)

    await watcher.stop()

    assert not watcher.is_running
    assert len(collected) == 1


def test_stats_shape(watcher, log_file):
    stats = watcher.get_stats()

    assert stats["filePath"] == str(log_file)
    assert stats["callbackCount"] == 1
    assert stats["isRunning"] is False
    assert {"lastPosition", "lastSize", "linesRead", "eventsEmitted", "errors"} <= stats.keys()


@pytest.mark.asyncio
async def test_unreadable_file_is_retried_next_tick(log_file, watcher, collected, mocker):
    watcher.prime()
    append(log_file, join_line())
    mocker.patch.object(Path, "open", side_effect=PermissionError("denied"))

    with pytest.raises(TransientIOError):
        watcher._read_new_lines()
    assert await watcher.poll_once() == 0
    assert watcher.state.errors == 1

    mocker.stopall()
    assert await watcher.poll_once() == 1
    assert len(collected) == 1
