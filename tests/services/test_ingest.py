# tests/services/test_ingest.py
"""Tests for the watcher-to-store ingestion pipeline."""

import asyncio

import pytest
from sqlalchemy import select

from karma_node.core.settings import settings
from karma_node.models import PlayerSession
from karma_node.services.ingest import LogIngestService
from karma_node.services.log_parser import parse_line
from karma_node.services.log_watcher import LogWatcher
from karma_node.services.session_manager import SessionManager

STEAM64 = "76561198012345678"


def line(verb: str, minute: int) -> str:
    return f"[2024.12.05-14.{minute:02d}.00:000][  1]LogSquad: Player {verb}: JohnDoe ({STEAM64})\n"


@pytest.fixture()
def log_file(tmp_path):
    path = tmp_path / "SquadGame.log"
    path.write_text(line("connected", 0), encoding="utf-8")
    return path


@pytest.fixture()
def ingest(log_file, session_factory):
    watcher = LogWatcher(log_file, poll_interval_ms=50)
    return LogIngestService(watcher, SessionManager(settings.node_id, session_factory))


async def wait_for(predicate, attempts: int = 60) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_events_flow_into_sessions_in_order(ingest, log_file, db_session):
    await ingest.start()
    with log_file.open("a", encoding="utf-8") as handle:
        handle.write(line("connected", 10) + line("disconnected", 40))

    await wait_for(lambda: ingest.events_applied >= 2)
    closed = await ingest.stop()

    sessions = db_session.scalars(select(PlayerSession)).all()
    assert len(sessions) == 1
    assert sessions[0].duration_minutes() == 30
    assert closed == 0


@pytest.mark.asyncio
async def test_stop_closes_open_sessions(ingest, log_file, db_session):
    await ingest.start()
    with log_file.open("a", encoding="utf-8") as handle:
        handle.write(line("connected", 10))

    await wait_for(lambda: ingest.events_applied >= 1)
    closed = await ingest.stop()

    assert closed == 1
    db_session.expire_all()
    session = db_session.scalars(select(PlayerSession)).one()
    assert session.left_at is not None


@pytest.mark.asyncio
async def test_failed_event_is_counted_and_pipeline_continues(ingest, mocker):
    mocker.patch.object(ingest.session_manager, "handle_event", side_effect=RuntimeError("db down"))

    await ingest.apply(parse_line(line("connected", 1).strip()))

    assert ingest.events_failed == 1
    assert ingest.get_stats()["eventsFailed"] == 1
