# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_WATCHER_ENABLED", "false")
os.environ.setdefault("NODE_ID", "node-test")
os.environ.setdefault("API_KEY", "test-api-key-0123456789abcdef")

from karma_node.core.settings import settings
from karma_node.db.session import Base
from karma_node.db.session import get_db as app_get_session
from karma_node.db.time import utcnow
from karma_node.main import app as fastapi_app
from karma_node.models import PlayerSession, TrustedNode, Vote, VoteDirection

TEST_DB_URL = "sqlite://"

VOTER = "76561198000000001"
TARGET = "76561198000000002"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[sessionmaker[Session]]:
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even though services commit.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(
    app: FastAPI, session_factory: sessionmaker[Session]
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    """Client without lifespan events, so no log tail or peer sync starts."""
    return TestClient(app, base_url="http://test")


@pytest.fixture()
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.api_key}"}


@pytest.fixture()
def make_session(db_session: Session) -> Callable[..., PlayerSession]:
    def _make(
        steam64: str,
        joined_at: datetime,
        left_at: datetime | None = None,
        *,
        server_id: str | None = None,
        player_name: str | None = None,
        is_placeholder: bool = False,
    ) -> PlayerSession:
        session = PlayerSession(
            steam64=steam64,
            player_name=player_name or f"Player{steam64[-4:]}",
            joined_at=joined_at,
            left_at=left_at,
            server_id=server_id or settings.node_id,
            is_placeholder=is_placeholder,
        )
        db_session.add(session)
        db_session.commit()
        db_session.refresh(session)
        return session

    return _make


@pytest.fixture()
def make_vote(db_session: Session) -> Callable[..., Vote]:
    def _make(
        voter_session: PlayerSession,
        target_session: PlayerSession,
        *,
        direction: VoteDirection = VoteDirection.UP,
        reason_category: str = "Helpful",
        created_at: datetime | None = None,
        replicated_from: str | None = None,
    ) -> Vote:
        vote = Vote(
            voter_steam64=voter_session.steam64,
            target_steam64=target_session.steam64,
            direction=direction,
            reason_category=reason_category,
            voter_session_id=voter_session.id,
            target_session_id=target_session.id,
            created_at=created_at or utcnow(),
            replicated_from=replicated_from,
        )
        db_session.add(vote)
        db_session.commit()
        db_session.refresh(vote)
        return vote

    return _make


@pytest.fixture()
def trusted_node(db_session: Session) -> TrustedNode:
    node = TrustedNode(node_id="node-peer", is_active=True)
    db_session.add(node)
    db_session.commit()
    return node


@pytest.fixture()
def overlapping_pair(make_session: Callable[..., PlayerSession]) -> tuple[PlayerSession, PlayerSession]:
    """Voter and target both online for the last 30 minutes."""
    now = utcnow()
    voter = make_session(VOTER, now - timedelta(minutes=30))
    target = make_session(TARGET, now - timedelta(minutes=30))
    return voter, target
