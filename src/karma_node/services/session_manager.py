"""Session lifecycle driven by parsed log events."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from karma_node.core.settings import settings
from karma_node.db.session import SessionLocal
from karma_node.db.time import ensure_utc, utcnow
from karma_node.models import PlayerSession
from karma_node.services.log_parser import SessionEvent, SessionEventType

logger = logging.getLogger(__name__)


class SessionManager:
    """Open, close and query play sessions for one server.

    Events must be applied one at a time in arrival order (see
    `karma_node.services.ingest.LogIngestService`); that sequencing is what
    keeps the one-open-session-per-player invariant without row locks.
    """

    def __init__(
        self,
        server_id: str,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        orphan_backdate: timedelta | None = None,
    ) -> None:
        self.server_id = server_id
        self._session_factory = session_factory
        self.orphan_backdate = (
            timedelta(minutes=settings.orphan_join_backdate_minutes)
            if orphan_backdate is None
            else orphan_backdate
        )

    def handle_event(self, event: SessionEvent) -> PlayerSession:
        """Apply one JOIN or DISCONNECT event and return the affected session."""
        with self._session_factory() as db:
            if event.type is SessionEventType.JOIN:
                session = self._handle_join(db, event)
            elif event.type is SessionEventType.DISCONNECT:
                session = self._handle_disconnect(db, event)
            else:  # pragma: no cover - exhaustive enum
                raise ValueError(f"Unknown event type: {event.type}")
            db.commit()
            db.refresh(session)
            db.expunge(session)
            return session

    def _find_open_session(self, db: Session, steam64: str) -> PlayerSession | None:
        return find_open_session(db, steam64, self.server_id)

    def _handle_join(self, db: Session, event: SessionEvent) -> PlayerSession:
        existing = self._find_open_session(db, event.steam64)
        if existing is not None:
            logger.warning(
                "Player %s (%s) joined with open session #%d; closing it at %s",
                event.player_name,
                event.steam64,
                existing.id,
                event.timestamp.isoformat(),
            )
            existing.left_at = event.timestamp

        session = PlayerSession(
            steam64=event.steam64,
            player_name=event.player_name,
            joined_at=event.timestamp,
            left_at=None,
            server_id=self.server_id,
            is_placeholder=False,
        )
        db.add(session)
        db.flush()
        logger.info(
            "Player joined: %s (%s) - session #%d",
            event.player_name,
            event.steam64,
            session.id,
        )
        return session

    def _handle_disconnect(self, db: Session, event: SessionEvent) -> PlayerSession:
        session = self._find_open_session(db, event.steam64)
        if session is None:
            logger.warning(
                "Player %s (%s) disconnected with no open session; recording a closed one",
                event.player_name,
                event.steam64,
            )
            session = PlayerSession(
                steam64=event.steam64,
                player_name=event.player_name,
                joined_at=event.timestamp - self.orphan_backdate,
                left_at=event.timestamp,
                server_id=self.server_id,
                is_placeholder=False,
            )
            db.add(session)
            db.flush()
            return session

        session.left_at = event.timestamp
        db.flush()
        duration = ensure_utc(event.timestamp) - ensure_utc(session.joined_at)
        logger.info(
            "Player left: %s (%s) - session #%d - duration %d min",
            event.player_name,
            event.steam64,
            session.id,
            int(duration.total_seconds() // 60),
        )
        return session

    def get_online_players(self) -> list[PlayerSession]:
        """Open sessions on this server, newest join first."""
        with self._session_factory() as db:
            sessions = online_sessions(db, self.server_id)
            db.expunge_all()
            return sessions

    def get_latest_session(self, steam64: str) -> PlayerSession | None:
        """Return the open session if any, otherwise the most recently closed one."""
        with self._session_factory() as db:
            session = latest_session(db, steam64, self.server_id)
            if session is not None:
                db.expunge(session)
            return session

    def get_stats(self) -> dict[str, int]:
        with self._session_factory() as db:
            return session_stats(db, self.server_id)

    def close_all_open_sessions(self, at: datetime | None = None) -> int:
        """Force-close every open session on this server; used on shutdown."""
        close_time = at or utcnow()
        with self._session_factory() as db:
            result = db.execute(
                update(PlayerSession)
                .where(
                    PlayerSession.server_id == self.server_id,
                    PlayerSession.left_at.is_(None),
                )
                .values(left_at=close_time)
            )
            db.commit()
        closed = int(result.rowcount or 0)
        logger.info("Closed %d open sessions on %s", closed, self.server_id)
        return closed


def find_open_session(db: Session, steam64: str, server_id: str) -> PlayerSession | None:
    return db.scalars(
        select(PlayerSession)
        .where(
            PlayerSession.steam64 == steam64,
            PlayerSession.server_id == server_id,
            PlayerSession.left_at.is_(None),
        )
        .order_by(PlayerSession.joined_at.desc(), PlayerSession.id.desc())
    ).first()


def latest_session(db: Session, steam64: str, server_id: str) -> PlayerSession | None:
    session = find_open_session(db, steam64, server_id)
    if session is not None:
        return session
    return db.scalars(
        select(PlayerSession)
        .where(
            PlayerSession.steam64 == steam64,
            PlayerSession.server_id == server_id,
            PlayerSession.left_at.is_not(None),
            PlayerSession.is_placeholder.is_(False),
        )
        .order_by(PlayerSession.left_at.desc(), PlayerSession.id.desc())
    ).first()


def online_sessions(db: Session, server_id: str) -> list[PlayerSession]:
    return list(
        db.scalars(
            select(PlayerSession)
            .where(
                PlayerSession.server_id == server_id,
                PlayerSession.left_at.is_(None),
                PlayerSession.is_placeholder.is_(False),
            )
            .order_by(PlayerSession.joined_at.desc())
        )
    )


def session_stats(db: Session, server_id: str) -> dict[str, int]:
    """Total, active and unique-player counts for real sessions on a server."""
    base = (
        PlayerSession.server_id == server_id,
        PlayerSession.is_placeholder.is_(False),
    )
    total = db.scalar(select(func.count()).select_from(PlayerSession).where(*base)) or 0
    active = (
        db.scalar(
            select(func.count())
            .select_from(PlayerSession)
            .where(*base, PlayerSession.left_at.is_(None))
        )
        or 0
    )
    unique_players = (
        db.scalar(select(func.count(func.distinct(PlayerSession.steam64))).where(*base)) or 0
    )
    return {
        "totalSessions": int(total),
        "activeSessions": int(active),
        "uniquePlayers": int(unique_players),
    }
