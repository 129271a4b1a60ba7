# src/karma_node/models/session.py
"""Play sessions reconstructed from the game-server log."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from karma_node.db.session import Base
from karma_node.db.time import ensure_utc, utcnow


class PlayerSession(Base):
    """One continuous period a player was present on one server.

    A row with ``left_at`` set to ``None`` is an open session. For a given
    ``(steam64, server_id)`` at most one open session exists at a time.

    Sessions synthesized by replication only satisfy the vote foreign keys;
    they carry ``is_placeholder = True`` and never count as proof of presence.
    """

    __tablename__ = "player_session"
    __table_args__ = (
        Index("ix_player_session_open", "steam64", "server_id", "left_at"),
        Index("ix_player_session_joined_at", "steam64", "joined_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    steam64: Mapped[str] = mapped_column(String(17), nullable=False)
    player_name: Mapped[str] = mapped_column(Text, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    server_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_placeholder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def is_active(self) -> bool:
        return self.left_at is None

    def effective_end(self, now: datetime | None = None) -> datetime:
        """Return the session end, treating an open session as ending `now`."""
        if self.left_at is not None:
            return ensure_utc(self.left_at)
        return ensure_utc(now or utcnow())

    def duration_minutes(self, now: datetime | None = None) -> int:
        """Whole minutes between join and (effective) leave."""
        delta = self.effective_end(now) - ensure_utc(self.joined_at)
        return max(0, int(delta.total_seconds() // 60))

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return (
            f"PlayerSession(id={self.id!r}, steam64={self.steam64!r}, "
            f"joined_at={self.joined_at!r}, left_at={self.left_at!r})"
        )
