# src/karma_node/models/vote.py
"""Models capturing reputation votes between players."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from karma_node.db.session import Base
from karma_node.db.time import utcnow
from karma_node.models.session import PlayerSession


class VoteDirection(str, enum.Enum):
    """Direction of a reputation judgment."""

    UP = "UP"
    DOWN = "DOWN"


class Vote(Base):
    """One reputation judgment from a voter session to a target session.

    Votes are immutable. The unique constraint on the session pair allows at
    most one vote per concrete overlap; the store rejects a racing duplicate
    insert atomically.
    """

    __tablename__ = "vote"
    __table_args__ = (
        UniqueConstraint(
            "voter_session_id",
            "target_session_id",
            name="uq_vote_session_pair",
        ),
        CheckConstraint("voter_steam64 <> target_steam64", name="ck_vote_not_self"),
        Index("ix_vote_target_created", "target_steam64", "created_at"),
        Index("ix_vote_pair_created", "voter_steam64", "target_steam64", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    voter_steam64: Mapped[str] = mapped_column(String(17), nullable=False)
    target_steam64: Mapped[str] = mapped_column(String(17), nullable=False)
    direction: Mapped[VoteDirection] = mapped_column(
        Enum(VoteDirection, name="vote_direction", native_enum=False, length=8),
        nullable=False,
    )
    reason_category: Mapped[str] = mapped_column(Text, nullable=False)
    voter_session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("player_session.id"),
        nullable=False,
    )
    target_session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("player_session.id"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    # Origin node for replicated votes; None for locally originated ones.
    replicated_from: Mapped[str | None] = mapped_column(String(64), nullable=True)

    voter_session: Mapped[PlayerSession] = relationship(
        "PlayerSession",
        foreign_keys=[voter_session_id],
    )
    target_session: Mapped[PlayerSession] = relationship(
        "PlayerSession",
        foreign_keys=[target_session_id],
    )
