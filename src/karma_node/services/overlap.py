# src/karma_node/services/overlap.py
"""Proof-of-presence overlap validation.

Two players qualify when some pair of their sessions inside the trust window
intersects for at least the minimum overlap. Open sessions are treated as
ending "now", so a live session overlaps anything still ongoing.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from karma_node.core.errors import ValidationError
from karma_node.core.settings import settings
from karma_node.db.time import ensure_utc, isoformat, utcnow
from karma_node.models import PlayerSession
from karma_node.utils.steam import is_valid_steam64

ZERO = timedelta(0)


@dataclass(frozen=True)
class OverlapResult:
    """Outcome of an overlap check between a voter and a target."""

    valid: bool
    overlap_minutes: int
    reason: str
    min_overlap_minutes: int
    trust_window_hours: int
    voter_has_sessions: bool
    target_has_sessions: bool
    voter_session: PlayerSession | None = None
    target_session: PlayerSession | None = None

    @property
    def voter_session_id(self) -> int | None:
        return self.voter_session.id if self.voter_session is not None else None

    @property
    def target_session_id(self) -> int | None:
        return self.target_session.id if self.target_session is not None else None

    def diagnostics(self) -> dict[str, Any]:
        """Detail a front end needs to explain a rejection."""
        return {
            "voterHasSessions": self.voter_has_sessions,
            "targetHasSessions": self.target_has_sessions,
            "minOverlapMinutes": self.min_overlap_minutes,
            "trustWindowHours": self.trust_window_hours,
            "overlapMinutes": self.overlap_minutes,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "overlapMinutes": self.overlap_minutes,
            "voterSessionId": self.voter_session_id,
            "targetSessionId": self.target_session_id,
            "reason": self.reason,
        }


def interval_overlap(
    start1: datetime, end1: datetime, start2: datetime, end2: datetime
) -> timedelta:
    """Length of the intersection of two intervals, zero when disjoint."""
    overlap = min(end1, end2) - max(start1, start2)
    return overlap if overlap > ZERO else ZERO


def session_overlap(
    first: PlayerSession, second: PlayerSession, now: datetime | None = None
) -> timedelta:
    reference = now or utcnow()
    return interval_overlap(
        ensure_utc(first.joined_at),
        first.effective_end(reference),
        ensure_utc(second.joined_at),
        second.effective_end(reference),
    )


def find_best_overlap(
    voter_sessions: Sequence[PlayerSession],
    target_sessions: Sequence[PlayerSession],
    now: datetime | None = None,
) -> tuple[timedelta, PlayerSession | None, PlayerSession | None]:
    """Return the maximum-overlap pair across all voter x target sessions.

    Ties keep the first pair met in the nested iteration (voter outer, target
    inner); with newest-first input that favours the most recent sessions.
    Disjoint pairs never win, so the pair is ``(None, None)`` when nothing
    overlaps.
    """
    reference = now or utcnow()
    best = ZERO
    best_voter: PlayerSession | None = None
    best_target: PlayerSession | None = None
    for voter_session in voter_sessions:
        for target_session in target_sessions:
            overlap = session_overlap(voter_session, target_session, reference)
            if overlap > best:
                best = overlap
                best_voter = voter_session
                best_target = target_session
    return best, best_voter, best_target


def recent_sessions(
    db: Session,
    steam64: str,
    *,
    since: datetime,
    server_id: str | None = None,
) -> list[PlayerSession]:
    """Real sessions that began inside the trust window, newest first."""
    query = select(PlayerSession).where(
        PlayerSession.steam64 == steam64,
        PlayerSession.joined_at >= since,
        PlayerSession.is_placeholder.is_(False),
    )
    if server_id is not None:
        query = query.where(PlayerSession.server_id == server_id)
    query = query.order_by(PlayerSession.joined_at.desc(), PlayerSession.id.desc())
    return list(db.scalars(query))


class OverlapValidator:
    """Decide whether two players shared enough play time to vote."""

    def __init__(
        self,
        server_id: str | None = None,
        *,
        min_overlap_minutes: int | None = None,
        trust_window_hours: int | None = None,
    ) -> None:
        self.server_id = server_id if server_id is not None else settings.node_id
        self.min_overlap_minutes = (
            settings.min_overlap_minutes if min_overlap_minutes is None else min_overlap_minutes
        )
        self.trust_window_hours = (
            settings.trust_window_hours if trust_window_hours is None else trust_window_hours
        )

    def validate_overlap(
        self,
        db: Session,
        voter_steam64: str,
        target_steam64: str,
        min_overlap_minutes: int | None = None,
        trust_window_hours: int | None = None,
        *,
        now: datetime | None = None,
    ) -> OverlapResult:
        """Compute the best session overlap between two players.

        Raises:
            ValidationError: If either id is not a Steam64.
        """
        if not is_valid_steam64(voter_steam64) or not is_valid_steam64(target_steam64):
            raise ValidationError("Invalid Steam64 ID format")

        min_minutes = self.min_overlap_minutes if min_overlap_minutes is None else min_overlap_minutes
        window_hours = self.trust_window_hours if trust_window_hours is None else trust_window_hours
        if min_minutes < 0 or window_hours <= 0:
            raise ValidationError("Overlap threshold and trust window must be positive")

        reference = ensure_utc(now) if now is not None else utcnow()
        since = reference - timedelta(hours=window_hours)

        voter_sessions = recent_sessions(db, voter_steam64, since=since, server_id=self.server_id)
        target_sessions = recent_sessions(
            db, target_steam64, since=since, server_id=self.server_id
        )

        common = {
            "min_overlap_minutes": min_minutes,
            "trust_window_hours": window_hours,
            "voter_has_sessions": bool(voter_sessions),
            "target_has_sessions": bool(target_sessions),
        }
        if not voter_sessions:
            return OverlapResult(
                valid=False,
                overlap_minutes=0,
                reason=f"Voter has no recent sessions (last {window_hours} hours)",
                **common,
            )
        if not target_sessions:
            return OverlapResult(
                valid=False,
                overlap_minutes=0,
                reason=f"Target has no recent sessions (last {window_hours} hours)",
                **common,
            )

        best, voter_session, target_session = find_best_overlap(
            voter_sessions, target_sessions, reference
        )
        overlap_minutes = int(best.total_seconds() // 60)
        valid = overlap_minutes >= min_minutes
        if valid:
            reason = f"Players overlapped for {overlap_minutes} minutes"
        else:
            reason = (
                f"Insufficient overlap ({overlap_minutes} minutes, required: {min_minutes})"
            )
        return OverlapResult(
            valid=valid,
            overlap_minutes=overlap_minutes,
            reason=reason,
            voter_session=voter_session,
            target_session=target_session,
            **common,
        )


def session_proof(session: PlayerSession) -> dict[str, str | None]:
    """Join/leave times of one side of an overlap proof."""
    return {"joinedAt": isoformat(session.joined_at), "leftAt": isoformat(session.left_at)}
