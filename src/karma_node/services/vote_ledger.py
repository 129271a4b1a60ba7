"""Vote admission and reputation aggregation.

A vote is admitted only after the overlap validator proves the two players
shared a session, and at most once per winning ``(voter session, target
session)`` pair. Reputation is never stored; it is recomputed from the votes
on every read.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from karma_node.core.errors import DuplicateVoteError, ProofOfPresenceError, ValidationError
from karma_node.core.settings import settings
from karma_node.db.time import isoformat, utcnow
from karma_node.models import Vote, VoteDirection
from karma_node.services.overlap import OverlapResult, OverlapValidator, session_proof
from karma_node.utils.steam import is_valid_steam64, steam_profile_url

logger = logging.getLogger(__name__)

POSITIVE_REASONS: Final[tuple[str, ...]] = (
    "Good squad leader",
    "Helpful",
    "Good pilot/driver",
    "Team player",
    "Good communication",
    "Skilled player",
    "Good commander",
)
NEGATIVE_REASONS: Final[tuple[str, ...]] = (
    "Trolling",
    "Teamkilling",
    "Toxic behavior",
    "Bad at vehicles",
    "Mic spam",
    "Not following orders",
    "Griefing",
    "AFK / Idle",
)
NEUTRAL_REASONS: Final[tuple[str, ...]] = ("New player",)
ALL_REASONS: Final[tuple[str, ...]] = POSITIVE_REASONS + NEGATIVE_REASONS + NEUTRAL_REASONS


def reason_categories() -> list[dict[str, str]]:
    """The fixed reason list with its polarity, in display order."""
    return (
        [{"name": name, "type": "POSITIVE"} for name in POSITIVE_REASONS]
        + [{"name": name, "type": "NEGATIVE"} for name in NEGATIVE_REASONS]
        + [{"name": name, "type": "NEUTRAL"} for name in NEUTRAL_REASONS]
    )


def vote_summary(vote: Vote) -> dict[str, Any]:
    return {
        "id": vote.id,
        "direction": vote.direction.value,
        "reasonCategory": vote.reason_category,
        "createdAt": isoformat(vote.created_at),
    }


@dataclass(frozen=True)
class VoteReceipt:
    """An admitted vote plus the overlap proof that justified it."""

    vote: Vote
    overlap: OverlapResult

    def to_dict(self) -> dict[str, Any]:
        payload = vote_summary(self.vote)
        payload["voterSteam64"] = self.vote.voter_steam64
        payload["targetSteam64"] = self.vote.target_steam64
        payload["proof"] = {
            "voterSession": session_proof(self.overlap.voter_session),
            "targetSession": session_proof(self.overlap.target_session),
            "overlapMinutes": self.overlap.overlap_minutes,
        }
        return payload


class VoteLedger:
    """Records votes keyed by session pair and aggregates reputation."""

    def __init__(self, validator: OverlapValidator | None = None) -> None:
        self.validator = validator or OverlapValidator()

    def submit_vote(
        self,
        db: Session,
        voter_steam64: str,
        target_steam64: str,
        direction: str | VoteDirection,
        reason_category: str,
        *,
        now: datetime | None = None,
    ) -> VoteReceipt:
        """Admit a vote after proof of presence.

        Raises:
            ValidationError: Self-vote, malformed id, direction or category.
            ProofOfPresenceError: The players did not overlap enough.
            DuplicateVoteError: A vote already exists for the winning session pair.
        """
        # Self-votes fail before any session lookup.
        if voter_steam64 == target_steam64:
            raise ValidationError("You cannot vote for yourself")
        if not is_valid_steam64(voter_steam64) or not is_valid_steam64(target_steam64):
            raise ValidationError("Invalid Steam64 ID format")
        vote_direction = _parse_direction(direction)
        if reason_category not in ALL_REASONS:
            raise ValidationError(
                f"Unknown reason category: {reason_category!r}",
                details={"allowed": list(ALL_REASONS)},
            )

        overlap = self.validator.validate_overlap(db, voter_steam64, target_steam64, now=now)
        if not overlap.valid:
            raise ProofOfPresenceError(
                f"Proof of presence failed: {overlap.reason}",
                details=overlap.diagnostics(),
            )
        if overlap.voter_session is None or overlap.target_session is None:
            # A zero threshold admits disjoint sessions, but a vote needs a session pair.
            raise ProofOfPresenceError(
                "Proof of presence failed: players never overlapped",
                details=overlap.diagnostics(),
            )

        existing = self._find_by_session_pair(
            db, overlap.voter_session_id, overlap.target_session_id
        )
        if existing is not None:
            raise DuplicateVoteError(
                "You have already voted for this player in this session",
                existing_vote=vote_summary(existing),
            )

        vote = Vote(
            voter_steam64=voter_steam64,
            target_steam64=target_steam64,
            direction=vote_direction,
            reason_category=reason_category,
            voter_session_id=overlap.voter_session_id,
            target_session_id=overlap.target_session_id,
            created_at=now or utcnow(),
            replicated_from=None,
        )
        db.add(vote)
        try:
            db.commit()
        except IntegrityError as err:
            # A concurrent request won the insert for the same session pair.
            db.rollback()
            existing = self._find_by_session_pair(
                db, overlap.voter_session_id, overlap.target_session_id
            )
            if existing is None:
                raise
            raise DuplicateVoteError(
                "You have already voted for this player in this session",
                existing_vote=vote_summary(existing),
            ) from err

        db.refresh(vote)
        logger.info(
            "Vote #%d recorded: %s -> %s %s (%s), overlap %d min",
            vote.id,
            voter_steam64,
            target_steam64,
            vote_direction.value,
            reason_category,
            overlap.overlap_minutes,
        )
        return VoteReceipt(vote=vote, overlap=overlap)

    @staticmethod
    def _find_by_session_pair(
        db: Session, voter_session_id: int | None, target_session_id: int | None
    ) -> Vote | None:
        return db.scalars(
            select(Vote).where(
                Vote.voter_session_id == voter_session_id,
                Vote.target_session_id == target_session_id,
            )
        ).first()

    def get_reputation(self, db: Session, steam64: str) -> dict[str, Any]:
        """Aggregate every vote targeting `steam64`; all zeros when there are none."""
        if not is_valid_steam64(steam64):
            raise ValidationError("Invalid Steam64 ID format")

        votes = list(
            db.scalars(
                select(Vote)
                .where(Vote.target_steam64 == steam64)
                .order_by(Vote.created_at.desc(), Vote.id.desc())
            )
        )

        upvotes = sum(1 for vote in votes if vote.direction is VoteDirection.UP)
        downvotes = len(votes) - upvotes

        tallies: dict[str, Counter[str]] = {}
        for vote in votes:
            tallies.setdefault(vote.reason_category, Counter())[vote.direction.value] += 1
        categories = [
            {
                "category": name,
                "up": counts["UP"],
                "down": counts["DOWN"],
                "total": counts["UP"] + counts["DOWN"],
            }
            for name, counts in tallies.items()
        ]
        categories.sort(key=lambda item: (-item["total"], item["category"]))

        recent = [
            {
                "direction": vote.direction.value,
                "reasonCategory": vote.reason_category,
                "createdAt": isoformat(vote.created_at),
                "replicatedFrom": vote.replicated_from,
            }
            for vote in votes[: settings.reputation_recent_votes]
        ]

        return {
            "steam64": steam64,
            "profileUrl": steam_profile_url(steam64),
            "totalVotes": len(votes),
            "upvotes": upvotes,
            "downvotes": downvotes,
            "netReputation": upvotes - downvotes,
            "categories": categories[: settings.reputation_top_categories],
            "recentVotes": recent,
        }


def count_votes(db: Session) -> int:
    return int(db.scalar(select(func.count()).select_from(Vote)) or 0)


def _parse_direction(direction: str | VoteDirection) -> VoteDirection:
    if isinstance(direction, VoteDirection):
        return direction
    try:
        return VoteDirection(str(direction).upper())
    except ValueError as err:
        raise ValidationError("Direction must be UP or DOWN") from err
