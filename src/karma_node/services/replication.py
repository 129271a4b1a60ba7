"""Vote replication between trusted nodes.

Inbound batches are merged vote by vote; outbound feeds expose only votes
that originated on this node so nothing is re-broadcast. Nodes share no vote
identifier, so an incoming vote is treated as a duplicate when the same
voter/target pair already has a vote within the dedup window of its
timestamp. First vote wins.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from karma_node.core.errors import UntrustedSourceError, ValidationError
from karma_node.core.settings import MAX_REPLICATION_BATCH, settings
from karma_node.db.time import ensure_utc, isoformat, utcnow
from karma_node.models import PlayerSession, TrustedNode, Vote, VoteDirection
from karma_node.utils.steam import is_valid_steam64

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME_DIGITS = 8
EARLIEST = datetime.min.replace(tzinfo=UTC)
LATEST = datetime.max.replace(tzinfo=UTC)


@dataclass
class BatchResult:
    """Per-batch outcome counts for an inbound replication push."""

    total: int = 0
    inserted: int = 0
    duplicates: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class ReplicatedVote:
    """A validated inbound vote in local types."""

    voter_steam64: str
    target_steam64: str
    direction: VoteDirection
    reason_category: str
    created_at: datetime
    source_node_id: str | None = None

    @classmethod
    def from_wire(
        cls, item: Mapping[str, Any], *, dedup_window: timedelta | None = None
    ) -> ReplicatedVote:
        """Validate one wire item.

        When `dedup_window` is given, the timestamp must leave room for the
        window on both sides of it.

        Raises:
            ValidationError: If any field is missing or malformed.
        """
        try:
            voter = str(item["voterSteam64"])
            target = str(item["targetSteam64"])
            raw_direction = str(item["direction"]).upper()
            reason = item["reasonCategory"]
            raw_created = item["createdAt"]
        except (KeyError, TypeError) as err:
            raise ValidationError(f"Replicated vote is missing field {err}") from err

        if not is_valid_steam64(voter) or not is_valid_steam64(target):
            raise ValidationError("Invalid Steam64 ID format")
        if voter == target:
            raise ValidationError("Replicated vote is a self-vote")
        try:
            direction = VoteDirection(raw_direction)
        except ValueError as err:
            raise ValidationError("Direction must be UP or DOWN") from err
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("Reason category is required")

        created_at = parse_timestamp(raw_created)
        if dedup_window is not None and not (
            EARLIEST + dedup_window <= created_at <= LATEST - dedup_window
        ):
            raise ValidationError(f"Timestamp out of range: {raw_created!r}")

        source = item.get("sourceNodeId")
        return cls(
            voter_steam64=voter,
            target_steam64=target,
            direction=direction,
            reason_category=reason,
            created_at=created_at,
            source_node_id=None if source is None else str(source),
        )


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 wire timestamp (``Z`` suffix allowed) to aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        raise ValidationError("Timestamp must be an ISO-8601 string")
    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except (ValueError, OverflowError) as err:
        raise ValidationError(f"Invalid timestamp: {value!r}") from err


def vote_to_wire(vote: Vote, source_node_id: str) -> dict[str, Any]:
    return {
        "voterSteam64": vote.voter_steam64,
        "targetSteam64": vote.target_steam64,
        "direction": vote.direction.value,
        "reasonCategory": vote.reason_category,
        "voterSessionId": vote.voter_session_id,
        "targetSessionId": vote.target_session_id,
        "createdAt": isoformat(vote.created_at),
        "sourceNodeId": source_node_id,
    }


class ReplicationExchanger:
    """Merge votes pushed by peers and serve this node's originals."""

    def __init__(
        self,
        node_id: str | None = None,
        *,
        dedup_window: timedelta | None = None,
    ) -> None:
        self.node_id = node_id or settings.node_id
        self.dedup_window = dedup_window if dedup_window is not None else timedelta(
            minutes=settings.replication_dedup_window_minutes
        )

    def receive_batch(
        self,
        db: Session,
        votes: Sequence[Mapping[str, Any]],
        source_node_id: str,
    ) -> BatchResult:
        """Merge a batch from `source_node_id`.

        Each vote commits on its own, so one bad record only bumps ``errors``.

        Raises:
            UntrustedSourceError: If the source is not an active trusted node.
            ValidationError: If the batch exceeds the maximum size.
        """
        node = db.get(TrustedNode, source_node_id)
        if node is None or not node.is_active:
            logger.warning("Rejected replication batch from untrusted node %s", source_node_id)
            raise UntrustedSourceError(
                f"Node {source_node_id} is not a trusted replication source",
                details={"sourceNodeId": source_node_id},
            )
        if len(votes) > MAX_REPLICATION_BATCH:
            raise ValidationError(
                f"Replication batches are limited to {MAX_REPLICATION_BATCH} votes",
                details={"received": len(votes)},
            )

        result = BatchResult(total=len(votes))
        for index, item in enumerate(votes):
            try:
                incoming = ReplicatedVote.from_wire(item, dedup_window=self.dedup_window)
                if incoming.source_node_id not in (None, source_node_id):
                    raise ValidationError(
                        f"Vote names source {incoming.source_node_id}, batch is from "
                        f"{source_node_id}"
                    )
                if self._is_duplicate(db, incoming):
                    result.duplicates += 1
                    continue
                self._insert(db, incoming, source_node_id)
                db.commit()
                result.inserted += 1
            except ValidationError as exc:
                db.rollback()
                result.errors += 1
                logger.warning(
                    "Skipping invalid replicated vote %d from %s: %s",
                    index,
                    source_node_id,
                    exc.message,
                )
            except (OverflowError, ValueError) as exc:
                db.rollback()
                result.errors += 1
                logger.warning(
                    "Skipping out-of-range replicated vote %d from %s: %s",
                    index,
                    source_node_id,
                    exc,
                )
            except SQLAlchemyError as exc:
                db.rollback()
                result.errors += 1
                logger.error(
                    "Failed to store replicated vote %d from %s: %s",
                    index,
                    source_node_id,
                    exc,
                    exc_info=True,
                )

        node = db.get(TrustedNode, source_node_id)
        if node is not None:
            node.last_seen_at = utcnow()
            db.commit()

        logger.info(
            "Replication batch from %s: %d inserted, %d duplicates, %d errors",
            source_node_id,
            result.inserted,
            result.duplicates,
            result.errors,
        )
        return result

    def _is_duplicate(self, db: Session, incoming: ReplicatedVote) -> bool:
        existing = db.scalars(
            select(Vote.id).where(
                Vote.voter_steam64 == incoming.voter_steam64,
                Vote.target_steam64 == incoming.target_steam64,
                Vote.created_at >= incoming.created_at - self.dedup_window,
                Vote.created_at <= incoming.created_at + self.dedup_window,
            )
        ).first()
        return existing is not None

    def _insert(self, db: Session, incoming: ReplicatedVote, source_node_id: str) -> Vote:
        voter_session = self._placeholder_session(
            db, incoming.voter_steam64, source_node_id, incoming.created_at
        )
        target_session = self._placeholder_session(
            db, incoming.target_steam64, source_node_id, incoming.created_at
        )
        vote = Vote(
            voter_steam64=incoming.voter_steam64,
            target_steam64=incoming.target_steam64,
            direction=incoming.direction,
            reason_category=incoming.reason_category,
            voter_session_id=voter_session.id,
            target_session_id=target_session.id,
            created_at=incoming.created_at,
            replicated_from=source_node_id,
        )
        db.add(vote)
        db.flush()
        return vote

    def _placeholder_session(
        self, db: Session, steam64: str, source_node_id: str, at: datetime
    ) -> PlayerSession:
        """Find or create the zero-length session a replicated vote hangs off.

        Placeholders are keyed by their exact timestamp, so two distinct votes
        never share a session pair.
        """
        existing = db.scalars(
            select(PlayerSession)
            .where(
                PlayerSession.steam64 == steam64,
                PlayerSession.server_id == source_node_id,
                PlayerSession.is_placeholder.is_(True),
                PlayerSession.joined_at == at,
            )
            .order_by(PlayerSession.id)
        ).first()
        if existing is not None:
            return existing

        session = PlayerSession(
            steam64=steam64,
            player_name=f"Player-{steam64[:PLACEHOLDER_NAME_DIGITS]}",
            joined_at=at,
            left_at=at,
            server_id=source_node_id,
            is_placeholder=True,
        )
        db.add(session)
        db.flush()
        return session

    def get_votes_since(
        self, db: Session, since: datetime, limit: int = MAX_REPLICATION_BATCH
    ) -> list[dict[str, Any]]:
        """Local original votes created strictly after `since`, oldest first."""
        capped = max(1, min(limit, MAX_REPLICATION_BATCH))
        votes = db.scalars(
            select(Vote)
            .where(Vote.created_at > ensure_utc(since), Vote.replicated_from.is_(None))
            .order_by(Vote.created_at.asc(), Vote.id.asc())
            .limit(capped)
        )
        return [vote_to_wire(vote, self.node_id) for vote in votes]


def seed_trusted_nodes(db: Session, node_ids: Iterable[str]) -> int:
    """Upsert `node_ids` as active trusted nodes; returns how many were touched."""
    touched = 0
    for node_id in node_ids:
        node = db.get(TrustedNode, node_id)
        if node is None:
            db.add(TrustedNode(node_id=node_id, is_active=True))
        elif not node.is_active:
            node.is_active = True
        else:
            continue
        touched += 1
    db.commit()
    if touched:
        logger.info("Seeded %d trusted replication nodes", touched)
    return touched


def set_trusted_node_active(db: Session, node_id: str, active: bool) -> TrustedNode:
    node = db.get(TrustedNode, node_id)
    if node is None:
        node = TrustedNode(node_id=node_id, is_active=active)
        db.add(node)
    else:
        node.is_active = active
    db.commit()
    db.refresh(node)
    return node


def replication_health(db: Session) -> dict[str, int]:
    """Row counts used by peers to judge whether this node is serving."""
    votes = db.scalar(select(func.count()).select_from(Vote)) or 0
    sessions = db.scalar(select(func.count()).select_from(PlayerSession)) or 0
    active_nodes = (
        db.scalar(
            select(func.count()).select_from(TrustedNode).where(TrustedNode.is_active.is_(True))
        )
        or 0
    )
    return {
        "votes": int(votes),
        "sessions": int(sessions),
        "trustedNodes": int(active_nodes),
    }
