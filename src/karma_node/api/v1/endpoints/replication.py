# src/karma_node/api/v1/endpoints/replication.py
"""Node-to-node replication endpoints."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Header, Query
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from karma_node.core.errors import UntrustedSourceError
from karma_node.core.security import verify_peer_token
from karma_node.core.settings import MAX_REPLICATION_BATCH, settings
from karma_node.db.time import isoformat, utcnow
from karma_node.schemas.replication import ReplicationBatch
from karma_node.services.peer_client import PEER_TOKEN_HEADER
from karma_node.services.replication import parse_timestamp, replication_health

from ..dependencies import ApiKeyDep, ExchangerDep, SessionDep, TTLStoreDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/replicate", tags=["replication"])

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@router.post("/votes", dependencies=[ApiKeyDep])
async def receive_votes(
    batch: ReplicationBatch,
    db: SessionDep,
    exchanger: ExchangerDep,
    replay_store: TTLStoreDep,
    peer_token: Annotated[str | None, Header(alias=PEER_TOKEN_HEADER)] = None,
) -> dict[str, Any]:
    """Merge a batch of votes pushed by a trusted peer."""
    if settings.replication_shared_secret:
        if not peer_token:
            raise UntrustedSourceError("Peer token required")
        verify_peer_token(
            peer_token,
            source_node_id=batch.source_node_id,
            shared_secret=settings.replication_shared_secret,
            audience=settings.replication_audience,
            replay_store=replay_store,
            max_ttl_seconds=settings.replication_token_ttl_seconds,
        )

    result = exchanger.receive_batch(db, batch.votes, batch.source_node_id)
    return {
        "success": True,
        "results": result.to_dict(),
        "message": (
            f"Processed {result.total} votes: {result.inserted} inserted, "
            f"{result.duplicates} duplicates, {result.errors} errors"
        ),
    }


@router.get("/votes", dependencies=[ApiKeyDep])
async def votes_since(
    db: SessionDep,
    exchanger: ExchangerDep,
    since: str | None = None,
    limit: Annotated[int, Query(ge=1, le=MAX_REPLICATION_BATCH)] = MAX_REPLICATION_BATCH,
) -> dict[str, Any]:
    """Votes that originated here, created after `since`, oldest first."""
    since_at = parse_timestamp(since) if since else EPOCH
    votes = exchanger.get_votes_since(db, since_at, limit)
    return {
        "nodeId": settings.node_id,
        "since": isoformat(since_at),
        "count": len(votes),
        "votes": votes,
    }


@router.get("/health", response_model=None)
async def health(db: SessionDep) -> dict[str, Any] | JSONResponse:
    """Unauthenticated liveness check for peers."""
    try:
        db.execute(text("SELECT 1"))
        counts = replication_health(db)
    except SQLAlchemyError as exc:
        logger.error("Replication health check failed: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "nodeId": settings.node_id, "error": str(exc)},
        )
    return {
        "status": "healthy",
        "nodeId": settings.node_id,
        "timestamp": isoformat(utcnow()),
        **counts,
    }
