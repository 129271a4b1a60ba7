"""Node statistics endpoints."""

from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, Request

from karma_node.core.settings import settings
from karma_node.db.time import isoformat, utcnow
from karma_node.services.session_manager import session_stats
from karma_node.services.vote_ledger import count_votes

from ..dependencies import ApiKeyDep, SessionDep

router = APIRouter(tags=["system"], dependencies=[ApiKeyDep])

STARTED_AT = time.monotonic()


def format_uptime(seconds: float) -> str:
    """Render uptime as ``"Xh Ym"``."""
    total_minutes = int(seconds // 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"


@router.get("/stats")
async def get_stats(request: Request, db: SessionDep) -> dict[str, Any]:
    """Session, player and vote counters plus process uptime.

    Args:
        request: Incoming request, used to reach the running sync worker
        db: Database session

    Returns:
        Dictionary used by operator tooling and remote health checks
    """
    uptime = time.monotonic() - STARTED_AT
    stats: dict[str, Any] = {
        "nodeId": settings.node_id,
        "nodeName": settings.node_name,
        **session_stats(db, settings.node_id),
        "totalVotes": count_votes(db),
        "uptime": format_uptime(uptime),
        "uptimeSeconds": int(uptime),
        "timestamp": isoformat(utcnow()),
    }

    worker = getattr(request.app.state, "sync_worker", None)
    if worker is not None and worker.enabled:
        stats["replication"] = {
            "peers": sorted(worker.peers),
            "lastResults": worker.state.last_results,
            "metrics": worker.client.get_metrics(),
            "circuitBreakers": worker.client.get_circuit_breaker_status(),
        }
    return stats
