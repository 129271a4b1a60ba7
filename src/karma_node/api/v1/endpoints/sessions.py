# src/karma_node/api/v1/endpoints/sessions.py
"""Session and proof-of-presence endpoints."""

from typing import Any

from fastapi import APIRouter

from karma_node.core.errors import NotFoundError, ValidationError
from karma_node.core.settings import settings
from karma_node.db.time import utcnow
from karma_node.schemas.session import OverlapRequest, SessionResponse
from karma_node.services.session_manager import latest_session, online_sessions
from karma_node.utils.steam import is_valid_steam64, steam64_error

from ..dependencies import ApiKeyDep, OverlapValidatorDep, SessionDep

router = APIRouter(prefix="/session", tags=["sessions"], dependencies=[ApiKeyDep])


@router.get("/online")
async def list_online(db: SessionDep) -> dict[str, Any]:
    """Players with an open session on this node."""
    now = utcnow()
    players = [
        SessionResponse.from_session(session, now).model_dump(by_alias=True)
        for session in online_sessions(db, settings.node_id)
    ]
    return {"count": len(players), "players": players}


@router.post("/validate-overlap")
async def validate_overlap(
    request: OverlapRequest,
    db: SessionDep,
    validator: OverlapValidatorDep,
) -> dict[str, Any]:
    """Run the proof-of-presence check without recording a vote."""
    result = validator.validate_overlap(
        db,
        request.voter_steam64,
        request.target_steam64,
        request.min_overlap_minutes,
        request.trust_window_hours,
    )
    payload = result.to_dict()
    payload["details"] = result.diagnostics()
    return payload


@router.get("/{steam64}", response_model=SessionResponse)
async def get_session(steam64: str, db: SessionDep) -> SessionResponse:
    """Current session, or the most recent closed one, for a player."""
    if not is_valid_steam64(steam64):
        raise ValidationError(steam64_error(steam64) or "Invalid Steam64 ID format")

    session = latest_session(db, steam64, settings.node_id)
    if session is None:
        raise NotFoundError("Session", details={"steam64": steam64})
    return SessionResponse.from_session(session)
