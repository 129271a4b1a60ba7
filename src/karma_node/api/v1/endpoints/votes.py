# src/karma_node/api/v1/endpoints/votes.py
"""Vote submission endpoints."""

from typing import Any

from fastapi import APIRouter, status

from karma_node.schemas.vote import VoteCreate
from karma_node.services.vote_ledger import reason_categories

from ..dependencies import ApiKeyDep, SessionDep, VoteLedgerDep

router = APIRouter(prefix="/votes", tags=["votes"], dependencies=[ApiKeyDep])


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_vote(
    vote_data: VoteCreate,
    db: SessionDep,
    ledger: VoteLedgerDep,
) -> dict[str, Any]:
    """Record a vote once the players are proven to have played together.

    Fails with 403 when the overlap proof fails and 409 when this session
    pair already carries a vote.
    """
    receipt = ledger.submit_vote(
        db,
        vote_data.voter_steam64,
        vote_data.target_steam64,
        vote_data.direction,
        vote_data.reason_category,
    )
    return {"success": True, "vote": receipt.to_dict()}


@router.get("/categories")
async def list_categories() -> dict[str, Any]:
    """Reason categories accepted by vote submission."""
    return {"categories": reason_categories()}
