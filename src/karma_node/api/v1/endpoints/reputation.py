# src/karma_node/api/v1/endpoints/reputation.py
"""Reputation read endpoints."""

from typing import Any

from fastapi import APIRouter

from ..dependencies import ApiKeyDep, SessionDep, VoteLedgerDep

router = APIRouter(prefix="/reputation", tags=["reputation"], dependencies=[ApiKeyDep])


@router.get("/{steam64}")
async def get_reputation(steam64: str, db: SessionDep, ledger: VoteLedgerDep) -> dict[str, Any]:
    """Aggregate reputation for a player; all zeros when nobody voted."""
    return ledger.get_reputation(db, steam64)
