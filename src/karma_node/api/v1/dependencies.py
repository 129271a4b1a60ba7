"""Shared API dependencies for authentication and service wiring."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from karma_node.core.security import api_key_matches
from karma_node.core.settings import settings
from karma_node.db.session import get_db
from karma_node.services.overlap import OverlapValidator
from karma_node.services.replication import ReplicationExchanger
from karma_node.services.ttl_store import TTLStore
from karma_node.services.vote_ledger import VoteLedger

# Missing credentials are reported as 401 by `require_api_key`
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def require_api_key(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    """Reject requests that do not present the node's API key.

    Raises:
        HTTPException: 401 if the bearer key is missing or wrong.
    """
    presented = credentials.credentials if credentials is not None else None
    if not api_key_matches(presented, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_overlap_validator() -> OverlapValidator:
    return OverlapValidator()


def get_vote_ledger(
    validator: Annotated[OverlapValidator, Depends(get_overlap_validator)],
) -> VoteLedger:
    return VoteLedger(validator)


def get_exchanger() -> ReplicationExchanger:
    return ReplicationExchanger()


def get_ttl_store(request: Request) -> TTLStore:
    """Return the app-scoped TTL store, creating it on first use."""
    store: TTLStore | None = getattr(request.app.state, "ttl_store", None)
    if store is None:
        store = TTLStore(settings.redis_url)
        request.app.state.ttl_store = store
    return store


ApiKeyDep = Depends(require_api_key)
OverlapValidatorDep = Annotated[OverlapValidator, Depends(get_overlap_validator)]
VoteLedgerDep = Annotated[VoteLedger, Depends(get_vote_ledger)]
ExchangerDep = Annotated[ReplicationExchanger, Depends(get_exchanger)]
TTLStoreDep = Annotated[TTLStore, Depends(get_ttl_store)]
