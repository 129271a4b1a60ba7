# src/karma_node/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    replication_router,
    reputation_router,
    sessions_router,
    system_router,
    votes_router,
)

__all__ = [
    "replication_router",
    "reputation_router",
    "sessions_router",
    "system_router",
    "votes_router",
]
