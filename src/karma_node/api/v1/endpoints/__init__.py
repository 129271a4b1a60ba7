# src/karma_node/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .replication import router as replication_router
from .reputation import router as reputation_router
from .sessions import router as sessions_router
from .system import router as system_router
from .votes import router as votes_router

__all__ = [
    "replication_router",
    "reputation_router",
    "sessions_router",
    "system_router",
    "votes_router",
]
