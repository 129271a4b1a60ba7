# src/karma_node/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .replication import ReplicationBatch
from .session import OverlapRequest, SessionResponse
from .vote import VoteCreate

__all__ = [
    "OverlapRequest", "SessionResponse",
    "ReplicationBatch",
    "VoteCreate",
]
