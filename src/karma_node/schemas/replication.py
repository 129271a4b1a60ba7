# src/karma_node/schemas/replication.py
"""Replication wire schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from karma_node.core.settings import MAX_REPLICATION_BATCH


class ReplicationBatch(BaseModel):
    """Inbound push from a peer.

    Items stay loosely typed so that one malformed vote is counted as an error
    by the exchanger instead of rejecting the whole batch.
    """

    model_config = ConfigDict(populate_by_name=True)

    votes: list[dict[str, Any]] = Field(..., max_length=MAX_REPLICATION_BATCH)
    source_node_id: str = Field(..., alias="sourceNodeId", min_length=1)
