# src/karma_node/models/trusted_node.py
"""Peer nodes permitted to push replicated votes."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from karma_node.db.session import Base


class TrustedNode(Base):
    """Operator-configured replication peer.

    ``last_seen_at`` is refreshed after every successful inbound batch and
    serves as a liveness signal for monitoring.
    """

    __tablename__ = "trusted_node"

    node_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_seen_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
