"""initial schema

Revision ID: 5c1f0a7e2b94
Revises:
Create Date: 2026-10-17 09:12:41.503118

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1f0a7e2b94"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create session, vote and trusted-node tables."""
    op.create_table(
        "player_session",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("steam64", sa.String(length=17), nullable=False),
        sa.Column("player_name", sa.Text(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("server_id", sa.String(length=64), nullable=False),
        sa.Column("is_placeholder", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_player_session_open",
        "player_session",
        ["steam64", "server_id", "left_at"],
    )
    op.create_index(
        "ix_player_session_joined_at",
        "player_session",
        ["steam64", "joined_at"],
    )

    op.create_table(
        "vote",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("voter_steam64", sa.String(length=17), nullable=False),
        sa.Column("target_steam64", sa.String(length=17), nullable=False),
        sa.Column(
            "direction",
            sa.Enum("UP", "DOWN", name="vote_direction", native_enum=False, length=8),
            nullable=False,
        ),
        sa.Column("reason_category", sa.Text(), nullable=False),
        sa.Column("voter_session_id", sa.Integer(), nullable=False),
        sa.Column("target_session_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("replicated_from", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["voter_session_id"], ["player_session.id"]),
        sa.ForeignKeyConstraint(["target_session_id"], ["player_session.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "voter_session_id", "target_session_id", name="uq_vote_session_pair"
        ),
        sa.CheckConstraint("voter_steam64 <> target_steam64", name="ck_vote_not_self"),
    )
    op.create_index("ix_vote_target_created", "vote", ["target_steam64", "created_at"])
    op.create_index(
        "ix_vote_pair_created",
        "vote",
        ["voter_steam64", "target_steam64", "created_at"],
    )

    op.create_table(
        "trusted_node",
        sa.Column("node_id", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("node_id"),
    )


def downgrade() -> None:
    """Drop all node tables."""
    op.drop_table("trusted_node")
    op.drop_index("ix_vote_pair_created", table_name="vote")
    op.drop_index("ix_vote_target_created", table_name="vote")
    op.drop_table("vote")
    op.drop_index("ix_player_session_joined_at", table_name="player_session")
    op.drop_index("ix_player_session_open", table_name="player_session")
    op.drop_table("player_session")
