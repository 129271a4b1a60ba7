"""SQLAlchemy models for the Karma node."""

from .session import PlayerSession
from .trusted_node import TrustedNode
from .vote import Vote, VoteDirection

__all__ = [
    "PlayerSession",
    "TrustedNode",
    "Vote", "VoteDirection",
]
