# src/karma_node/schemas/session.py
"""Session and overlap schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from karma_node.db.time import isoformat
from karma_node.models import PlayerSession
from karma_node.utils.steam import extract_steam64


class OverlapRequest(BaseModel):
    """Ad-hoc overlap check between two players."""

    model_config = ConfigDict(populate_by_name=True)

    voter_steam64: str = Field(..., alias="voterSteam64")
    target_steam64: str = Field(..., alias="targetSteam64")
    min_overlap_minutes: int | None = Field(default=None, alias="minOverlapMinutes", ge=0)
    trust_window_hours: int | None = Field(default=None, alias="trustWindowHours", gt=0)

    @field_validator("voter_steam64", "target_steam64", mode="before")
    @classmethod
    def normalize_steam64(cls, v: object) -> object:
        """Accept a Steam community profile URL in place of the bare id."""
        if isinstance(v, str):
            return extract_steam64(v) or v
        return v


class SessionResponse(BaseModel):
    """A play session with its derived duration."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    steam64: str
    player_name: str = Field(alias="playerName")
    server_id: str = Field(alias="serverId")
    joined_at: str = Field(alias="joinedAt")
    left_at: str | None = Field(alias="leftAt")
    duration_minutes: int = Field(alias="durationMinutes")
    is_active: bool = Field(alias="isActive")

    @classmethod
    def from_session(
        cls, session: PlayerSession, now: datetime | None = None
    ) -> SessionResponse:
        return cls(
            id=session.id,
            steam64=session.steam64,
            player_name=session.player_name,
            server_id=session.server_id,
            joined_at=isoformat(session.joined_at) or "",
            left_at=isoformat(session.left_at),
            duration_minutes=session.duration_minutes(now),
            is_active=session.is_active,
        )
