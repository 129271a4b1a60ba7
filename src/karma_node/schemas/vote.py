# src/karma_node/schemas/vote.py
"""Vote-related Pydantic schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from karma_node.utils.steam import extract_steam64


class VoteCreate(BaseModel):
    """Schema for submitting a vote from one player about another."""

    model_config = ConfigDict(populate_by_name=True)

    voter_steam64: str = Field(..., alias="voterSteam64")
    target_steam64: str = Field(..., alias="targetSteam64")
    direction: Literal["UP", "DOWN"]
    reason_category: str = Field(..., alias="reasonCategory", min_length=1)

    @field_validator("voter_steam64", "target_steam64", mode="before")
    @classmethod
    def normalize_steam64(cls, v: object) -> object:
        """Accept a Steam community profile URL in place of the bare id."""
        if isinstance(v, str):
            return extract_steam64(v) or v
        return v
