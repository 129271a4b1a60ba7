# src/karma_node/utils/steam.py
"""Steam64 identity validation and formatting helpers.

A Steam64 id is exactly 17 ASCII digits beginning with ``7656119``. Every
interface boundary that accepts a player identifier validates it with
`is_valid_steam64` before touching the store.
"""

from __future__ import annotations

import re
from typing import Final

STEAM64_PREFIX: Final[str] = "7656119"
STEAM64_PATTERN: Final[re.Pattern[str]] = re.compile(r"^7656119[0-9]{10}$")
_PROFILE_URL_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"steamcommunity\.com/profiles/([0-9]{17})"
)

INVALID_FORMAT: Final[str] = "Steam64 ID must be a 17-digit number"
INVALID_PREFIX: Final[str] = f"Steam64 ID must start with {STEAM64_PREFIX}"
NOT_FOUND: Final[str] = "Could not extract Steam64 ID from input"


def is_valid_steam64(value: object) -> bool:
    """Return True if `value` is a well-formed Steam64 id string."""
    return isinstance(value, str) and STEAM64_PATTERN.fullmatch(value) is not None


def steam64_error(value: str) -> str | None:
    """Return a human-readable reason `value` is invalid, or None if it is valid."""
    if not re.fullmatch(r"[0-9]{17}", value or ""):
        return INVALID_FORMAT
    if not value.startswith(STEAM64_PREFIX):
        return INVALID_PREFIX
    return None


def extract_steam64(raw: str) -> str | None:
    """Pull a Steam64 id out of a bare id or a Steam community profile URL."""
    cleaned = (raw or "").strip()
    if is_valid_steam64(cleaned):
        return cleaned

    match = _PROFILE_URL_PATTERN.search(cleaned)
    if match and is_valid_steam64(match.group(1)):
        return match.group(1)
    return None


def format_steam64(value: str) -> str:
    """Group a valid id as ``7656 1198 0123 45678`` for display."""
    if not is_valid_steam64(value):
        return value
    return f"{value[0:4]} {value[4:8]} {value[8:12]} {value[12:17]}"


def steam_profile_url(value: str) -> str:
    return f"https://steamcommunity.com/profiles/{value}"
