# src/karma_node/services/log_parser.py
"""Game-server log line parser.

Turns raw log lines into typed session events. Lines look like::

    [2024.12.05-14.23.15:123][456]LogSquad: Player connected: JohnDoe (76561198012345678)
    [2024.12.05-15.30.00:456][789]LogSquad: Player disconnected: JohnDoe (76561198012345678)

Anything else, including lines with a valid timestamp but other content, is
not an event and parses to ``None``. Parsing is pure: no I/O and no logging.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Final

from karma_node.db.time import utcnow
from karma_node.utils.steam import is_valid_steam64

TIMESTAMP_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^\[(\d{4})\.(\d{2})\.(\d{2})-(\d{2})\.(\d{2})\.(\d{2}):(\d{3})\]"
)
CONNECTED_PATTERN: Final[re.Pattern[str]] = re.compile(r"Player connected: (.+?) \((\d+)\)")
DISCONNECTED_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"Player disconnected: (.+?) \((\d+)\)"
)

DEFAULT_FUTURE_TOLERANCE = timedelta(minutes=5)


class SessionEventType(str, enum.Enum):
    JOIN = "JOIN"
    DISCONNECT = "DISCONNECT"


@dataclass(frozen=True)
class SessionEvent:
    """A player join or disconnect parsed from one log line."""

    type: SessionEventType
    steam64: str
    player_name: str
    timestamp: datetime
    raw_line: str = ""


def parse_timestamp(line: str) -> datetime | None:
    """Return the UTC instant from a ``[YYYY.MM.DD-HH.MM.SS:mmm]`` prefix."""
    match = TIMESTAMP_PATTERN.match(line)
    if not match:
        return None

    year, month, day, hour, minute, second, millis = (int(part) for part in match.groups())
    try:
        return datetime(
            year, month, day, hour, minute, second, millis * 1000, tzinfo=UTC
        )
    except ValueError:
        return None


def _match_player_event(line: str) -> tuple[SessionEventType, str, str] | None:
    connected = CONNECTED_PATTERN.search(line)
    if connected:
        return SessionEventType.JOIN, connected.group(1), connected.group(2)

    disconnected = DISCONNECTED_PATTERN.search(line)
    if disconnected:
        return SessionEventType.DISCONNECT, disconnected.group(1), disconnected.group(2)
    return None


def parse_line(line: str) -> SessionEvent | None:
    """Parse a single log line into a session event, or ``None`` if it is not one."""
    timestamp = parse_timestamp(line)
    if timestamp is None:
        return None

    matched = _match_player_event(line)
    if matched is None:
        return None

    event_type, player_name, steam64 = matched
    if not is_valid_steam64(steam64):
        return None

    return SessionEvent(
        type=event_type,
        steam64=steam64,
        player_name=player_name.strip(),
        timestamp=timestamp,
        raw_line=line.rstrip("\r\n"),
    )


def parse_lines(lines: Iterable[str]) -> list[SessionEvent]:
    """Parse many lines, keeping only the ones that are events."""
    events: list[SessionEvent] = []
    for line in lines:
        event = parse_line(line)
        if event is not None:
            events.append(event)
    return events


def rejected_steam64(line: str) -> str | None:
    """Return the candidate id of a player-event line whose id is not a Steam64.

    Used by callers that want to warn about malformed ids; ``None`` when the
    line is not a player event or its id is fine.
    """
    if parse_timestamp(line) is None:
        return None
    matched = _match_player_event(line)
    if matched is None:
        return None
    candidate = matched[2]
    return None if is_valid_steam64(candidate) else candidate


def is_valid_event(
    event: SessionEvent,
    *,
    now: datetime | None = None,
    future_tolerance: timedelta = DEFAULT_FUTURE_TOLERANCE,
) -> bool:
    """Caller-side sanity check applied after `parse_line`.

    An event is valid when its name is non-blank, its id is a Steam64, and its
    timestamp is no further in the future than `future_tolerance`, which
    guards against corrupt clocks in the log.
    """
    if not event.player_name or not event.player_name.strip():
        return False
    if not is_valid_steam64(event.steam64):
        return False
    reference = now or utcnow()
    return event.timestamp <= reference + future_tolerance
