# src/karma_node/scripts/generate_test_logs.py
"""
Append simulated join/leave lines to a game-server log.

Useful for exercising a running node's log watcher by hand: the lines are
written in the server's own format, with timestamps starting now.
"""

from __future__ import annotations

import argparse
import random
import time
from datetime import datetime, timedelta
from pathlib import Path

from karma_node.db.time import utcnow

DEFAULT_PLAYERS = [
    ("JohnDoe", "76561198012345678"),
    ("JaneSmith", "76561198087654321"),
    ("BobJones", "76561198011111111"),
    ("AliceWilliams", "76561198022222222"),
]


def format_timestamp(at: datetime) -> str:
    """Render ``[YYYY.MM.DD-HH.MM.SS:mmm]``."""
    millis = at.microsecond // 1000
    return at.strftime("[%Y.%m.%d-%H.%M.%S:") + f"{millis:03d}]"


def log_line(at: datetime, verb: str, name: str, steam64: str) -> str:
    frame = random.randint(0, 999)
    return f"{format_timestamp(at)}[{frame:3d}]LogSquad: Player {verb}: {name} ({steam64})\n"


def build_session_lines(
    players: list[tuple[str, str]],
    start: datetime,
    session_minutes: int,
    stagger_minutes: int = 2,
) -> list[tuple[datetime, str]]:
    """Every player joins, staggered, then leaves after `session_minutes`."""
    lines: list[tuple[datetime, str]] = []
    for index, (name, steam64) in enumerate(players):
        joined = start + timedelta(minutes=index * stagger_minutes)
        left = joined + timedelta(minutes=session_minutes)
        lines.append((joined, log_line(joined, "connected", name, steam64)))
        lines.append((left, log_line(left, "disconnected", name, steam64)))
    lines.sort(key=lambda item: item[0])
    return lines


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("log_file", type=Path, help="Log file to append to")
    parser.add_argument("--minutes", type=int, default=10, help="Session length per player")
    parser.add_argument(
        "--realtime",
        action="store_true",
        help="Write each line when its timestamp comes due instead of all at once",
    )
    args = parser.parse_args()

    clock = utcnow()
    lines = build_session_lines(DEFAULT_PLAYERS, clock, args.minutes)
    args.log_file.parent.mkdir(parents=True, exist_ok=True)
    with args.log_file.open("a", encoding="utf-8") as handle:
        for at, line in lines:
            if args.realtime and at > clock:
                time.sleep((at - clock).total_seconds())
                clock = at
            handle.write(line)
            handle.flush()
            print(line, end="")
    print(f"Wrote {len(lines)} lines to {args.log_file}")


if __name__ == "__main__":
    main()
