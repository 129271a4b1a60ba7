# src/karma_node/scripts/query_sessions.py
"""Print recent and currently open sessions from the node database."""

from __future__ import annotations

import argparse

from sqlalchemy import select
from sqlalchemy.orm import Session

from karma_node.core.settings import settings
from karma_node.db.session import SessionLocal
from karma_node.db.time import isoformat
from karma_node.models import PlayerSession
from karma_node.services.session_manager import online_sessions, session_stats
from karma_node.utils.steam import format_steam64


def describe(session: PlayerSession) -> str:
    status = "OPEN" if session.is_active else f"left {isoformat(session.left_at)}"
    return (
        f"#{session.id:<6} {format_steam64(session.steam64)} {session.player_name:<24} "
        f"joined {isoformat(session.joined_at)} {status} ({session.duration_minutes()} min)"
    )


def print_report(db: Session, limit: int) -> None:
    stats = session_stats(db, settings.node_id)
    print(
        f"Node {settings.node_id}: {stats['totalSessions']} sessions, "
        f"{stats['activeSessions']} active, {stats['uniquePlayers']} players"
    )

    print("\nOnline now:")
    online = online_sessions(db, settings.node_id)
    for session in online:
        print(f"  {describe(session)}")
    if not online:
        print("  (nobody)")

    print(f"\nLast {limit} sessions:")
    recent = db.scalars(
        select(PlayerSession)
        .where(PlayerSession.is_placeholder.is_(False))
        .order_by(PlayerSession.joined_at.desc(), PlayerSession.id.desc())
        .limit(limit)
    )
    for session in recent:
        print(f"  {describe(session)}")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--limit", type=int, default=20)
    args = parser.parse_args()

    db = SessionLocal()
    try:
        print_report(db, args.limit)
    finally:
        db.close()


if __name__ == "__main__":
    main()
