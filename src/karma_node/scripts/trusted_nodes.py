# src/karma_node/scripts/trusted_nodes.py
"""List, add or deactivate the peers allowed to push replicated votes."""

from __future__ import annotations

import argparse

from sqlalchemy import select

from karma_node.db.session import SessionLocal
from karma_node.db.time import isoformat
from karma_node.models import TrustedNode
from karma_node.services.replication import set_trusted_node_active


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="Show every known node")
    add = sub.add_parser("add", help="Trust a node (or re-activate it)")
    add.add_argument("node_id")
    remove = sub.add_parser("deactivate", help="Stop accepting votes from a node")
    remove.add_argument("node_id")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        if args.command == "list":
            for node in db.scalars(select(TrustedNode).order_by(TrustedNode.node_id)):
                state = "active" if node.is_active else "inactive"
                print(f"{node.node_id:<32} {state:<9} last seen {isoformat(node.last_seen_at)}")
        else:
            node = set_trusted_node_active(db, args.node_id, args.command == "add")
            print(f"{node.node_id} is now {'active' if node.is_active else 'inactive'}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
