# src/karma_node/scripts/peers.py
"""Push this node's votes to replication peers or check their health."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from karma_node.core.settings import MAX_REPLICATION_BATCH, settings
from karma_node.db.session import SessionLocal
from karma_node.services.peer_client import PeerClient
from karma_node.services.replication import ReplicationExchanger, parse_timestamp

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def resolve_peer(peer: str, peers: Mapping[str, str]) -> str:
    """Accept a configured peer id or a literal base URL."""
    if peer in peers:
        return peers[peer]
    if peer.startswith(("http://", "https://")):
        return peer
    raise SystemExit(f"Unknown peer {peer!r}; configured peers: {', '.join(peers) or 'none'}")


async def push_to_peer(
    client: PeerClient,
    exchanger: ReplicationExchanger,
    peer_url: str,
    since: datetime,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
) -> dict[str, int]:
    """Page through local originals after `since` and push them to `peer_url`."""
    totals = {"total": 0, "inserted": 0, "duplicates": 0, "errors": 0}
    cursor = since
    while True:
        with session_factory() as db:
            votes = exchanger.get_votes_since(db, cursor, MAX_REPLICATION_BATCH)
        if not votes:
            break
        result = await client.push_votes(peer_url, votes)
        for key in totals:
            totals[key] += int(result.get(key, 0))
        cursor = parse_timestamp(votes[-1]["createdAt"])
        if len(votes) < MAX_REPLICATION_BATCH:
            break
    return totals


async def check_peers(client: PeerClient, peers: Mapping[str, str]) -> dict[str, Any]:
    return {peer_id: await client.health_check(url) for peer_id, url in peers.items()}


def client_report(client: PeerClient) -> dict[str, Any]:
    return {
        "metrics": client.get_metrics(),
        "circuitBreakers": client.get_circuit_breaker_status(),
    }


async def run(args: argparse.Namespace) -> dict[str, Any]:
    client = PeerClient()
    try:
        if args.command == "push":
            peer_url = resolve_peer(args.peer, settings.peer_urls)
            since = parse_timestamp(args.since) if args.since else EPOCH
            results = await push_to_peer(client, ReplicationExchanger(), peer_url, since)
            report: dict[str, Any] = {"peer": peer_url, "results": results}
        else:
            report = {"peers": await check_peers(client, settings.peer_urls)}
        report.update(client_report(client))
        return report
    finally:
        await client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)
    push = sub.add_parser("push", help="Send local original votes to one peer")
    push.add_argument("peer", help="Peer id from REPLICATION_PEERS or a base URL")
    push.add_argument("--since", help="Only votes created after this ISO-8601 time")
    sub.add_parser("health", help="Check health of every configured peer")
    args = parser.parse_args()

    print(json.dumps(asyncio.run(run(args)), indent=2, default=str))


if __name__ == "__main__":
    main()
