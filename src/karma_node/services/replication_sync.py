"""Background pull of votes from replication peers.

The ReplicationSyncWorker periodically asks every configured peer for the
original votes it created since the last pull and merges them through the
ReplicationExchanger, exactly as if the peer had pushed them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from karma_node.core.errors import KarmaError, ValidationError
from karma_node.core.settings import settings
from karma_node.db.session import SessionLocal
from karma_node.services.peer_client import PeerClient, PeerError
from karma_node.services.replication import BatchResult, ReplicationExchanger, parse_timestamp

logger = logging.getLogger(__name__)

MAX_PAGES_PER_CYCLE = 10


@dataclass
class ReplicationSyncState:
    """Per-peer cursor: newest ``createdAt`` merged so far."""

    cursors: dict[str, datetime | None] = field(default_factory=dict)
    last_results: dict[str, dict[str, int]] = field(default_factory=dict)


class ReplicationSyncWorker:
    """Periodically pulls votes from peers and merges them locally.

    Peer failures are logged and the peer is skipped until the next cycle;
    there is no retry inside a cycle.
    """

    def __init__(
        self,
        client: PeerClient | None = None,
        exchanger: ReplicationExchanger | None = None,
        *,
        peers: Mapping[str, str] | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        interval_seconds: float | None = None,
        batch_size: int | None = None,
    ) -> None:
        self.client = client or PeerClient()
        self.exchanger = exchanger or ReplicationExchanger()
        self.peers = dict(settings.peer_urls if peers is None else peers)
        self._session_factory = session_factory
        self.interval = max(
            0.1,
            float(
                settings.replication_pull_interval_seconds
                if interval_seconds is None
                else interval_seconds
            ),
        )
        self.batch_size = batch_size or settings.replication_batch_size
        self.state = ReplicationSyncState()
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def enabled(self) -> bool:
        return bool(self.peers)

    async def start(self) -> None:
        """Start the background pull loop when any peer is configured."""
        if not self.enabled:
            return

        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())
            logger.info("Replication sync started for %d peers", len(self.peers))

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None
        await self.client.close()

    async def _run(self) -> None:
        while not self._stopping.is_set():
            await self.sync_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except TimeoutError:
                continue

    async def sync_once(self) -> dict[str, dict[str, int]]:
        """Pull from every peer once; returns merged counts keyed by peer id."""
        results: dict[str, dict[str, int]] = {}
        for peer_id, peer_url in self.peers.items():
            try:
                result = await self._sync_peer(peer_id, peer_url)
            except PeerError as exc:
                logger.warning("Replication pull from %s (%s) failed: %s", peer_id, peer_url, exc)
                continue
            except KarmaError as exc:
                logger.warning("Replication merge from %s rejected: %s", peer_id, exc.message)
                continue
            results[peer_id] = result.to_dict()
        self.state.last_results.update(results)
        return results

    async def _sync_peer(self, peer_id: str, peer_url: str) -> BatchResult:
        total = BatchResult()
        for _ in range(MAX_PAGES_PER_CYCLE):
            cursor = self.state.cursors.get(peer_id)
            votes = await self.client.pull_votes_since(peer_url, cursor, limit=self.batch_size)
            if not votes:
                break

            source_node_id = str(votes[0].get("sourceNodeId") or peer_id)
            result = await asyncio.to_thread(self._merge, votes, source_node_id)
            total.total += result.total
            total.inserted += result.inserted
            total.duplicates += result.duplicates
            total.errors += result.errors

            newest = _newest_timestamp(votes)
            if newest is None or (cursor is not None and newest <= cursor):
                break
            self.state.cursors[peer_id] = newest
            if len(votes) < self.batch_size:
                break
        return total

    def _merge(self, votes: list[dict[str, Any]], source_node_id: str) -> BatchResult:
        with self._session_factory() as db:
            return self.exchanger.receive_batch(db, votes, source_node_id)


def _newest_timestamp(votes: list[dict[str, Any]]) -> datetime | None:
    newest: datetime | None = None
    for vote in votes:
        try:
            created = parse_timestamp(vote.get("createdAt"))
        except ValidationError:
            continue
        if newest is None or created > newest:
            newest = created
    return newest
