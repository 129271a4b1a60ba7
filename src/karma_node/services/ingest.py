"""Log-to-store ingestion pipeline.

The watcher enqueues events; a single consumer task applies them to the
SessionManager one at a time in file order. Only that consumer mutates
session state, so no row locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from karma_node.services.log_parser import SessionEvent
from karma_node.services.log_watcher import LogWatcher
from karma_node.services.session_manager import SessionManager

logger = logging.getLogger(__name__)


class LogIngestService:
    """Wire a LogWatcher to a SessionManager through a single-consumer queue."""

    def __init__(self, watcher: LogWatcher, session_manager: SessionManager) -> None:
        self.watcher = watcher
        self.session_manager = session_manager
        self._queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self.events_applied = 0
        self.events_failed = 0
        watcher.on_event(self.enqueue)

    def enqueue(self, event: SessionEvent) -> None:
        self._queue.put_nowait(event)

    async def start(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())
        await self.watcher.start()

    async def stop(self) -> int:
        """Stop tailing, apply what is queued, then close every open session.

        Returns the number of sessions force-closed.
        """
        await self.watcher.stop()
        await self._queue.join()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        return await asyncio.to_thread(self.session_manager.close_all_open_sessions)

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.apply(event)
            finally:
                self._queue.task_done()

    async def apply(self, event: SessionEvent) -> None:
        """Apply one event; failures are logged so the pipeline keeps running."""
        try:
            await asyncio.to_thread(self.session_manager.handle_event, event)
        except Exception as exc:  # noqa: BLE001 - a bad event must not stop ingestion
            self.events_failed += 1
            logger.error(
                "Failed to apply %s event for %s: %s",
                event.type.value,
                event.steam64,
                exc,
                exc_info=True,
            )
            return
        self.events_applied += 1

    def get_stats(self) -> dict[str, Any]:
        stats = self.watcher.get_stats()
        stats.update(
            {
                "queued": self._queue.qsize(),
                "eventsApplied": self.events_applied,
                "eventsFailed": self.events_failed,
            }
        )
        return stats
