"""Incremental tail of the live game-server log.

The LogWatcher polls one append-only file, remembers the byte offset it has
consumed, and hands every new session event to the registered handlers in
file order. It survives rotation, truncation, a missing file and handler
failures without ever stopping the poll loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from karma_node.core.errors import TransientIOError
from karma_node.db.time import utcnow
from karma_node.services.log_parser import (
    DEFAULT_FUTURE_TOLERANCE,
    SessionEvent,
    is_valid_event,
    parse_line,
    rejected_steam64,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[SessionEvent], Awaitable[None] | None]


@dataclass
class WatcherState:
    """Mutable read position within the tailed file."""

    position: int = 0
    last_size: int = 0
    lines_read: int = 0
    events_emitted: int = 0
    errors: int = 0
    file_missing: bool = False


class LogWatcher:
    """Poll a log file and emit parsed session events."""

    def __init__(
        self,
        file_path: str | os.PathLike[str],
        poll_interval_ms: int = 1000,
        *,
        future_tolerance: timedelta = DEFAULT_FUTURE_TOLERANCE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.file_path = Path(file_path)
        self.poll_interval = max(0.05, poll_interval_ms / 1000.0)
        self.future_tolerance = future_tolerance
        self._clock = clock
        self.state = WatcherState()
        self._handlers: list[EventHandler] = []
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def on_event(self, handler: EventHandler) -> None:
        """Register a callback invoked once per event, in file order."""
        self._handlers.append(handler)

    async def start(self) -> None:
        """Begin polling from the current end of the file.

        Lines already present are never replayed: sessions from before the
        node started are stale and not actionable.
        """
        if self._running:
            logger.warning("Log watcher is already running for %s", self.file_path)
            return

        self.prime()
        self._running = True
        self._stopping.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Started watching log file %s (offset=%d, poll=%.2fs)",
            self.file_path,
            self.state.position,
            self.poll_interval,
        )

    def prime(self) -> None:
        """Record the current file size as the starting offset."""
        try:
            size = self.file_path.stat().st_size
        except FileNotFoundError:
            logger.warning("Log file %s does not exist yet; waiting for it", self.file_path)
            size = 0
            self.state.file_missing = True
        self.state.position = size
        self.state.last_size = size

    async def stop(self) -> None:
        """Stop the poll loop, letting an in-flight poll finish first."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None
        self._running = False
        logger.info("Stopped watching log file %s", self.file_path)

    async def _run(self) -> None:
        while not self._stopping.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except TimeoutError:
                continue

    async def poll_once(self) -> int:
        """Run one poll tick and return the number of events emitted.

        Never raises: file-system and handler failures are logged and the
        next tick tries again.
        """
        try:
            lines = await asyncio.to_thread(self._read_new_lines)
        except TransientIOError as exc:
            self.state.errors += 1
            logger.error("%s", exc.message, exc_info=True)
            return 0

        emitted = 0
        for line in lines:
            event = self._to_event(line)
            if event is None:
                continue
            await self._dispatch(event)
            emitted += 1
        self.state.events_emitted += emitted
        return emitted

    def _read_new_lines(self) -> list[str]:
        """Read complete lines appended since the last poll.

        Raises:
            TransientIOError: If the file exists but cannot be read.
        """
        try:
            size = self.file_path.stat().st_size
        except FileNotFoundError:
            if not self.state.file_missing:
                logger.warning(
                    "Log file %s disappeared, waiting for it to reappear", self.file_path
                )
            self.state.file_missing = True
            return []
        except OSError as err:
            raise TransientIOError(f"Error reading log file {self.file_path}: {err}") from err

        if self.state.file_missing:
            logger.info("Log file %s is back", self.file_path)
            self.state.file_missing = False
            # A recreated file is new content from the start.
            self.state.position = 0
            self.state.last_size = 0

        if size < self.state.last_size or size < self.state.position:
            logger.info("Log rotation detected on %s, resetting position", self.file_path)
            self.state.position = 0

        self.state.last_size = size
        if size <= self.state.position:
            return []

        try:
            with self.file_path.open("rb") as handle:
                handle.seek(self.state.position)
                chunk = handle.read(size - self.state.position)
        except OSError as err:
            raise TransientIOError(f"Error reading log file {self.file_path}: {err}") from err

        # Hold back a trailing partial line until its newline is written.
        last_newline = chunk.rfind(b"\n")
        if last_newline < 0:
            return []
        complete = chunk[: last_newline + 1]
        self.state.position += len(complete)

        lines = [
            line
            for line in complete.decode("utf-8", errors="replace").split("\n")
            if line.strip()
        ]
        self.state.lines_read += len(lines)
        return lines

    def _to_event(self, line: str) -> SessionEvent | None:
        event = parse_line(line)
        if event is None:
            bad_id = rejected_steam64(line)
            if bad_id is not None:
                logger.warning("Invalid Steam64 in log line: %s", bad_id)
            return None

        if not is_valid_event(event, now=self._clock(), future_tolerance=self.future_tolerance):
            logger.warning("Discarding invalid session event: %s", event.raw_line)
            return None
        return event

    async def _dispatch(self, event: SessionEvent) -> None:
        for handler in self._handlers:
            try:
                result: Any = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001 - one handler must not stop the tail
                self.state.errors += 1
                logger.error(
                    "Error in log event handler for %s (%s): %s",
                    event.steam64,
                    event.type.value,
                    exc,
                    exc_info=True,
                )

    def get_stats(self) -> dict[str, Any]:
        return {
            "isRunning": self._running,
            "filePath": str(self.file_path),
            "lastPosition": self.state.position,
            "lastSize": self.state.last_size,
            "callbackCount": len(self._handlers),
            "linesRead": self.state.lines_read,
            "eventsEmitted": self.state.events_emitted,
            "errors": self.state.errors,
            "fileMissing": self.state.file_missing,
        }
