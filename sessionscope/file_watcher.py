"""File watcher service using watchfiles.

Monitors session stores and feeds added/modified/deleted session files back
into the :class:`SessionIndexer`.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from watchfiles import Change, awatch

logger = logging.getLogger("sessionscope.watcher")

SESSION_SUFFIXES = (".jsonl", ".ndjson", ".json")


class FileWatcher:
    """Background file watcher that updates the session index on change.

    Uses `watchfiles` (Rust-accelerated) for efficient watching.
    """

    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self, indexer) -> None:
        """Start watching the indexer's session roots in a background task."""
        if self._running:
            logger.warning("File watcher already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(indexer))
        logger.info("File watcher started")

    async def stop(self) -> None:
        """Stop the file watcher."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _watch_loop(self, indexer) -> None:
        """Main watching loop. Watches every existing session root."""
        watch_paths = [Path(p) for p in indexer.watch_paths]

        if not watch_paths:
            logger.warning("No watch paths exist, watcher has nothing to monitor")
            self._running = False
            return

        logger.info(f"Watching {len(watch_paths)} directories: {[str(p) for p in watch_paths]}")

        try:
            async for changes in awatch(*watch_paths, stop_event=self._stop_event):
                if not self._running:
                    break

                classified = classify_changes(changes)
                if classified:
                    logger.debug(f"Detected {len(classified)} session file changes, reindexing...")
                    try:
                        await asyncio.to_thread(indexer.apply_changes, classified)
                    except (OSError, ValueError) as e:
                        logger.error(f"Error indexing changed files: {e}")
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        except Exception as e:
            logger.error(f"File watcher error: {e}")
        finally:
            self._running = False


def classify_changes(changes: set[tuple[Change, str]]) -> list[tuple[str, Path]]:
    """Classify raw watchfiles changes into (change_type, path) pairs.

    Only session files are returned.
    """
    result = []
    for change_type, path_str in changes:
        path = Path(path_str)

        if path.suffix.lower() not in SESSION_SUFFIXES:
            continue

        if change_type == Change.deleted:
            result.append(("deleted", path))
        elif change_type in (Change.modified, Change.added):
            result.append(("modified", path))

    return sorted(result, key=lambda item: str(item[1]))
