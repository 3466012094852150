"""Session index over the Codex, Claude and Gemini session stores.

The index is an immutable tuple of :class:`SessionSummary` replaced wholesale
on every refresh, so readers can hold a snapshot while a refresh runs on
another thread. Parsed summaries are cached by ``(mtime_ns, size)`` and a file
is only reparsed when either changes.
"""
from __future__ import annotations

import asyncio
import logging
import os
import threading
from typing import NamedTuple, Optional

from sessionscope import config
from sessionscope.models import SessionDetail, SessionRoot, SessionSummary
from sessionscope.parsers.platforms import registry
from sessionscope.parsers.platforms.claude_code import parser as claude_code_parser
from sessionscope.parsers.platforms.codex import parser as codex_parser
from sessionscope.parsers.platforms.gemini import parser as gemini_parser

logger = logging.getLogger("sessionscope.indexer")


class _CacheEntry(NamedTuple):
    mtime_ns: int
    size: int
    provider_id: str
    summary: SessionSummary


def _norm(path: str) -> str:
    return (path or "").replace("\\", "/").rstrip("/").lower()


class SessionIndexer:
    def __init__(self, roots: list[SessionRoot], *, include_agent_history: Optional[bool] = None):
        self.roots = list(roots)
        self.include_agent_history = (
            config.INCLUDE_AGENT_HISTORY if include_agent_history is None else include_agent_history
        )
        self._snapshot: tuple[SessionSummary, ...] = ()
        self._cache: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def watch_paths(self) -> list[str]:
        return [r.path for r in self.roots if os.path.isdir(r.path)]

    def get_indexed_summaries(self) -> tuple[SessionSummary, ...]:
        return self._snapshot

    def get_indexed_details(self, file_path: str) -> Optional[SessionDetail]:
        provider_id = self.provider_of(file_path)
        if provider_id is None:
            return None
        return registry.parse_details(provider_id, file_path)

    def provider_of(self, file_path: str) -> Optional[str]:
        target = _norm(file_path)
        best: Optional[SessionRoot] = None
        for root in self.roots:
            base = _norm(root.path)
            if target.startswith(base + "/") and (best is None or len(base) > len(_norm(best.path))):
                best = root
        if best is not None:
            return best.providerId
        return registry.provider_for_file(file_path)

    def _accepts(self, provider_id: str, file_path: str) -> bool:
        """Whether a full refresh would have picked up ``file_path`` for this provider."""
        name = os.path.basename(file_path).lower()
        if provider_id == claude_code_parser.PROVIDER_ID:
            if claude_code_parser.is_agent_history_file(name) and not self.include_agent_history:
                return False
            return name.endswith(claude_code_parser.SESSION_SUFFIXES)
        if provider_id == gemini_parser.PROVIDER_ID:
            return name.startswith("session-") and name.endswith(".json")
        return name.endswith(codex_parser.SESSION_SUFFIX)

    def _summarize(self, provider_id: str, file_path: str) -> Optional[_CacheEntry]:
        try:
            stat = os.stat(file_path)
        except OSError:
            return None
        cached = self._cache.get(file_path)
        if cached and cached.mtime_ns == stat.st_mtime_ns and cached.size == stat.st_size:
            return cached
        summary = registry.parse_summary(provider_id, file_path)
        if summary is None:
            return None
        return _CacheEntry(stat.st_mtime_ns, stat.st_size, provider_id, summary)

    def refresh(self) -> int:
        """Rebuild the snapshot from disk; returns the number of indexed sessions."""
        with self._lock:
            fresh: dict[str, _CacheEntry] = {}
            for root in self.roots:
                if not os.path.isdir(root.path):
                    continue
                files = registry.discover_session_files(
                    root.providerId, root.path, include_agent_history=self.include_agent_history
                )
                for file_path in files:
                    if file_path in fresh:
                        continue
                    entry = self._summarize(root.providerId, file_path)
                    if entry is not None:
                        fresh[file_path] = entry
            reparsed = sum(1 for path, entry in fresh.items() if self._cache.get(path) is not entry)
            self._cache = fresh
            self._snapshot = tuple(entry.summary for entry in fresh.values())
        logger.info(f"Indexed {len(self._snapshot)} session(s) ({reparsed} parsed)")
        return len(self._snapshot)

    async def refresh_async(self) -> int:
        return await asyncio.to_thread(self.refresh)

    def apply_changes(self, changes: list[tuple[str, str]]) -> int:
        """Apply ``("modified" | "deleted", path)`` pairs from the file watcher."""
        touched = 0
        with self._lock:
            cache = dict(self._cache)
            for change_type, path in changes:
                file_path = str(path)
                if change_type == "deleted":
                    if cache.pop(file_path, None) is not None:
                        touched += 1
                    continue
                provider_id = self.provider_of(file_path)
                if provider_id is None or not self._accepts(provider_id, file_path):
                    continue
                entry = self._summarize(provider_id, file_path)
                if entry is None:
                    cache.pop(file_path, None)
                else:
                    cache[file_path] = entry
                touched += 1
            self._cache = cache
            self._snapshot = tuple(entry.summary for entry in cache.values())
        if touched:
            logger.debug(f"Applied {touched} session file change(s)")
        return touched
