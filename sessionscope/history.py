"""Last-resort session scan over the raw session stores.

Used when a project has canonical paths but the indexed snapshot holds none
of its sessions yet (the index has not caught up, or a file's cwd was not
recoverable from its prefix). Each file's working directory is extracted,
from deeper in the file when the prefix has none, and boundary-matched
against the project's paths.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from sessionscope import config
from sessionscope.models import Project, SessionRoot, SessionSummary
from sessionscope.parsers.common import CWD_LINE_RE, CWD_TAG_RE
from sessionscope.parsers.platforms import registry
from sessionscope.paths import clean_cwd_candidate, dir_key_from_cwd, starts_with_boundary
from sessionscope.session_query import ProjectNeedles
from sessionscope.wsl import PROVIDER_CODEX, sanitize_root

logger = logging.getLogger("sessionscope.history")

DEEP_SCAN_MAX_BYTES = 2 * 1024 * 1024
_CHUNK_BYTES = 64 * 1024
_TAIL_KEEP = 128 * 1024


def deep_extract_cwd(file_path: str, max_bytes: int = DEEP_SCAN_MAX_BYTES) -> Optional[str]:
    """Stream the file looking for a cwd marker; for logs whose prefix is all reasoning payload."""
    buffer = ""
    scanned = 0
    try:
        with open(file_path, "r", encoding="utf-8", errors="replace") as fh:
            while scanned < max_bytes:
                chunk = fh.read(_CHUNK_BYTES)
                if not chunk:
                    break
                scanned += len(chunk)
                buffer += chunk
                if len(buffer) > 2 * _TAIL_KEEP:
                    buffer = buffer[-_TAIL_KEEP:]
                m = CWD_TAG_RE.search(buffer) or CWD_LINE_RE.search(buffer)
                if m:
                    return clean_cwd_candidate(m.group(1), escaped=True) or None
    except OSError as exc:
        logger.debug(f"Deep cwd scan failed for {file_path}: {exc}")
    return None


def fallback_roots(roots: list[SessionRoot], history_root: Optional[str] = None) -> list[SessionRoot]:
    """Session roots to walk; a ``history_root`` override replaces every Codex store."""
    override = sanitize_root(history_root or "")
    if not override:
        return [r for r in roots if r.exists]
    kept = [r for r in roots if r.exists and r.providerId != PROVIDER_CODEX]
    return [SessionRoot(path=override, providerId=PROVIDER_CODEX, exists=os.path.isdir(override)), *kept]


class HistoryFallback:
    """Callable fallback for :class:`SessionIndexQuery`."""

    def __init__(
        self,
        roots: list[SessionRoot],
        *,
        history_root: Optional[str] = None,
        include_agent_history: Optional[bool] = None,
    ):
        self.roots = fallback_roots(roots, history_root)
        self.include_agent_history = (
            config.INCLUDE_AGENT_HISTORY if include_agent_history is None else include_agent_history
        )

    def __call__(self, project: Project, needles: ProjectNeedles) -> list[SessionSummary]:
        results: list[SessionSummary] = []
        for root in self.roots:
            if not root.exists:
                continue
            files = registry.discover_session_files(
                root.providerId, root.path, include_agent_history=self.include_agent_history
            )
            matched = 0
            for file_path in files:
                cwd = registry.extract_cwd(root.providerId, file_path)
                if not cwd and root.providerId == PROVIDER_CODEX:
                    cwd = deep_extract_cwd(file_path)
                if not cwd:
                    continue
                key = dir_key_from_cwd(cwd)
                if not any(starts_with_boundary(key, needle) for needle in needles.dir_keys):
                    continue
                summary = registry.parse_summary(root.providerId, file_path)
                if summary is None:
                    continue
                results.append(summary.model_copy(update={"cwd": summary.cwd or cwd, "dirKey": key}))
                matched += 1
            logger.debug(f"Fallback scan {root.path}: {matched}/{len(files)} file(s) for {project.id}")
        return results
