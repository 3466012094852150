"""Which indexed sessions belong to a project.

A session matches when its ``dirKey`` equals, or is a path-boundary
descendant of, one of the project's canonical paths. Gemini sessions whose
``dirKey`` could not be recovered match through the project-path hash stored
in their directory name instead.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from sessionscope.errors import InvalidArgumentError
from sessionscope.hashing import HashCandidateCache, extract_project_hash_from_path
from sessionscope.models import PaginatedResponse, Pagination, Project, SessionSummary
from sessionscope.observability import record_query, start_span
from sessionscope.paths import (
    canon,
    dir_key_from_cwd,
    starts_with_boundary,
    try_win_to_wsl,
    wsl_mount_to_win,
)

logger = logging.getLogger("sessionscope.query")

HASH_ONLY_PROVIDER = "gemini"


@dataclass(frozen=True)
class ProjectNeedles:
    dir_keys: tuple[str, ...]
    hashes: frozenset[str]

    @property
    def empty(self) -> bool:
        return not self.dir_keys and not self.hashes


FallbackScan = Callable[[Project, ProjectNeedles], Iterable[SessionSummary]]


def build_needles(project: Project, cache: Optional[HashCandidateCache] = None) -> ProjectNeedles:
    win_path = (project.winPath or "").strip()
    wsl_path = (project.wslPath or "").strip()

    keys = [k for k in (canon(wsl_path), canon(win_path)) if k]

    hash_sources = [wsl_path, win_path]
    if win_path:
        mapped = try_win_to_wsl(win_path)
        if mapped != win_path:
            hash_sources.append(mapped)
    if wsl_path:
        hash_sources.append(wsl_mount_to_win(wsl_path))
    cache = cache or HashCandidateCache()
    hashes = cache.union([s for s in hash_sources if s])

    return ProjectNeedles(dir_keys=tuple(dict.fromkeys(keys)), hashes=frozenset(hashes))


def session_dir_key(summary: SessionSummary) -> str:
    if summary.dirKey:
        return summary.dirKey
    return dir_key_from_cwd(summary.cwd) if summary.cwd else ""


def matches(summary: SessionSummary, needles: ProjectNeedles) -> bool:
    dir_key = session_dir_key(summary)
    if dir_key and any(starts_with_boundary(dir_key, needle) for needle in needles.dir_keys):
        return True
    if summary.providerId == HASH_ONLY_PROVIDER and needles.hashes:
        project_hash = summary.projectHash or extract_project_hash_from_path(summary.filePath)
        if project_hash and project_hash.lower() in needles.hashes:
            return True
    return False


def _sort_key(summary: SessionSummary) -> tuple[int, str]:
    return (-int(summary.date or 0), summary.filePath)


def validate_pagination(pagination: Optional[Pagination]) -> tuple[int, Optional[int]]:
    if pagination is None:
        return 0, None
    if not isinstance(pagination, Pagination):
        raise InvalidArgumentError("pagination must be a Pagination")
    if pagination.limit is not None and pagination.limit < 0:
        raise InvalidArgumentError(f"limit must be >= 0, got {pagination.limit}")
    return max(0, pagination.offset), pagination.limit


def paginate(items: Sequence[SessionSummary], offset: int, limit: Optional[int]) -> list[SessionSummary]:
    if limit is None:
        return list(items[offset:])
    return list(items[offset:offset + limit])


class SessionIndexQuery:
    """Filter, sort and page an immutable session index snapshot for one project."""

    def __init__(self, fallback: Optional[FallbackScan] = None):
        self.fallback = fallback

    def filter(self, project: Project, snapshot: Iterable[SessionSummary]) -> tuple[list[SessionSummary], str]:
        """Every matching summary sorted newest first, and where the rows came from."""
        if not isinstance(project, Project):
            raise InvalidArgumentError("project must be a Project")
        needles = build_needles(project)
        if needles.empty:
            return sorted(snapshot, key=_sort_key), "snapshot"

        hits = [s for s in snapshot if matches(s, needles)]
        source = "index"
        if not hits and needles.dir_keys and self.fallback is not None:
            logger.debug(f"No indexed sessions for {project.id}; running fallback scan")
            hits = list(self.fallback(project, needles))
            source = "fallback"
        return sorted(hits, key=_sort_key), source

    def list(
        self,
        project: Project,
        snapshot: Iterable[SessionSummary],
        pagination: Optional[Pagination] = None,
    ) -> list[SessionSummary]:
        return self.page(project, snapshot, pagination).items

    def page(
        self,
        project: Project,
        snapshot: Iterable[SessionSummary],
        pagination: Optional[Pagination] = None,
    ) -> PaginatedResponse[SessionSummary]:
        offset, limit = validate_pagination(pagination)
        started = time.perf_counter()
        with start_span("sessions.list", {"project": getattr(project, "id", None)}):
            rows, source = self.filter(project, snapshot)
        record_query(source, (time.perf_counter() - started) * 1000)
        return PaginatedResponse[SessionSummary](
            items=paginate(rows, offset, limit),
            total=len(rows),
            offset=offset,
            limit=limit,
        )
