"""Long-lived facade owning the index state: projects, scan meta and the session index."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from sessionscope.discovery import DiscoveryEnvironment, DiscoveryReport, ProjectDiscovery
from sessionscope.errors import InvalidArgumentError
from sessionscope.file_watcher import FileWatcher
from sessionscope.history import HistoryFallback
from sessionscope.indexer import SessionIndexer
from sessionscope.models import (
    DiscoverySettings,
    PaginatedResponse,
    Pagination,
    Project,
    ScanMeta,
    SessionSummary,
)
from sessionscope.project_store import ProjectStore
from sessionscope.session_query import SessionIndexQuery

logger = logging.getLogger("sessionscope.service")


@dataclass
class IndexState:
    projects: list[Project] = field(default_factory=list)
    scan_meta: Optional[ScanMeta] = None
    last_report: Optional[DiscoveryReport] = None


class ProjectIndexService:
    """Discovery, the project store and session queries behind one object.

    State is loaded from the store once at construction and written back
    through the store after every mutation.
    """

    def __init__(
        self,
        store: Optional[ProjectStore] = None,
        *,
        settings: Optional[DiscoverySettings] = None,
        environment: Optional[DiscoveryEnvironment] = None,
        debounce_ms: Optional[int] = None,
    ):
        self.store = store or ProjectStore()
        self.settings = settings or DiscoverySettings()
        self.discovery = ProjectDiscovery(
            self.store,
            environment=environment,
            settings=self.settings,
            debounce_ms=debounce_ms,
        )
        self.state = IndexState(projects=self.store.load(), scan_meta=self.store.load_scan_meta())
        self.indexer: Optional[SessionIndexer] = None
        self.query: Optional[SessionIndexQuery] = None
        self.watcher = FileWatcher()

    async def _ensure_index(self) -> tuple[SessionIndexer, SessionIndexQuery]:
        if self.indexer is None or self.query is None:
            environment = await self.discovery.environment()
            indexer = SessionIndexer(
                environment.session_roots,
                include_agent_history=environment.include_agent_history,
            )
            await indexer.refresh_async()
            fallback = HistoryFallback(
                environment.session_roots,
                history_root=self.settings.historyRoot,
                include_agent_history=environment.include_agent_history,
            )
            self.indexer = indexer
            self.query = SessionIndexQuery(fallback=fallback)
            logger.info(f"Session index ready over {len(indexer.watch_paths)} root(s)")
        return self.indexer, self.query

    async def start_watching(self) -> None:
        indexer, _ = await self._ensure_index()
        await self.watcher.start(indexer)

    async def stop(self) -> None:
        await self.watcher.stop()

    async def list_projects(self, configured_roots: Optional[list[str]] = None) -> list[Project]:
        projects = await self.discovery.discover(configured_roots)
        self.state.projects = projects
        self.state.scan_meta = await asyncio.to_thread(self.store.load_scan_meta)
        self.state.last_report = self.discovery.last_report
        return list(projects)

    def get_project(self, project_id: str) -> Optional[Project]:
        return next((p for p in self.state.projects if p.id == project_id), None)

    async def add_project(self, path: str) -> Project:
        project = await asyncio.to_thread(self.store.add_project_by_path, path)
        self.state.projects = await asyncio.to_thread(self.store.load)
        self.discovery.invalidate()
        return project

    async def touch_project(self, project_id: str) -> Optional[Project]:
        project = await asyncio.to_thread(self.store.touch_project, project_id)
        if project is not None:
            self.state.projects = [project if p.id == project_id else p for p in self.state.projects]
            self.discovery.invalidate()
        return project

    async def remove_project(self, project_id: str) -> bool:
        removed = await asyncio.to_thread(self.store.remove_project, project_id)
        if removed:
            self.state.projects = [p for p in self.state.projects if p.id != project_id]
            self.discovery.invalidate()
        return removed

    async def list_sessions(
        self,
        project: Union[str, Project],
        pagination: Optional[Pagination] = None,
    ) -> PaginatedResponse[SessionSummary]:
        if isinstance(project, str):
            found = self.get_project(project) or await asyncio.to_thread(self.store.get_project, project)
            if found is None:
                logger.warning(f"list_sessions called with unknown project id {project!r}")
                raise InvalidArgumentError(f"unknown project id: {project!r}")
            project = found
        indexer, query = await self._ensure_index()
        snapshot = indexer.get_indexed_summaries()
        return await asyncio.to_thread(query.page, project, snapshot, pagination)
