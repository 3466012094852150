"""Project discovery: ordered strategies, merge by canonical path, fast-path signature cache.

A pass first compares a fresh :class:`ScanMeta` with the persisted one; when
nothing moved and the store is non-empty the stored list is returned as-is.
Otherwise the strategies run in precedence order until one asks to stop the
chain, every candidate is folded onto its canonical path, identities are
reconciled with the store and both files are saved.

Strategies never raise for I/O trouble: unreadable roots, timeouts and
malformed content come back as :class:`ScanIssue` entries on the result.
Every per-root filesystem call, signatures and existence checks included,
is bounded by the per-branch timeout.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

from pydantic import BaseModel, Field

from sessionscope import config, wsl
from sessionscope.date_utils import now_ms
from sessionscope.errors import ErrorKind, ScanIssue
from sessionscope.models import DiscoverySettings, Project, ScanMeta, SessionRoot
from sessionscope.observability import record_discovery, record_fast_path, start_span
from sessionscope.parsers.platforms import registry
from sessionscope.parsers.platforms.codex import parser as codex_parser
from sessionscope.paths import (
    canonical_project_key,
    display_name,
    looks_like_regex_fragment,
    resolve_cwd,
)
from sessionscope.project_store import ProjectStore, has_marker_file, new_project_id
from sessionscope.scan_signature import (
    can_skip_rescan,
    compute_root_signatures,
    compute_session_root_signatures,
)

logger = logging.getLogger("sessionscope.discovery")

_SAMPLE_LIMIT = 3


class DiscoveryReport(BaseModel):
    projects: int = 0
    issues: list[ScanIssue] = Field(default_factory=list)
    fastPath: bool = False
    strategiesRun: list[str] = Field(default_factory=list)
    durationMs: int = 0


@dataclass
class DiscoveryEnvironment:
    """Runtimes visible to this process: session stores, WSL distros and scan roots."""

    session_roots: list[SessionRoot] = field(default_factory=list)
    distros: list[str] = field(default_factory=list)
    configured_roots: list[str] = field(default_factory=list)
    include_agent_history: bool = False

    def existing_roots(self, provider_id: Optional[str] = None) -> list[SessionRoot]:
        return [
            r for r in self.session_roots
            if r.exists and (provider_id is None or r.providerId == provider_id)
        ]


async def build_environment(
    settings: Optional[DiscoverySettings] = None,
    *,
    timeout: Optional[float] = None,
) -> DiscoveryEnvironment:
    settings = settings or DiscoverySettings()
    available = await wsl.list_distros_async()
    distros = wsl.select_distros(available, settings.distros)

    roots = [wsl.sanitize_root(r) for r in settings.roots]
    roots = [r for r in roots if r]
    if not roots:
        allowed = [d for d in available if d.name in distros]
        roots = await wsl.get_default_roots_async(allowed)

    return DiscoveryEnvironment(
        session_roots=await wsl.detect_session_roots(distros, timeout=timeout),
        distros=distros,
        configured_roots=roots,
        include_agent_history=settings.includeAgentHistory or config.INCLUDE_AGENT_HISTORY,
    )


@dataclass
class StrategyResult:
    projects: list[Project] = field(default_factory=list)
    stop_chain: bool = False
    issues: list[ScanIssue] = field(default_factory=list)


@dataclass
class DiscoveryContext:
    environment: DiscoveryEnvironment
    configured_roots: list[str]
    stored_projects: list[Project]
    semaphore: asyncio.Semaphore
    branch_timeout: float = float(config.BRANCH_TIMEOUT_SECONDS)


class DiscoveryStrategy(Protocol):
    name: str

    async def run(self, ctx: DiscoveryContext) -> StrategyResult:
        ...


@dataclass
class RootTally:
    """Aggregated per-root outcome, logged once per root instead of once per file."""

    root: str
    seen: int = 0
    matched: int = 0
    added: int = 0
    skipped_unmatched: int = 0
    skipped_regex: int = 0
    samples: dict[str, list[str]] = field(default_factory=dict)

    def sample(self, bucket: str, value: str) -> None:
        items = self.samples.setdefault(bucket, [])
        if len(items) < _SAMPLE_LIMIT:
            items.append(value)

    def log(self, strategy: str) -> None:
        level = logging.INFO if config.DISCOVERY_DEBUG else logging.DEBUG
        logger.log(
            level,
            "%s root=%s seen=%d matched=%d added=%d unmatched=%d regexLike=%d samples=%s",
            strategy,
            self.root,
            self.seen,
            self.matched,
            self.added,
            self.skipped_unmatched,
            self.skipped_regex,
            self.samples,
        )


def _new_project(win_path: str, wsl_path: str, created_at: int) -> Project:
    return Project(
        id=new_project_id(),
        name=display_name(win_path, wsl_path),
        winPath=win_path,
        wslPath=wsl_path,
        hasMarkerFile=has_marker_file(wsl.host_path(win_path, wsl_path)),
        createdAt=created_at,
    )


def _file_issue(strategy: str, file_path: str, exc: BaseException) -> ScanIssue:
    kind = ErrorKind.UNREADABLE if isinstance(exc, OSError) else ErrorKind.MALFORMED
    logger.debug(f"{strategy}: skipping {kind.value} session file {file_path}: {exc!r}")
    return ScanIssue(kind=kind, strategy=strategy, target=file_path, detail=str(exc) or type(exc).__name__)


def _root_unreadable(path: str) -> Optional[str]:
    try:
        with os.scandir(path):
            return None
    except OSError as exc:
        return str(exc)


async def _bounded(ctx: DiscoveryContext, strategy: str, target: str, fn, *args) -> tuple[object, list[ScanIssue]]:
    """Run a blocking branch in a thread under the semaphore and the per-branch timeout."""
    async with ctx.semaphore:
        try:
            value = await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=ctx.branch_timeout)
            return value, []
        except asyncio.TimeoutError:
            logger.warning(f"{strategy}: branch timed out after {ctx.branch_timeout}s: {target}")
            return None, [ScanIssue(kind=ErrorKind.TIMEOUT, strategy=strategy, target=target,
                                    detail=f"no result within {ctx.branch_timeout}s")]
        except OSError as exc:
            logger.debug(f"{strategy}: unreadable {target}: {exc}")
            return None, [ScanIssue(kind=ErrorKind.UNREADABLE, strategy=strategy, target=target, detail=str(exc))]
        except (ValueError, RecursionError) as exc:
            logger.debug(f"{strategy}: malformed content under {target}: {exc}")
            return None, [ScanIssue(kind=ErrorKind.MALFORMED, strategy=strategy, target=target, detail=str(exc))]


def _scan_session_root(
    root: SessionRoot,
    include_agent_history: bool,
    strategy: str,
) -> tuple[list[Project], list[ScanIssue]]:
    reason = _root_unreadable(root.path)
    if reason:
        return [], [ScanIssue(kind=ErrorKind.UNREADABLE, strategy=strategy, target=root.path, detail=reason)]

    tally = RootTally(root=root.path)
    found: dict[str, Project] = {}
    issues: list[ScanIssue] = []
    created_at = now_ms()
    files = registry.discover_session_files(
        root.providerId, root.path, include_agent_history=include_agent_history
    )
    for file_path in files:
        tally.seen += 1
        try:
            cwd = registry.extract_cwd(root.providerId, file_path)
        except (OSError, ValueError, RecursionError) as exc:
            issues.append(_file_issue(strategy, file_path, exc))
            continue
        if not cwd:
            tally.skipped_unmatched += 1
            tally.sample("unmatched", file_path)
            continue
        if looks_like_regex_fragment(cwd):
            tally.skipped_regex += 1
            tally.sample("regexLike", cwd)
            continue
        resolved = resolve_cwd(cwd, root=root.path, distro=root.distro)
        if resolved is None:
            tally.skipped_unmatched += 1
            tally.sample("unmatched", cwd)
            continue
        tally.matched += 1
        key = canonical_project_key(resolved.win_path, resolved.wsl_path)
        if not key or key in found:
            continue
        if not resolved.wsl_path:
            issues.append(ScanIssue(kind=ErrorKind.UNMAPPABLE_PATH, strategy=strategy,
                                    target=resolved.win_path, detail="kept Windows form only"))
        found[key] = _new_project(resolved.win_path, resolved.wsl_path, created_at)
        tally.added += 1
        tally.sample("added", key)
    tally.log(strategy)
    return list(found.values()), issues


class SessionReverseMapStrategy:
    """Projects are the distinct working directories recorded in session files."""

    name = "sessionReverseMap"

    async def run(self, ctx: DiscoveryContext) -> StrategyResult:
        roots = ctx.environment.existing_roots()
        branches = [
            _bounded(ctx, self.name, root.path, _scan_session_root, root,
                     ctx.environment.include_agent_history, self.name)
            for root in roots
        ]
        result = StrategyResult()
        for value, issues in await asyncio.gather(*branches):
            result.issues.extend(issues)
            if value is None:
                continue
            projects, branch_issues = value
            result.projects.extend(projects)
            result.issues.extend(branch_issues)
        result.stop_chain = bool(result.projects)
        return result


def _scan_configured_root(root: str, strategy: str) -> tuple[list[Project], list[ScanIssue]]:
    projects: list[Project] = []
    created_at = now_ms()
    try:
        with os.scandir(root) as it:
            entries = sorted((e for e in it if e.is_dir()), key=lambda e: e.name.lower())
    except OSError as exc:
        logger.debug(f"Skipping unreadable root {root}: {exc}")
        return [], [ScanIssue(kind=ErrorKind.UNREADABLE, strategy=strategy, target=root, detail=str(exc))]

    for entry in entries:
        resolved = resolve_cwd(entry.path, root=root)
        if resolved is None:
            continue
        projects.append(_new_project(resolved.win_path, resolved.wsl_path, created_at))
    return projects, []


class ConfiguredRootScanStrategy:
    """Immediate subdirectories of every configured root."""

    name = "configuredRootScan"

    async def run(self, ctx: DiscoveryContext) -> StrategyResult:
        branches = [_bounded(ctx, self.name, root, _scan_configured_root, root, self.name)
                    for root in ctx.configured_roots]
        result = StrategyResult()
        for value, issues in await asyncio.gather(*branches):
            result.issues.extend(issues)
            if value is not None:
                projects, branch_issues = value
                result.projects.extend(projects)
                result.issues.extend(branch_issues)
        return result


def _scan_distro_codex_root(root: SessionRoot, strategy: str) -> tuple[list[Project], list[ScanIssue]]:
    reason = _root_unreadable(root.path)
    if reason:
        return [], [ScanIssue(kind=ErrorKind.UNREADABLE, strategy=strategy, target=root.path, detail=reason)]
    tally = RootTally(root=root.path)
    found: dict[str, Project] = {}
    issues: list[ScanIssue] = []
    created_at = now_ms()
    for file_path in codex_parser.discover_session_files(root.path):
        tally.seen += 1
        try:
            candidates = codex_parser.first_line_candidates(file_path)
        except (OSError, ValueError, RecursionError) as exc:
            issues.append(_file_issue(strategy, file_path, exc))
            continue
        for candidate in candidates:
            if looks_like_regex_fragment(candidate):
                tally.skipped_regex += 1
                tally.sample("regexLike", candidate)
                continue
            resolved = resolve_cwd(candidate, root=root.path, distro=root.distro)
            if resolved is None:
                tally.skipped_unmatched += 1
                tally.sample("unmatched", candidate)
                continue
            tally.matched += 1
            key = canonical_project_key(resolved.win_path, resolved.wsl_path)
            if key and key not in found:
                found[key] = _new_project(resolved.win_path, resolved.wsl_path, created_at)
                tally.added += 1
    tally.log(strategy)
    return list(found.values()), issues


class WslAuxiliaryScanStrategy:
    """Header-line pass over each distro's own Codex store, including ``git.repo`` and path-like text."""

    name = "wslAuxiliaryScan"

    async def run(self, ctx: DiscoveryContext) -> StrategyResult:
        roots = [r for r in ctx.environment.existing_roots(codex_parser.PROVIDER_ID) if r.distro]
        branches = [_bounded(ctx, self.name, root.path, _scan_distro_codex_root, root, self.name)
                    for root in roots]
        result = StrategyResult()
        for value, issues in await asyncio.gather(*branches):
            result.issues.extend(issues)
            if value is not None:
                projects, branch_issues = value
                result.projects.extend(projects)
                result.issues.extend(branch_issues)
        return result


class StoreCarryForwardStrategy:
    """Previously known projects whose directory still exists."""

    name = "storeCarryForward"

    async def run(self, ctx: DiscoveryContext) -> StrategyResult:
        stored = ctx.stored_projects
        paths = [wsl.host_path(p.winPath, p.wslPath) for p in stored]
        exists = await asyncio.gather(
            *(
                wsl.fs_call(os.path.isdir, path, timeout=ctx.branch_timeout, default=False)
                if path else asyncio.sleep(0, result=False)
                for path in paths
            )
        )
        kept = [p.model_copy() for p, ok in zip(stored, exists) if ok]
        dropped = len(stored) - len(kept)
        if dropped:
            logger.debug(f"{self.name}: {dropped} stored project(s) no longer on disk")
        return StrategyResult(projects=kept)


DEFAULT_STRATEGIES: tuple[DiscoveryStrategy, ...] = (
    SessionReverseMapStrategy(),
    ConfiguredRootScanStrategy(),
    WslAuxiliaryScanStrategy(),
    StoreCarryForwardStrategy(),
)


async def run_strategies(
    strategies: tuple[DiscoveryStrategy, ...] | list[DiscoveryStrategy],
    ctx: DiscoveryContext,
) -> tuple[list[Project], list[ScanIssue], list[str]]:
    candidates: list[Project] = []
    issues: list[ScanIssue] = []
    ran: list[str] = []
    for strategy in strategies:
        with start_span("discovery.strategy", {"strategy": strategy.name}):
            result = await strategy.run(ctx)
        ran.append(strategy.name)
        candidates.extend(result.projects)
        issues.extend(result.issues)
        logger.debug(f"{strategy.name}: {len(result.projects)} candidate(s), {len(result.issues)} issue(s)")
        if result.stop_chain:
            break
    return candidates, issues, ran


def merge_projects(candidates: list[Project]) -> list[Project]:
    """Fold candidates onto their canonical path.

    The earliest ``createdAt`` keeps its identity; path fields and the name it
    lacks are taken from the others and marker flags are OR-ed. Output order
    follows each key's first appearance.
    """
    merged: dict[str, Project] = {}
    for candidate in candidates:
        key = canonical_project_key(candidate.winPath, candidate.wslPath)
        if not key:
            continue
        current = merged.get(key)
        if current is None:
            merged[key] = candidate.model_copy()
            continue
        keep, other = (current, candidate) if current.createdAt <= candidate.createdAt else (candidate.model_copy(), current)
        keep.winPath = keep.winPath or other.winPath
        keep.wslPath = keep.wslPath or other.wslPath
        keep.name = keep.name or other.name
        keep.hasMarkerFile = keep.hasMarkerFile or other.hasMarkerFile
        if keep.lastOpenedAt is None:
            keep.lastOpenedAt = other.lastOpenedAt
        merged[key] = keep
    return list(merged.values())


def reconcile_with_store(projects: list[Project], stored: list[Project]) -> list[Project]:
    """Give rediscovered projects the stored id, ``createdAt`` and ``lastOpenedAt``."""
    by_key = {canonical_project_key(p.winPath, p.wslPath): p for p in stored}
    out: list[Project] = []
    for project in projects:
        previous = by_key.get(canonical_project_key(project.winPath, project.wslPath))
        if previous is None:
            out.append(project)
            continue
        out.append(
            project.model_copy(
                update={
                    "id": previous.id,
                    "createdAt": previous.createdAt,
                    "lastOpenedAt": previous.lastOpenedAt,
                    "winPath": project.winPath or previous.winPath,
                    "wslPath": project.wslPath or previous.wslPath,
                    "name": project.name or previous.name,
                }
            )
        )
    return out


async def _signature_roots(
    environment: DiscoveryEnvironment,
    timeout: Optional[float] = None,
) -> tuple[list[str], list[str]]:
    """Directories fingerprinted by entry count and the Codex day-layout stores."""
    dir_roots: list[str] = []
    session_roots: list[str] = []
    for root in environment.existing_roots():
        if root.providerId == wsl.PROVIDER_CODEX:
            session_roots.append(root.path)
        elif root.providerId == wsl.PROVIDER_CLAUDE:
            projects_dir = os.path.join(root.path, "projects")
            has_projects = await wsl.fs_call(os.path.isdir, projects_dir, timeout=timeout, default=False)
            dir_roots.append(projects_dir if has_projects else root.path)
        else:
            dir_roots.append(root.path)
    return dir_roots, session_roots


async def compute_scan_meta(
    configured_roots: list[str],
    environment: DiscoveryEnvironment,
    timeout: Optional[float] = None,
) -> ScanMeta:
    """Fresh signatures; a root that stalls past ``timeout`` gets a never-matching placeholder."""
    dir_roots, session_roots = await _signature_roots(environment, timeout)
    root_sigs, session_sigs = await asyncio.gather(
        compute_root_signatures(list(configured_roots) + dir_roots, timeout),
        compute_session_root_signatures(session_roots, timeout),
    )
    return ScanMeta(roots=list(configured_roots), rootSigs=root_sigs, sessionSigs=session_sigs, savedAt=now_ms())


class ProjectDiscovery:
    """Runs discovery passes against one :class:`ProjectStore`.

    Calls that arrive while a pass is running, or within the debounce window
    after it finished, share that pass's result.
    """

    def __init__(
        self,
        store: ProjectStore,
        *,
        environment: Optional[DiscoveryEnvironment] = None,
        settings: Optional[DiscoverySettings] = None,
        strategies: Optional[list[DiscoveryStrategy]] = None,
        debounce_ms: Optional[int] = None,
        branch_timeout: Optional[float] = None,
    ):
        self.store = store
        self.settings = settings
        self.strategies = tuple(strategies) if strategies is not None else DEFAULT_STRATEGIES
        self.debounce_ms = config.SCAN_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self.branch_timeout = float(branch_timeout or config.BRANCH_TIMEOUT_SECONDS)
        self.last_report: Optional[DiscoveryReport] = None
        self._environment = environment
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_key: Optional[tuple[str, ...]] = None
        self._finished_at = 0.0

    async def environment(self) -> DiscoveryEnvironment:
        if self._environment is None:
            self._environment = await build_environment(self.settings, timeout=self.branch_timeout)
        return self._environment

    def invalidate(self) -> None:
        """Forget the debounced result so the next call starts a new pass."""
        if self._inflight is not None and self._inflight.done():
            self._inflight = None
            self._inflight_key = None

    async def discover(self, configured_roots: Optional[list[str]] = None) -> list[Project]:
        key = tuple(configured_roots) if configured_roots is not None else ("<default>",)
        task = self._inflight
        if task is not None and key == self._inflight_key:
            fresh = (time.monotonic() - self._finished_at) * 1000 < self.debounce_ms
            if not task.done() or fresh:
                return [p.model_copy() for p in await asyncio.shield(task)]

        task = asyncio.create_task(self._run_pass(configured_roots))
        self._inflight = task
        self._inflight_key = key
        try:
            projects = await asyncio.shield(task)
        finally:
            if task.done():
                self._finished_at = time.monotonic()
        return [p.model_copy() for p in projects]

    async def _run_pass(self, configured_roots: Optional[list[str]]) -> list[Project]:
        started = time.perf_counter()
        with start_span("discovery.discover"):
            environment = await self.environment()
            roots = configured_roots if configured_roots is not None else environment.configured_roots
            roots = [r for r in (wsl.sanitize_root(x) for x in roots) if r]

            stored = await asyncio.to_thread(self.store.load)
            previous = await asyncio.to_thread(self.store.load_scan_meta)
            fresh = await compute_scan_meta(roots, environment, self.branch_timeout)

            if can_skip_rescan(previous, stored, fresh):
                record_fast_path(True)
                duration = int((time.perf_counter() - started) * 1000)
                logger.info(f"Scan signatures unchanged; reusing {len(stored)} stored project(s)")
                self.last_report = DiscoveryReport(projects=len(stored), fastPath=True, durationMs=duration)
                record_discovery("fastPath", duration)
                return stored
            record_fast_path(False)

            ctx = DiscoveryContext(
                environment=environment,
                configured_roots=roots,
                stored_projects=stored,
                semaphore=asyncio.Semaphore(config.DISCOVERY_CONCURRENCY),
                branch_timeout=self.branch_timeout,
            )
            candidates, issues, ran = await run_strategies(self.strategies, ctx)
            projects = reconcile_with_store(merge_projects(candidates), stored)

            await asyncio.to_thread(self.store.save, projects)
            await asyncio.to_thread(self.store.save_scan_meta, fresh)

        duration = int((time.perf_counter() - started) * 1000)
        self.last_report = DiscoveryReport(
            projects=len(projects),
            issues=issues,
            fastPath=False,
            strategiesRun=ran,
            durationMs=duration,
        )
        record_discovery("full", duration, issues=[(i.kind.value, i.strategy) for i in issues])
        logger.info(
            f"Discovered {len(projects)} project(s) via {', '.join(ran) or 'no strategy'} "
            f"in {duration}ms ({len(issues)} issue(s))"
        )
        return projects
