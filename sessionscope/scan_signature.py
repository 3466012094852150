"""Cheap structural fingerprints that decide whether project discovery must rerun.

A root signature is the number of immediate subdirectories plus the root's
mtime. A session-root signature is the newest ``*.jsonl`` file found by
walking ``root/YYYY/MM/DD`` backwards and stopping at the first non-empty day.
Session directories are append-only and chronologically named, so the newest
file is always in the first non-empty day visited.
"""
from __future__ import annotations

import asyncio
import logging
import math
import os
from typing import Iterable, Optional

from sessionscope import wsl
from sessionscope.models import Project, RootSignature, ScanMeta, SessionRootSignature

logger = logging.getLogger("sessionscope.signature")

SESSION_FILE_SUFFIX = ".jsonl"
# entryCount/mtimeMs of a signature whose root did not answer in time
TIMED_OUT = -1


def _subdir_names(path: str) -> list[str]:
    try:
        with os.scandir(path) as it:
            return [entry.name for entry in it if _is_dir(entry)]
    except OSError:
        return []


def _is_dir(entry: os.DirEntry) -> bool:
    try:
        return entry.is_dir()
    except OSError:
        return False


def _descending(names: Iterable[str]) -> list[str]:
    """Numeric names first, largest first; then the rest in reverse lexical order."""
    def key(name: str) -> tuple[int, int, str]:
        return (1, int(name), name) if name.isdigit() else (0, 0, name)

    return sorted(names, key=key, reverse=True)


def compute_root_signature(root: str) -> RootSignature:
    """Subdirectory count and mtime of ``root``; zeros when unreadable."""
    mtime_ms = 0.0
    try:
        mtime_ms = os.stat(root).st_mtime_ns / 1_000_000
    except OSError as exc:
        logger.debug("stat failed for root %s: %s", root, exc)
    entry_count = len(_subdir_names(root))
    return RootSignature(root=root, entryCount=entry_count, mtimeMs=mtime_ms)


def compute_session_root_signature(root: str) -> SessionRootSignature:
    sig = SessionRootSignature(root=root)
    for year in _descending(_subdir_names(root)):
        year_dir = os.path.join(root, year)
        for month in _descending(_subdir_names(year_dir)):
            month_dir = os.path.join(year_dir, month)
            for day in _descending(_subdir_names(month_dir)):
                day_dir = os.path.join(month_dir, day)
                best = _newest_session_file(day_dir)
                if best is None:
                    continue
                path, stat = best
                sig.latestSessionDir = day_dir
                sig.latestSessionFile = path
                sig.mtimeMs = stat.st_mtime_ns / 1_000_000
                sig.size = stat.st_size
                return sig
    return sig


def _newest_session_file(day_dir: str) -> Optional[tuple[str, os.stat_result]]:
    best: Optional[tuple[str, os.stat_result]] = None
    try:
        with os.scandir(day_dir) as it:
            entries = [e for e in it if e.name.endswith(SESSION_FILE_SUFFIX)]
    except OSError:
        return None
    for entry in entries:
        try:
            stat = entry.stat()
        except OSError:
            continue
        if best is None or stat.st_mtime_ns > best[1].st_mtime_ns:
            best = (entry.path, stat)
    return best


def timed_out_root_signature(root: str) -> RootSignature:
    """Placeholder for a root whose stat stalled; it never equals any signature."""
    return RootSignature(root=root, entryCount=TIMED_OUT, mtimeMs=float(TIMED_OUT))


def timed_out_session_signature(root: str) -> SessionRootSignature:
    return SessionRootSignature(root=root, mtimeMs=float(TIMED_OUT))


def is_timed_out(sig: RootSignature | SessionRootSignature) -> bool:
    if isinstance(sig, RootSignature) and sig.entryCount < 0:
        return True
    return (sig.mtimeMs or 0) < 0


async def compute_root_signatures(roots: list[str], timeout: Optional[float] = None) -> list[RootSignature]:
    sigs = await asyncio.gather(
        *(wsl.fs_call(compute_root_signature, r, timeout=timeout) for r in roots)
    )
    return [sig if sig is not None else timed_out_root_signature(r) for r, sig in zip(roots, sigs)]


async def compute_session_root_signatures(
    roots: list[str],
    timeout: Optional[float] = None,
) -> list[SessionRootSignature]:
    sigs = await asyncio.gather(
        *(wsl.fs_call(compute_session_root_signature, r, timeout=timeout) for r in roots)
    )
    return [sig if sig is not None else timed_out_session_signature(r) for r, sig in zip(roots, sigs)]


def _ms(value: Optional[float]) -> int:
    return math.floor(float(value or 0))


def same_root_sigs(a: list[RootSignature], b: list[RootSignature]) -> bool:
    if len(a) != len(b):
        return False
    aa = sorted(a, key=lambda s: s.root)
    bb = sorted(b, key=lambda s: s.root)
    for x, y in zip(aa, bb):
        if x.root != y.root:
            return False
        if is_timed_out(x) or is_timed_out(y):
            return False
        if x.entryCount != y.entryCount:
            return False
        if _ms(x.mtimeMs) != _ms(y.mtimeMs):
            return False
    return True


def same_session_sigs(a: list[SessionRootSignature], b: list[SessionRootSignature]) -> bool:
    # size is informational; some filesystems report it unreliably mid-write
    if len(a) != len(b):
        return False
    aa = sorted(a, key=lambda s: s.root)
    bb = sorted(b, key=lambda s: s.root)
    for x, y in zip(aa, bb):
        if x.root != y.root:
            return False
        if is_timed_out(x) or is_timed_out(y):
            return False
        if (x.latestSessionFile or "") != (y.latestSessionFile or ""):
            return False
        if _ms(x.mtimeMs) != _ms(y.mtimeMs):
            return False
    return True


def can_skip_rescan(
    previous: Optional[ScanMeta],
    stored_projects: list[Project],
    fresh: ScanMeta,
) -> bool:
    """Fast-path decision: every signature must match a non-empty stored list."""
    if previous is None or not stored_projects:
        return False
    if not same_root_sigs(fresh.rootSigs, previous.rootSigs):
        return False
    return same_session_sigs(fresh.sessionSigs, previous.sessionSigs)
