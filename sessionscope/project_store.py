"""File-backed project list and scan metadata."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from sessionscope import config
from sessionscope.date_utils import now_ms
from sessionscope.models import Project, ScanMeta
from sessionscope.paths import (
    canonical_project_key,
    display_name,
    is_any_unc_path,
    is_drive_path,
    is_posix_path,
    normalize_posix,
    try_win_to_wsl,
    wsl_mount_to_win,
    wsl_to_unc,
)
from sessionscope.wsl import host_path, is_windows_host

logger = logging.getLogger("sessionscope.store")


def new_project_id() -> str:
    return f"P-{uuid.uuid4().hex[:12]}"


def has_marker_file(*candidates: str) -> bool:
    """True if any existing candidate directory holds a project marker."""
    for base in candidates:
        if not base:
            continue
        for marker in config.MARKER_NAMES:
            try:
                if os.path.exists(os.path.join(base, marker)):
                    return True
            except (OSError, ValueError):
                continue
    return False


def _atomic_write_json(path: Path, payload) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class ProjectStore:
    """Persisted project list (``projects.json``) and scan meta (``projects.scan.meta.json``).

    Both files are loaded at call time and replaced atomically on save, so a
    process killed mid-save leaves the previous file intact.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else config.DATA_DIR
        self.projects_path = self.data_dir / config.PROJECTS_FILE_NAME
        self.meta_path = self.data_dir / config.SCAN_META_FILE_NAME

    # ── projects.json ──────────────────────────────────────────────

    def load(self) -> list[Project]:
        if not self.projects_path.exists():
            return []
        try:
            content = self.projects_path.read_text(encoding="utf-8")
            if not content.strip():
                return []
            data = json.loads(content)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load projects file: {e}")
            return []
        if not isinstance(data, list):
            logger.error("Projects file is not a list; ignoring it")
            return []

        projects: list[Project] = []
        for item in data:
            try:
                projects.append(Project.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed project entry: {e}")
        return projects

    def save(self, projects: list[Project]) -> bool:
        try:
            _atomic_write_json(self.projects_path, [p.model_dump() for p in projects])
            return True
        except OSError as e:
            logger.error(f"Failed to save projects file {self.projects_path}: {e}")
            return False

    def get_project(self, project_id: str) -> Optional[Project]:
        return next((p for p in self.load() if p.id == project_id), None)

    def find_by_path(self, path: str) -> Optional[Project]:
        key = _key_for_path(path)
        if not key:
            return None
        return next((p for p in self.load() if canonical_project_key(p.winPath, p.wslPath) == key), None)

    def add_project_by_path(self, path: str) -> Project:
        """Register a directory explicitly; returns the existing record if already known."""
        if not isinstance(path, str) or not path.strip():
            raise ValueError("path must be a non-empty string")
        raw = path.strip()
        if not (is_posix_path(raw) or is_drive_path(raw) or is_any_unc_path(raw)):
            raw = os.path.abspath(os.path.expanduser(raw))
        if is_posix_path(raw):
            wsl_path = normalize_posix(raw)
            win_path = wsl_to_unc(wsl_path) if is_windows_host() else wsl_mount_to_win(wsl_path)
        else:
            win_path = raw
            mapped = try_win_to_wsl(win_path)
            wsl_path = normalize_posix(mapped) if mapped != win_path else ""

        store = self.load()
        key = canonical_project_key(win_path, wsl_path)
        for existing in store:
            if canonical_project_key(existing.winPath, existing.wslPath) == key:
                return existing

        project = Project(
            id=new_project_id(),
            name=display_name(win_path, wsl_path),
            winPath=win_path,
            wslPath=wsl_path,
            hasMarkerFile=has_marker_file(host_path(win_path, wsl_path)),
            createdAt=now_ms(),
        )
        store.append(project)
        self.save(store)
        logger.info(f"Added project {project.name} ({project.id})")
        return project

    def touch_project(self, project_id: str) -> Optional[Project]:
        store = self.load()
        for project in store:
            if project.id == project_id:
                project.lastOpenedAt = now_ms()
                self.save(store)
                return project
        return None

    def remove_project(self, project_id: str) -> bool:
        store = self.load()
        kept = [p for p in store if p.id != project_id]
        if len(kept) == len(store):
            return False
        self.save(kept)
        logger.info(f"Removed project {project_id}")
        return True

    # ── projects.scan.meta.json ────────────────────────────────────

    def load_scan_meta(self) -> Optional[ScanMeta]:
        if not self.meta_path.exists():
            return None
        try:
            return ScanMeta.model_validate_json(self.meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable scan meta: {e}")
            return None

    def save_scan_meta(self, meta: ScanMeta) -> bool:
        try:
            _atomic_write_json(self.meta_path, meta.model_dump())
            return True
        except OSError as e:
            logger.error(f"Failed to save scan meta {self.meta_path}: {e}")
            return False


def _key_for_path(path: str) -> str:
    raw = (path or "").strip()
    if not raw:
        return ""
    if is_posix_path(raw):
        return canonical_project_key("", raw)
    mapped = try_win_to_wsl(raw)
    return canonical_project_key(raw, mapped if mapped != raw else "")
