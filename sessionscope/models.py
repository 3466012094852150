"""Pydantic models for projects, scan signatures and session summaries.

Field names are camelCase because they are persisted as-is in
``projects.json`` / ``projects.scan.meta.json`` and handed to UI layers.
"""
from __future__ import annotations

from typing import Generic, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    offset: int
    limit: Optional[int] = None


# ── Project models ──────────────────────────────────────────────────

class Project(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    winPath: str = ""
    wslPath: str = ""
    hasMarkerFile: bool = Field(
        default=False,
        validation_alias=AliasChoices("hasMarkerFile", "hasDotCodex"),
    )
    createdAt: int = 0
    lastOpenedAt: Optional[int] = None


# ── Scan signature models ───────────────────────────────────────────

class RootSignature(BaseModel):
    root: str
    entryCount: int = 0
    mtimeMs: float = 0.0


class SessionRootSignature(BaseModel):
    root: str
    latestSessionDir: Optional[str] = None
    latestSessionFile: Optional[str] = None
    mtimeMs: Optional[float] = None
    size: Optional[int] = None


class ScanMeta(BaseModel):
    roots: list[str] = Field(default_factory=list)
    rootSigs: list[RootSignature] = Field(default_factory=list)
    sessionSigs: list[SessionRootSignature] = Field(default_factory=list)
    savedAt: int = 0


# ── Session models ──────────────────────────────────────────────────

class SessionSummary(BaseModel):
    id: str
    providerId: str = "codex"  # "codex" | "claude" | "gemini"
    title: str = ""
    date: int = 0
    filePath: str
    dirKey: str = ""
    rawDate: Optional[str] = None
    preview: Optional[str] = None
    cwd: Optional[str] = None
    projectHash: Optional[str] = None
    resumeId: Optional[str] = None


class SessionDetail(SessionSummary):
    messageCount: int = 0
    skippedLines: int = 0


class Pagination(BaseModel):
    offset: int = 0
    limit: Optional[int] = None


# ── Runtime / settings models ───────────────────────────────────────

class SessionRoot(BaseModel):
    """One provider session store on one runtime (native host or a WSL distro)."""

    path: str
    providerId: str = "codex"
    distro: Optional[str] = None
    exists: bool = False


class DiscoverySettings(BaseModel):
    """Inputs normally supplied by the host's settings store."""

    roots: list[str] = Field(default_factory=list)
    historyRoot: Optional[str] = None
    distros: Optional[list[str]] = None
    includeAgentHistory: bool = False
