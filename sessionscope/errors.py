"""Error taxonomy shared by discovery, persistence and queries."""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ErrorKind(str, Enum):
    UNMAPPABLE_PATH = "unmappablePath"
    UNREADABLE = "unreadable"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"


class ScanIssue(BaseModel):
    """A recoverable failure recorded while discovering projects.

    Issues are collected per strategy and surfaced on the discovery report;
    they never abort a pass.
    """

    kind: ErrorKind
    strategy: str = ""
    target: str = ""
    detail: str = ""


class NoMappingError(ValueError):
    """A path has no representation in the requested namespace."""

    def __init__(self, path: str, target: str = "wsl"):
        super().__init__(f"no {target} mapping for path: {path!r}")
        self.path = path
        self.target = target


class InvalidArgumentError(ValueError):
    """Raised for caller mistakes (bad pagination, wrong argument types)."""
