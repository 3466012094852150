"""Project-path hash candidates for the hash-only (Gemini) session store.

Gemini CLI files its sessions under ``<root>/<sha256(project path)>/`` and
does not always record the path itself. The exact string that was hashed is
unknown: slash style, drive-letter case and whether the path was a
``/mnt/c/...`` or ``C:\\...`` form all vary. Matching therefore hashes every
plausible spelling of a project path and tests set membership.
"""
from __future__ import annotations

import hashlib
import re
from typing import Optional

from sessionscope.paths import (
    is_any_unc_path,
    is_drive_path,
    is_posix_path,
    tidy_path_candidate,
    try_win_to_wsl,
    wsl_mount_to_win,
)

_PROJECT_HASH_DIR_RE = re.compile(r"^[0-9a-fA-F]{32,64}$")
_DRIVE_FORM_RE = re.compile(r"^([a-zA-Z]):([\\/].*)?$")


def sha256_hex(text: str) -> str:
    return hashlib.sha256(str(text or "").encode("utf-8")).hexdigest()


def is_project_hash_dir_name(name: str) -> bool:
    return bool(_PROJECT_HASH_DIR_RE.match(name or ""))


def normalize_for_hash(p: str) -> str:
    """Generic form: ``/`` separators, single slashes, no trailing slash."""
    s = tidy_path_candidate(p).replace("\\", "/")
    s = re.sub(r"/+", "/", s)
    return s.rstrip("/") if len(s) > 1 else s


def normalize_win_for_hash(p: str) -> str:
    """Windows form: ``\\`` separators, single backslashes except a UNC lead."""
    s = tidy_path_candidate(p).replace("/", "\\")
    if not s:
        return ""
    if s.startswith("\\\\"):
        s = "\\\\" + re.sub(r"\\{2,}", r"\\", s[2:])
    else:
        s = re.sub(r"\\{2,}", r"\\", s)
    return s.rstrip("\\") if len(s) > 3 else s


def _spellings(p: str) -> set[str]:
    forms: set[str] = set()
    base = tidy_path_candidate(p)
    if not base:
        return forms
    forms.add(base)

    if is_posix_path(base):
        forms.add(normalize_for_hash(base))
    elif is_drive_path(base) or is_any_unc_path(base):
        forms.add(normalize_for_hash(base))
        forms.add(normalize_win_for_hash(base))
    else:
        forms.add(normalize_for_hash(base))
        if "\\" in base or re.match(r"^[a-zA-Z]:", base):
            forms.add(normalize_win_for_hash(base))

    for value in list(forms):
        m = _DRIVE_FORM_RE.match(value)
        if not m:
            continue
        rest = m.group(2) or ""
        forms.add(f"{m.group(1).upper()}:{rest}")
        forms.add(f"{m.group(1).lower()}:{rest}")

    forms.discard("")
    return forms


def derive_hash_candidates(path: str) -> set[str]:
    """Every SHA-256 a session store may have recorded for ``path``.

    Covers the literal input, the tidied generic form, the WSL mount form of
    a drive path and the drive form of a ``/mnt/<drive>`` path, each with
    both slash styles and drive-letter cases.
    """
    raw = (path or "").strip()
    if not raw:
        return set()

    forms: set[str] = {raw}
    forms |= _spellings(raw)

    tidy = tidy_path_candidate(raw)
    if is_drive_path(tidy) or is_any_unc_path(tidy):
        mount = try_win_to_wsl(tidy)
        if mount != tidy:
            forms |= _spellings(mount)
    elif is_posix_path(tidy):
        drive = wsl_mount_to_win(tidy)
        if drive:
            forms |= _spellings(drive)

    return {sha256_hex(form) for form in forms if form}


def extract_project_hash_from_path(file_path: str) -> Optional[str]:
    """Project hash directory of a Gemini session file, lowercased.

    Matches the first 32-64 hex segment whose parent directory is ``tmp``
    (``~/.gemini/tmp/<hash>/chats/session-*.json``).
    """
    parts = [seg for seg in re.split(r"[\\/]+", str(file_path or "")) if seg]
    for index in range(1, len(parts)):
        if parts[index - 1].lower() == "tmp" and is_project_hash_dir_name(parts[index]):
            return parts[index].lower()
    return None


class HashCandidateCache:
    """Per-query memo so each project path is hashed once."""

    def __init__(self) -> None:
        self._cache: dict[str, frozenset[str]] = {}

    def get(self, path: str) -> frozenset[str]:
        key = (path or "").strip()
        if not key:
            return frozenset()
        cached = self._cache.get(key)
        if cached is None:
            cached = frozenset(derive_hash_candidates(key))
            self._cache[key] = cached
        return cached

    def union(self, paths: list[str]) -> set[str]:
        out: set[str] = set()
        for p in paths:
            out |= self.get(p)
        return out
