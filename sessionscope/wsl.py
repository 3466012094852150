"""WSL runtime detection: distros, distro homes, wslpath and provider session roots.

Every ``wsl.exe`` call goes through :func:`_run_wsl`, which returns None on
non-Windows hosts, on a non-zero exit and on timeout. Callers treat None as
"runtime not available" and keep going.
"""
from __future__ import annotations

import asyncio
import logging
import os
import posixpath
import re
import subprocess
from pathlib import Path
from typing import NamedTuple, Optional

from sessionscope import config
from sessionscope.models import SessionRoot
from sessionscope.paths import (
    is_any_unc_path,
    normalize_unc,
    try_win_to_wsl,
    unc_to_wsl,
    win_drive_to_wsl,
    wsl_to_unc,
)

logger = logging.getLogger("sessionscope.wsl")

PROVIDER_CODEX = "codex"
PROVIDER_CLAUDE = "claude"
PROVIDER_GEMINI = "gemini"

_ANSI_RE = re.compile(r"\x1B\[[0-9;]*[A-Za-z]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_DISTRO_NAME_JUNK_RE = re.compile(r"[^\x20-\x7E\u4E00-\u9FFF\-_.]")


class DistroInfo(NamedTuple):
    name: str
    state: str = ""
    version: str = ""


def is_windows_host() -> bool:
    return os.name == "nt"


def _decode(raw: bytes) -> str:
    # wsl.exe writes UTF-16LE for its own listings and UTF-8 for commands it runs
    if not raw:
        return ""
    if b"\x00" in raw:
        try:
            return raw.decode("utf-16-le")
        except UnicodeDecodeError:
            pass
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def clean_output(text: str) -> str:
    return _CONTROL_RE.sub("", _ANSI_RE.sub("", text or "")).strip()


def _run_wsl(args: list[str], timeout: Optional[float] = None) -> Optional[str]:
    if not is_windows_host():
        return None
    try:
        result = subprocess.run(
            ["wsl.exe", *args],
            capture_output=True,
            check=False,
            timeout=timeout or config.WSL_EXEC_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("wsl.exe %s failed: %s", " ".join(args), exc)
        return None
    if result.returncode != 0:
        logger.debug("wsl.exe %s exited with %s", " ".join(args), result.returncode)
        return None
    return _decode(result.stdout)


def parse_distro_list(output: str) -> list[DistroInfo]:
    """Parse ``wsl.exe -l -v`` output; the header line is skipped."""
    distros: list[DistroInfo] = []
    lines = [line for line in re.split(r"\r?\n", output or "")[1:] if line.strip()]
    for line in lines:
        clean = _CONTROL_RE.sub("", _ANSI_RE.sub("", line)).replace("\x00", "").strip()
        parts = [part for part in re.split(r"\s{2,}", clean) if part]
        if not parts:
            continue
        raw_name = re.sub(r"^\*\s*", "", parts[0])
        raw_name = re.sub(r"\s+\d+$", "", raw_name)
        name = _DISTRO_NAME_JUNK_RE.sub("", raw_name).strip()
        if not name:
            continue
        distros.append(
            DistroInfo(
                name=name,
                state=parts[1] if len(parts) > 1 else "",
                version=parts[2] if len(parts) > 2 else "",
            )
        )
    return distros


async def list_distros_async() -> list[DistroInfo]:
    out = await asyncio.to_thread(_run_wsl, ["-l", "-v"])
    if out is None:
        return []
    return parse_distro_list(out)


async def exec_in_wsl_async(distro: Optional[str], cmd: str) -> Optional[str]:
    args = ["-d", distro, "--", "sh", "-lc", cmd] if distro else ["--", "sh", "-lc", cmd]
    out = await asyncio.to_thread(_run_wsl, args)
    if out is None:
        return None
    return clean_output(out)


async def get_distro_home_async(distro: Optional[str] = None) -> Optional[str]:
    out = await exec_in_wsl_async(distro, "echo $HOME")
    return out or None


async def get_distro_home_sub_path_unc_async(distro: str, sub_path: str) -> str:
    """UNC view of ``$HOME/<sub_path>`` inside ``distro``; empty string if unavailable."""
    home = await get_distro_home_async(distro)
    if not home:
        return ""
    return normalize_unc(wsl_to_unc(posixpath.join(home, sub_path), distro))


async def win_to_wsl_async(win_path: str, preferred_distro: Optional[str] = None) -> str:
    """Windows -> WSL via ``wslpath -a`` inside a distro, falling back to rule-based mapping."""
    if not win_path:
        return ""
    if not is_windows_host():
        return try_win_to_wsl(win_path)
    info = unc_to_wsl(win_path)
    if info:
        return info.wsl_path
    args = ["-d", preferred_distro, "--"] if preferred_distro else ["--"]
    out = await asyncio.to_thread(_run_wsl, [*args, "wslpath", "-a", win_path])
    if out and out.strip():
        return clean_output(out)
    return win_drive_to_wsl(win_path) or win_path


def sanitize_root(root: str) -> str:
    """Strip whitespace and the leading ``@`` left behind by drag-and-drop."""
    return str(root or "").strip().lstrip("@").strip()


def host_path(win_path: str = "", wsl_path: str = "") -> str:
    """Path this process can open for a project known by its two forms."""
    if is_windows_host():
        if win_path:
            return win_path
        return wsl_to_unc(wsl_path) if wsl_path else ""
    if wsl_path:
        return wsl_path
    if not win_path:
        return ""
    if is_any_unc_path(win_path) and not unc_to_wsl(win_path):
        return ""
    mapped = try_win_to_wsl(win_path)
    return mapped if mapped != win_path else ""


async def fs_call(fn, *args, timeout: Optional[float] = None, default=None):
    """Run a blocking filesystem call in a thread; ``default`` once it stalls past ``timeout``.

    A stalled call (an unresponsive network mount or UNC share) keeps its
    worker thread but no longer holds up the caller.
    """
    limit = float(timeout or config.BRANCH_TIMEOUT_SECONDS)
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=limit)
    except asyncio.TimeoutError:
        target = args[0] if args else getattr(fn, "__name__", "call")
        logger.warning(f"Filesystem call timed out after {limit}s: {target}")
        return default


async def get_default_roots_async(distros: Optional[list[DistroInfo]] = None) -> list[str]:
    """Scan roots used when none are configured: home ``code``/``.codex``, extras and distro homes."""
    home = Path.home()
    roots: list[str] = [str(home / config.CODEX_DIR_NAME), str(home / "code")]
    roots.extend(config.EXTRA_ROOTS)

    if is_windows_host():
        if distros is None:
            distros = await list_distros_async()
        for distro in distros:
            distro_home = await get_distro_home_async(distro.name)
            if not distro_home:
                continue
            unc = wsl_to_unc(distro_home, distro.name)
            roots.append(unc)
            roots.append(f"{unc}\\code")
    return _dedupe_paths([sanitize_root(r) for r in roots if sanitize_root(r)])


def _dedupe_paths(paths: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for p in paths:
        key = p.replace("\\", "/").lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out


def _env_path(*names: str) -> list[str]:
    values = []
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            values.append(value)
    return values


def _native_session_roots() -> list[SessionRoot]:
    home = Path.home()
    roots: list[SessionRoot] = []

    for codex_home in _env_path("CODEX_HOME") + [str(home / config.CODEX_DIR_NAME)]:
        roots.append(SessionRoot(path=os.path.join(codex_home, "sessions"), providerId=PROVIDER_CODEX))
    for claude_home in _env_path("CLAUDE_HOME", "CLAUDE_CONFIG_DIR") + [str(home / config.CLAUDE_DIR_NAME)]:
        roots.append(SessionRoot(path=claude_home, providerId=PROVIDER_CLAUDE))
    for gemini_home in _env_path("GEMINI_HOME") + [str(home / config.GEMINI_DIR_NAME)]:
        roots.append(SessionRoot(path=os.path.join(gemini_home, "tmp"), providerId=PROVIDER_GEMINI))
    return roots


async def _distro_session_roots(distro: str) -> list[SessionRoot]:
    home = await get_distro_home_async(distro)
    if not home:
        return []
    subs = (
        (PROVIDER_CODEX, f"{config.CODEX_DIR_NAME}/sessions"),
        (PROVIDER_CLAUDE, config.CLAUDE_DIR_NAME),
        (PROVIDER_GEMINI, f"{config.GEMINI_DIR_NAME}/tmp"),
    )
    return [
        SessionRoot(
            path=normalize_unc(wsl_to_unc(posixpath.join(home, sub), distro)),
            providerId=provider_id,
            distro=distro,
        )
        for provider_id, sub in subs
    ]


def select_distros(available: list[DistroInfo], allowed: Optional[list[str]]) -> list[str]:
    names = [d.name for d in available if d.name]
    if allowed is None:
        return names
    wanted = {a.strip().lower() for a in allowed if a and a.strip()}
    return [n for n in names if n.lower() in wanted]


async def detect_session_roots(
    distros: Optional[list[str]] = None,
    *,
    timeout: Optional[float] = None,
) -> list[SessionRoot]:
    """Session stores of every provider for the native host plus each distro.

    ``exists`` is filled in for every candidate; duplicates (same path up to
    case and separator style) are collapsed, preferring an existing one.
    """
    roots = _native_session_roots()
    if distros is None:
        distros = [d.name for d in await list_distros_async()]
    if distros:
        per_distro = await asyncio.gather(*(_distro_session_roots(d) for d in distros))
        for chunk in per_distro:
            roots.extend(chunk)

    checked = await asyncio.gather(
        *(fs_call(os.path.isdir, r.path, timeout=timeout, default=False) for r in roots)
    )
    deduped: dict[str, SessionRoot] = {}
    for root, exists in zip(roots, checked):
        root.exists = bool(exists)
        key = root.path.replace("\\", "/").lower()
        prev = deduped.get(key)
        if prev is None or (not prev.exists and root.exists):
            deduped[key] = root
    return list(deduped.values())
