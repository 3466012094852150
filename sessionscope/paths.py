"""Path conversion between Windows drive paths, WSL UNC paths and WSL POSIX paths.

Every other module goes through these helpers when it needs to compare or
convert a path. The canonical comparison key folds all three namespaces into
the WSL (POSIX) representation:

    C:\\Users\\x\\proj                      -> /mnt/c/users/x/proj
    \\\\wsl.localhost\\Ubuntu\\home\\x\\proj   -> /home/x/proj
    /mnt/C/Users/x/proj/                  -> /mnt/c/users/x/proj

Conversions used for comparison never raise; only :func:`win_to_wsl` fails
explicitly, for callers that need to know a mapping does not exist.
"""
from __future__ import annotations

import logging
import ntpath
import posixpath
import re
from typing import NamedTuple, Optional

from sessionscope import config
from sessionscope.errors import NoMappingError

logger = logging.getLogger("sessionscope.paths")

HOME_SENTINEL = "~"

_UNC_WSL_RE = re.compile(r"^(?:\\\\|//)wsl(?:\.localhost|\$)[\\/]+([^\\/]+)(?:[\\/]+(.*))?$", re.IGNORECASE)
_UNC_ANY_RE = re.compile(r"^(?:\\\\|//)[^\s\\/\"']+[\\/]+[^\s\\/\"']+")
_DRIVE_RE = re.compile(r"^([A-Za-z]):(?:[\\/]+(.*))?$")
_MOUNT_RE = re.compile(r"^/mnt/([A-Za-z])(?:/+(.*))?$")
_ESCAPED_LINE_CUT_RE = re.compile(r"(?<!\\)\\n|\r?\n|</?[A-Za-z_:-]+>")
_LINE_CUT_RE = re.compile(r"\r?\n|</?[A-Za-z_:-]+>")
_REGEX_FRAGMENT_MARKERS = ("(?:", "\\r?")


class UncInfo(NamedTuple):
    distro: str
    wsl_path: str


# ── Shape predicates ────────────────────────────────────────────────

def is_unc_path(p: str) -> bool:
    """True for ``\\\\wsl.localhost\\<Distro>\\...`` (or the ``wsl$`` alias)."""
    return bool(p) and bool(_UNC_WSL_RE.match(p.strip()))


def is_any_unc_path(p: str) -> bool:
    return bool(p) and bool(_UNC_ANY_RE.match(p.strip()))


def is_drive_path(p: str) -> bool:
    return bool(p) and bool(_DRIVE_RE.match(p.strip()))


def is_posix_path(p: str) -> bool:
    return bool(p) and p.startswith("/") and not p.startswith("//")


def is_mount_path(p: str) -> bool:
    return bool(p) and bool(_MOUNT_RE.match(p.replace("\\", "/")))


# ── Tidying ─────────────────────────────────────────────────────────

def _collapse_escaped_backslashes(s: str) -> str:
    lead = ""
    if s.startswith("\\\\"):
        lead = "\\\\"
        s = s.lstrip("\\")
    return lead + s.replace("\\\\", "\\")


def _strip_trailing_separators(s: str) -> str:
    stripped = s.rstrip("\\/")
    if not stripped and s:
        return "/" if s.startswith("/") else ""
    return stripped


def tidy_path_candidate(value: str) -> str:
    """Trim quotes and whitespace, fold JSON-escaped backslashes, drop trailing separators."""
    s = str(value or "").strip()
    for quote in ('"', "'"):
        if len(s) >= 2 and s.startswith(quote) and s.endswith(quote):
            s = s[1:-1].strip()
    s = _collapse_escaped_backslashes(s)
    return _strip_trailing_separators(s)


def clean_cwd_candidate(value: str, *, escaped: bool = False) -> str:
    """Tidy a working-directory string pulled out of session content.

    ``escaped`` marks values taken from raw JSON text (free-text markers),
    where a literal backslash-n is an escaped newline rather than a path
    separator followed by ``n``.
    """
    s = str(value or "").strip().strip('"').strip()
    cut = _ESCAPED_LINE_CUT_RE if escaped else _LINE_CUT_RE
    s = cut.split(s, maxsplit=1)[0].strip()
    return tidy_path_candidate(s)


def looks_like_regex_fragment(value: str) -> bool:
    return any(marker in value for marker in _REGEX_FRAGMENT_MARKERS)


def normalize_unc(p: str) -> str:
    """Normalize ``\\\\wsl$\\`` to ``\\\\wsl.localhost\\`` and unify separators."""
    if not p:
        return p
    s = p.strip()
    s = re.sub(r"^(?:\\\\|//)wsl\$[\\/]", r"\\\\wsl.localhost\\", s, flags=re.IGNORECASE)
    s = s.replace("/", "\\")
    return re.sub(r"\\{3,}", r"\\\\", s)


def normalize_posix(p: str) -> str:
    """Display form of a POSIX path: ``/`` separators, single slashes, no trailing slash."""
    if not p:
        return ""
    s = p.replace("\\", "/")
    s = re.sub(r"/{2,}", "/", s)
    if not s.startswith("/"):
        s = "/" + s
    if len(s) > 1:
        s = s.rstrip("/") or "/"
    return s


def basename_of(p: str) -> str:
    parts = [seg for seg in re.split(r"[\\/]+", p or "") if seg]
    return parts[-1] if parts else ""


# ── Namespace conversions ───────────────────────────────────────────

def unc_to_wsl(unc_path: str) -> Optional[UncInfo]:
    """Parse ``\\\\wsl.localhost\\<Distro>\\<rest>``; None for any other shape."""
    if not unc_path:
        return None
    m = _UNC_WSL_RE.match(unc_path.strip())
    if not m:
        return None
    distro = m.group(1)
    rest = (m.group(2) or "").replace("\\", "/")
    return UncInfo(distro=distro, wsl_path=normalize_posix("/" + rest))


def win_drive_to_wsl(p: str) -> str:
    """``C:\\foo\\bar`` -> ``/mnt/c/foo/bar``; empty string if not a drive path."""
    m = _DRIVE_RE.match((p or "").strip())
    if not m:
        return ""
    rest = (m.group(2) or "").replace("\\", "/")
    return normalize_posix(f"/mnt/{m.group(1).lower()}/{rest}")


def wsl_mount_to_win(p: str) -> str:
    """``/mnt/c/foo/bar`` -> ``C:\\foo\\bar``; empty string if not a drive mount."""
    m = _MOUNT_RE.match((p or "").strip().replace("\\", "/"))
    if not m:
        return ""
    rest = re.sub(r"/+", "/", m.group(2) or "").strip("/")
    return f"{m.group(1).upper()}:\\{rest.replace('/', chr(92))}"


def win_to_wsl(win_path: str) -> str:
    """Strict Windows -> WSL conversion.

    Drive paths map onto ``/mnt/<drive>``, WSL UNC paths onto the distro's
    own namespace, and POSIX input is returned normalized. Anything else
    (plain network shares, relative paths) raises :class:`NoMappingError`.

    These rules need no running distro, so there is no distro hint here.
    Resolution through a specific distro's own view (``wslpath -a`` inside
    it) is :func:`sessionscope.wsl.win_to_wsl_async` with ``preferred_distro``.
    """
    raw = (win_path or "").strip()
    if not raw:
        raise NoMappingError(win_path)
    if is_unc_path(raw):
        info = unc_to_wsl(raw)
        if info:
            return info.wsl_path
    converted = win_drive_to_wsl(raw)
    if converted:
        return converted
    if is_posix_path(raw):
        return normalize_posix(raw)
    raise NoMappingError(win_path)


def try_win_to_wsl(win_path: str) -> str:
    """Best-effort :func:`win_to_wsl`: unmappable input comes back unchanged."""
    try:
        return win_to_wsl(win_path)
    except NoMappingError:
        logger.debug("No WSL mapping for %r", win_path)
        return win_path


def wsl_to_unc(wsl_path: str, distro: Optional[str] = None) -> str:
    """Map a WSL path to the form Windows tools can open.

    ``/mnt/<drive>/x`` is reinterpreted as the native ``<DRIVE>:\\x``; paths
    internal to the distro become ``\\\\wsl.localhost\\<Distro>\\...``.
    """
    if not wsl_path:
        return ""
    native = wsl_mount_to_win(wsl_path)
    if native:
        return native
    posix = normalize_posix(wsl_path)
    rest = posix.lstrip("/").replace("/", "\\")
    return f"\\\\wsl.localhost\\{distro or config.DEFAULT_DISTRO}\\{rest}"


# ── Canonical keys ──────────────────────────────────────────────────

def canon(p: str) -> str:
    """Lowercase comparison key, folded onto the WSL namespace.

    Never raises: input without any known shape is lowercased with ``/``
    separators. ``~`` stays ``~``.
    """
    if not p:
        return ""
    s = str(p).strip()
    if s == HOME_SENTINEL:
        return HOME_SENTINEL
    if is_unc_path(s):
        info = unc_to_wsl(s)
        if info:
            s = info.wsl_path
    elif is_drive_path(s):
        s = win_drive_to_wsl(s)
    s = s.replace("\\", "/")
    if s.startswith("//"):
        s = "//" + re.sub(r"/{2,}", "/", s[2:])
    else:
        s = re.sub(r"/{2,}", "/", s)
    if len(s) > 1:
        s = s.rstrip("/") or "/"
    return s.lower()


def canonical_project_key(win_path: str = "", wsl_path: str = "") -> str:
    """Dedup key for a project: its WSL path when known, else its Windows path."""
    if wsl_path and wsl_path.strip():
        return canon(wsl_path)
    return canon(win_path)


def dir_key_from_cwd(cwd: str) -> str:
    return canon(tidy_path_candidate(cwd))


def dir_key_of_file_path(file_path: str) -> str:
    """Directory key of a session file, used when its cwd is unknown."""
    raw = str(file_path or "")
    if "\\" in raw or is_drive_path(raw):
        parent = ntpath.dirname(raw.replace("/", "\\"))
    else:
        parent = posixpath.dirname(raw)
    return canon(parent)


def starts_with_boundary(child: str, parent: str) -> bool:
    """Path-boundary prefix test: ``/a/b`` is under ``/a``, ``/ab`` is not."""
    c = re.sub(r"/+", "/", str(child or "").replace("\\", "/"))
    p = re.sub(r"/+", "/", str(parent or "").replace("\\", "/"))
    if len(c) > 1:
        c = c.rstrip("/")
    if len(p) > 1:
        p = p.rstrip("/")
    if not c or not p:
        return False
    if c == p:
        return True
    if p == "/":
        return c.startswith("/")
    return c.startswith(p + "/")


# ── Session cwd resolution ──────────────────────────────────────────

class ResolvedPath(NamedTuple):
    win_path: str
    wsl_path: str


def resolve_cwd(
    raw: str,
    *,
    root: str = "",
    distro: Optional[str] = None,
    escaped: bool = False,
) -> Optional[ResolvedPath]:
    """Turn a recorded working directory into ``(winPath, wslPath)``.

    ``root`` is the session store the value came from and ``distro`` the WSL
    distribution owning it; a POSIX cwd read from a distro's store maps to
    that distro's UNC view. Returns None for values that are not absolute
    paths in any namespace.
    """
    value = clean_cwd_candidate(raw, escaped=escaped)
    if not value or looks_like_regex_fragment(value):
        return None

    if is_posix_path(value):
        wsl_path = normalize_posix(value)
        owner = distro
        if is_unc_path(root):
            info = unc_to_wsl(root)
            owner = (info.distro if info else None) or distro or config.DEFAULT_DISTRO
        if owner:
            win_path = wsl_to_unc(wsl_path, owner)
        else:
            win_path = wsl_mount_to_win(wsl_path)
        return ResolvedPath(win_path, wsl_path)

    if is_drive_path(value) or is_any_unc_path(value):
        wsl_path = ""
        try:
            wsl_path = normalize_posix(win_to_wsl(value))
        except NoMappingError:
            logger.debug("Keeping Windows-only cwd %r", value)
        return ResolvedPath(value, wsl_path)

    return None


def display_name(win_path: str = "", wsl_path: str = "", fallback: str = "project") -> str:
    return basename_of(win_path) or basename_of(wsl_path) or fallback
