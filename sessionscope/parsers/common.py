"""Helpers shared by the provider session parsers."""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Iterator, Optional

from sessionscope import config

logger = logging.getLogger("sessionscope.parsers")

CWD_TAG_RE = re.compile(r"<cwd>\s*([^<]+?)\s*</cwd>", re.IGNORECASE)
CWD_LINE_RE = re.compile(r"Current\s+working\s+directory:\s*([^\r\n\"]+)", re.IGNORECASE)

_FILENAME_STAMP_RE = re.compile(r"(\d{4}-\d{2}-\d{2})[T_ ](\d{2})[:\-](\d{2})[:\-](\d{2})")
_NUMERIC_ONLY_RE = re.compile(r"^[+\-]?[0-9]+(?:\.[0-9]+)?$")
_DATE_ONLY_RE = re.compile(r"^\d{4}[-/]\d{1,2}[-/]\d{1,2}(?:[ T]\d{1,2}:\d{2}(?::\d{2})?)?$")
_CODE_FENCE_RE = re.compile(r"```[\s\S]*?```")

_PATH_LINE_PATTERNS = (
    re.compile(r"^file:/+(?:[A-Za-z]:[\\/]|wsl\.localhost/|mnt/[a-zA-Z]/)", re.IGNORECASE),
    re.compile(r"^[A-Za-z]:[\\/]"),
    re.compile(r"^\\\\wsl(?:\.localhost|\$)\\[^\\\s]+\\", re.IGNORECASE),
    re.compile(r"^//wsl\.localhost/[^\s/]+/", re.IGNORECASE),
    re.compile(r"^/"),
    re.compile(r"^\.{1,2}[\\/]"),
    re.compile(r"^[\w.\-]+(?:[\\/][\w.\-]+)+$"),
)


def read_prefix(path: str, max_bytes: int = config.CWD_PREFIX_BYTES) -> str:
    """First ``max_bytes`` of a file decoded as UTF-8; empty string if unreadable."""
    try:
        with open(path, "rb") as fh:
            data = fh.read(max_bytes)
    except OSError as exc:
        logger.debug("Cannot read %s: %s", path, exc)
        return ""
    return data.decode("utf-8", errors="replace")


def complete_lines(prefix: str) -> list[str]:
    """Lines of a prefix read; a trailing partial line is dropped unless it is the only one."""
    lines = prefix.splitlines()
    if len(lines) > 1 and not prefix.endswith(("\n", "\r")):
        lines = lines[:-1]
    return [line for line in lines if line.strip()]


def parse_json_line(line: str) -> Optional[dict]:
    try:
        value = json.loads(line)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def iter_jsonl(path: str, max_lines: Optional[int] = None) -> Iterator[Optional[dict]]:
    """Yield each non-blank line parsed as a JSON object, or None for a malformed line."""
    with open(path, "r", encoding="utf-8", errors="replace") as fh:
        count = 0
        for line in fh:
            if not line.strip():
                continue
            yield parse_json_line(line)
            count += 1
            if max_lines is not None and count >= max_lines:
                return


def cwd_from_text(text: str) -> Optional[str]:
    """``<cwd>...</cwd>`` or ``Current working directory: ...`` marker value, raw."""
    if not text:
        return None
    m = CWD_TAG_RE.search(text) or CWD_LINE_RE.search(text)
    if m and m.group(1).strip():
        return m.group(1)
    return None


def text_from_content(content: Any) -> str:
    """First useful text from a message ``content`` (string or list of parts)."""
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        for part in content:
            if isinstance(part, str) and part.strip():
                return part.strip()
            if not isinstance(part, dict):
                continue
            for key in ("text", "input_text", "output_text", "code"):
                value = part.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
    return ""


def _strip_wrapping(value: str) -> str:
    text = (value or "").strip()
    for ch in ("`", '"', "'"):
        if len(text) >= 2 and text.startswith(ch) and text.endswith(ch):
            text = text[1:-1].strip()
    return text


def is_path_line(line: str) -> bool:
    text = _strip_wrapping(line)
    if not text:
        return False
    return any(pattern.match(text) for pattern in _PATH_LINE_PATTERNS)


def filter_preview_text(raw: str) -> str:
    """First line of ``raw`` that is neither blank nor a bare path."""
    for line in re.split(r"\r?\n", raw or ""):
        if not line.strip() or is_path_line(line):
            continue
        return _strip_wrapping(line)
    return ""


def clamp_text(text: str, max_chars: int = config.PREVIEW_MAX_CHARS) -> str:
    s = _CODE_FENCE_RE.sub("", str(text or ""))
    s = re.sub(r"[\r\n]+", " ", s)
    s = re.sub(r"\s{2,}", " ", s).strip()
    if not s:
        return ""
    return s if len(s) <= max_chars else s[: max_chars - 1] + "…"


def looks_numeric_only(text: str) -> bool:
    t = (text or "").strip()
    if not t:
        return True
    return bool(_NUMERIC_ONLY_RE.match(t) or _DATE_ONLY_RE.match(t))


def is_context_block(text: str) -> bool:
    """Injected context messages (``<environment_context>``, ``<user_instructions>``, ...)."""
    t = (text or "").lstrip()
    return t.startswith("<") and bool(re.match(r"^<[a-z_\-]+>", t, re.IGNORECASE))


def title_from_filename(file_path: str) -> str:
    base = os.path.basename(file_path)
    stem = re.sub(r"\.(jsonl|ndjson|json)$", "", base, flags=re.IGNORECASE)
    m = _FILENAME_STAMP_RE.search(stem)
    if m:
        return f"{m.group(1)} {m.group(2)}:{m.group(3)}:{m.group(4)}"
    return stem or base


def pick_str(*values: Any) -> Optional[str]:
    """First non-blank string (or finite number rendered as a string)."""
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return None
