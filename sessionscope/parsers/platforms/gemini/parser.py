"""Gemini CLI sessions: ``<gemini home>/tmp/<projectHash>/chats/session-*.json``.

Gemini files sessions under the SHA-256 of the project path and usually does
not record the path itself, so ``cwd`` is only kept when one is recovered
from the content and its hash candidates contain the directory hash.
"""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Optional

from sessionscope import config
from sessionscope.date_utils import file_mtime_ms, iso_to_epoch_ms
from sessionscope.hashing import (
    derive_hash_candidates,
    extract_project_hash_from_path,
    is_project_hash_dir_name,
)
from sessionscope.models import SessionDetail, SessionSummary
from sessionscope.parsers.common import (
    clamp_text,
    filter_preview_text,
    pick_str,
    read_prefix,
    title_from_filename,
)
from sessionscope.paths import clean_cwd_candidate, dir_key_from_cwd, dir_key_of_file_path

logger = logging.getLogger("sessionscope.parsers")

PROVIDER_ID = "gemini"

_CWD_KEYS = ("cwd", "projectDir", "project_dir", "workingDirectory", "working_dir")
_TEXT_PATH_PATTERNS = (
    re.compile(r"(/mnt/[a-zA-Z]/[^\s\"'<>]+)"),
    re.compile(r"([a-zA-Z]:\\[^\r\n\t\"'<>{}|?*]+)"),
    re.compile(r"(/(?:home|Users|root)/[^\s\"'<>]+)"),
)
_PREFIX_FIELD_RE = r'"{key}"\s*:\s*"((?:[^"\\]|\\.)*)"'


def _is_session_file(name: str) -> bool:
    lower = name.lower()
    return lower.startswith("session-") and lower.endswith(".json")


def _session_files_in(directory: str) -> list[str]:
    try:
        with os.scandir(directory) as it:
            return sorted(e.path for e in it if e.is_file() and _is_session_file(e.name))
    except OSError:
        return []


def discover_session_files(root: str, **_: Any) -> list[str]:
    out: list[str] = []
    if not root or not os.path.isdir(root):
        return out
    try:
        with os.scandir(root) as it:
            project_dirs = sorted(e.path for e in it if e.is_dir() and is_project_hash_dir_name(e.name))
    except OSError:
        return out
    for project_dir in project_dirs:
        out.extend(_session_files_in(os.path.join(project_dir, "chats")))
        out.extend(_session_files_in(project_dir))
    return out


def project_hash_of(file_path: str) -> Optional[str]:
    found = extract_project_hash_from_path(file_path)
    if found:
        return found
    parent = os.path.dirname(file_path)
    if os.path.basename(parent).lower() == "chats":
        parent = os.path.dirname(parent)
    name = os.path.basename(parent)
    return name.lower() if is_project_hash_dir_name(name) else None


def _load(file_path: str) -> Any:
    try:
        size = os.path.getsize(file_path)
    except OSError:
        return None
    if size > config.GEMINI_MAX_BYTES:
        return None
    try:
        with open(file_path, "r", encoding="utf-8", errors="replace") as fh:
            return json.load(fh)
    except (OSError, ValueError, RecursionError) as exc:
        logger.debug("Unreadable Gemini session %s: %s", file_path, exc)
        return None


def _items_and_meta(data: Any) -> tuple[list, dict]:
    meta: dict[str, Any] = {}
    if isinstance(data, list):
        if data and isinstance(data[0], dict):
            meta["firstTS"] = data[0].get("timestamp") or data[0].get("ts")
        return data, meta
    if isinstance(data, dict):
        meta["startTime"] = data.get("startTime") or data.get("startedAt") or data.get("start_time")
        meta["lastUpdated"] = data.get("lastUpdated") or data.get("updatedAt") or data.get("last_updated")
        for key in ("messages", "history", "items"):
            if isinstance(data.get(key), list):
                return data[key], meta
    return [], meta


def _role(item: Any) -> str:
    if not isinstance(item, dict):
        return ""
    raw = str(item.get("role") or item.get("type") or item.get("actor") or "").lower().strip()
    if raw in ("user", "human", "input"):
        return "user"
    if raw in ("assistant", "model", "gemini", "output"):
        return "assistant"
    return raw


def _text(item: Any) -> str:
    if isinstance(item, str):
        return item.strip()
    if not isinstance(item, dict):
        return ""
    for key in ("text", "content", "message"):
        value = item.get(key)
        if isinstance(value, str):
            return value.strip()
    parts = item.get("content") if isinstance(item.get("content"), list) else item.get("parts")
    if isinstance(parts, list):
        texts = []
        for part in parts:
            if isinstance(part, str) and part.strip():
                texts.append(part.strip())
            elif isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip():
                texts.append(part["text"].strip())
        return "\n".join(texts)
    return ""


def _path_from_text(text: str) -> Optional[str]:
    for pattern in _TEXT_PATH_PATTERNS:
        m = pattern.search(text or "")
        if m:
            return clean_cwd_candidate(m.group(1)) or None
    return None


def _cwd_from_content(data: Any, items: list) -> Optional[str]:
    if isinstance(data, dict):
        for key in _CWD_KEYS:
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return clean_cwd_candidate(value) or None
    for item in items[:30]:
        if isinstance(item, dict):
            for key in _CWD_KEYS:
                value = item.get(key)
                if isinstance(value, str) and value.strip():
                    return clean_cwd_candidate(value) or None
        found = _path_from_text(_text(item))
        if found:
            return found
    return None


def verified_cwd(candidate: Optional[str], project_hash: Optional[str]) -> Optional[str]:
    """Keep ``candidate`` only when it hashes to the session's project directory."""
    if not candidate:
        return None
    if not project_hash:
        return candidate
    return candidate if project_hash.lower() in derive_hash_candidates(candidate) else None


def _prefix_field(prefix: str, key: str) -> Optional[str]:
    m = re.search(_PREFIX_FIELD_RE.format(key=re.escape(key)), prefix)
    if not m:
        return None
    try:
        return json.loads(f'"{m.group(1)}"')
    except ValueError:
        return m.group(1)


def extract_cwd(file_path: str) -> Optional[str]:
    project_hash = project_hash_of(file_path)
    data = _load(file_path)
    if data is None:
        prefix = read_prefix(file_path, config.CWD_PREFIX_BYTES)
        candidate = next((v for v in (_prefix_field(prefix, k) for k in _CWD_KEYS) if v), None)
        return verified_cwd(clean_cwd_candidate(candidate) if candidate else None, project_hash)
    items, _ = _items_and_meta(data)
    return verified_cwd(_cwd_from_content(data, items), project_hash)


def _summarize(file_path: str) -> Optional[tuple[SessionSummary, int]]:
    project_hash = project_hash_of(file_path)
    data = _load(file_path)
    items: list = []
    if data is not None:
        items, meta = _items_and_meta(data)
        session_id = pick_str(data.get("sessionId")) if isinstance(data, dict) else None
        raw_date = pick_str(meta.get("lastUpdated"), meta.get("startTime"), meta.get("firstTS"))
        cwd = verified_cwd(_cwd_from_content(data, items), project_hash)
        preview = ""
        for item in items:
            if _role(item) == "user":
                preview = clamp_text(filter_preview_text(_text(item)))
                if preview:
                    break
    else:
        prefix = read_prefix(file_path, config.CWD_PREFIX_BYTES)
        if not prefix:
            return None
        session_id = _prefix_field(prefix, "sessionId")
        raw_date = _prefix_field(prefix, "lastUpdated") or _prefix_field(prefix, "startTime")
        candidate = next((v for v in (_prefix_field(prefix, k) for k in _CWD_KEYS) if v), None)
        cwd = verified_cwd(clean_cwd_candidate(candidate) if candidate else None, project_hash)
        preview = ""

    stem = os.path.splitext(os.path.basename(file_path))[0]
    summary = SessionSummary(
        id=session_id or stem,
        providerId=PROVIDER_ID,
        title=preview or title_from_filename(file_path),
        date=file_mtime_ms(file_path) or iso_to_epoch_ms(raw_date),
        filePath=file_path,
        dirKey=dir_key_from_cwd(cwd) if cwd else dir_key_of_file_path(file_path),
        rawDate=raw_date,
        preview=preview or None,
        cwd=cwd,
        projectHash=project_hash,
        resumeId=session_id,
    )
    return summary, sum(1 for item in items if _role(item) in ("user", "assistant"))


def parse_summary(file_path: str) -> Optional[SessionSummary]:
    result = _summarize(file_path)
    return result[0] if result else None


def parse_details(file_path: str) -> Optional[SessionDetail]:
    result = _summarize(file_path)
    if result is None:
        return None
    summary, message_count = result
    return SessionDetail(**summary.model_dump(), messageCount=message_count, skippedLines=0)
