"""Codex CLI session files: ``sessions/YYYY/MM/DD/rollout-*.jsonl``.

The first line carries the session header, either modern
(``{"type": "session_meta", "payload": {"id", "timestamp", "cwd", ...}}``)
or legacy (``{"id", "timestamp", "instructions", ...}``). Conversation lines
are ``response_item`` records wrapping a ``message`` payload, or bare
``message`` records in the legacy layout.
"""
from __future__ import annotations

import os
import re
from typing import Any, Optional

from sessionscope import config
from sessionscope.date_utils import file_mtime_ms, iso_to_epoch_ms
from sessionscope.models import SessionDetail, SessionSummary
from sessionscope.parsers.common import (
    clamp_text,
    complete_lines,
    cwd_from_text,
    filter_preview_text,
    is_context_block,
    iter_jsonl,
    looks_numeric_only,
    parse_json_line,
    pick_str,
    read_prefix,
    text_from_content,
    title_from_filename,
)
from sessionscope.paths import clean_cwd_candidate, dir_key_from_cwd, dir_key_of_file_path

PROVIDER_ID = "codex"
SESSION_SUFFIX = ".jsonl"

_CWD_KEYS = ("cwd", "working_dir")
_STRICT_PATH_RE = re.compile(
    r"(/mnt/[a-zA-Z]/[^\s\"']+|/home/[^\s\"']+|[A-Za-z]:\\\\?[^\s\"']+|\\\\\\\\wsl\.localhost\\\\[^\\]+\\\\[^\s\"']+)"
)


def discover_session_files(root: str, **_: Any) -> list[str]:
    """Every ``*.jsonl`` under ``root``, newest day directory first."""
    out: list[str] = []
    if not root or not os.path.isdir(root):
        return out
    for dirpath, dirnames, filenames in os.walk(root, onerror=lambda exc: None):
        dirnames.sort(reverse=True)
        for name in sorted(filenames, reverse=True):
            if name.lower().endswith(SESSION_SUFFIX):
                out.append(os.path.join(dirpath, name))
    return out


def _header(obj: Optional[dict]) -> dict:
    if not obj:
        return {}
    payload = obj.get("payload")
    if obj.get("type") == "session_meta" and isinstance(payload, dict):
        return payload
    return obj


def _structured_cwd(obj: Optional[dict]) -> Optional[str]:
    if not obj:
        return None
    payload = obj.get("payload") if isinstance(obj.get("payload"), dict) else {}
    for source in (obj, payload):
        for key in _CWD_KEYS:
            value = source.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return None


def extract_cwd(file_path: str) -> Optional[str]:
    """Recorded working directory, tidied; None if the prefix holds none."""
    prefix = read_prefix(file_path, config.CWD_PREFIX_BYTES)
    if not prefix:
        return None
    for line in complete_lines(prefix):
        value = _structured_cwd(parse_json_line(line))
        if value:
            cleaned = clean_cwd_candidate(value)
            if cleaned:
                return cleaned
    marker = cwd_from_text(prefix)
    if marker:
        return clean_cwd_candidate(marker, escaped=True) or None
    return None


def first_line_candidates(file_path: str) -> list[str]:
    """Path-like values from the header line only: cwd fields, ``git.repo`` and strict path matches."""
    prefix = read_prefix(file_path, config.CWD_PREFIX_BYTES)
    lines = complete_lines(prefix)
    if not lines:
        return []
    first = lines[0]
    candidates: list[str] = []
    obj = parse_json_line(first)
    if obj:
        header = _header(obj)
        for key in _CWD_KEYS:
            value = header.get(key) or obj.get(key)
            if isinstance(value, str) and value.strip():
                candidates.append(clean_cwd_candidate(value))
        git = header.get("git")
        if isinstance(git, dict) and isinstance(git.get("repo"), str):
            candidates.append(clean_cwd_candidate(git["repo"]))
    for m in _STRICT_PATH_RE.finditer(first):
        candidates.append(clean_cwd_candidate(m.group(0), escaped=True))
    return [c for c in dict.fromkeys(candidates) if c]


def _message_of(obj: dict) -> Optional[tuple[str, Any]]:
    payload = obj.get("payload")
    if obj.get("type") == "response_item" and isinstance(payload, dict) and payload.get("type") == "message":
        return str(payload.get("role") or "").lower(), payload.get("content")
    if obj.get("type") == "message" or obj.get("record_type") == "message":
        return str(obj.get("role") or "").lower(), obj.get("content")
    return None


def _resume_id(header_obj: Optional[dict]) -> Optional[str]:
    if not header_obj:
        return None
    if header_obj.get("type") == "session_meta" and isinstance(header_obj.get("payload"), dict):
        return pick_str(header_obj["payload"].get("id"))
    return pick_str(header_obj.get("id"))


def parse_summary(file_path: str) -> Optional[SessionSummary]:
    prefix = read_prefix(file_path, config.CWD_PREFIX_BYTES)
    lines = complete_lines(prefix)
    if not lines:
        return None

    header_obj = parse_json_line(lines[0])
    header = _header(header_obj)
    resume_id = _resume_id(header_obj)
    raw_date = pick_str(header.get("timestamp"), (header_obj or {}).get("timestamp"))

    user_text = ""
    assistant_text = ""
    for line in lines[1:200]:
        obj = parse_json_line(line)
        if not obj:
            continue
        message = _message_of(obj)
        if message is None:
            continue
        role, content = message
        text = text_from_content(content)
        if not text or is_context_block(text):
            continue
        if role == "user" and not user_text:
            user_text = filter_preview_text(text)
        elif role == "assistant" and not assistant_text:
            assistant_text = filter_preview_text(text)
        if user_text:
            break

    preview = clamp_text(user_text) or None
    title = preview or clamp_text(assistant_text)
    if not title or looks_numeric_only(title):
        title = title_from_filename(file_path)

    cwd = extract_cwd(file_path)
    stem = os.path.splitext(os.path.basename(file_path))[0]
    return SessionSummary(
        id=resume_id or stem,
        providerId=PROVIDER_ID,
        title=title,
        date=file_mtime_ms(file_path) or iso_to_epoch_ms(raw_date),
        filePath=file_path,
        dirKey=dir_key_from_cwd(cwd) if cwd else dir_key_of_file_path(file_path),
        rawDate=raw_date,
        preview=preview,
        cwd=cwd,
        resumeId=resume_id,
    )


def parse_details(file_path: str) -> Optional[SessionDetail]:
    summary = parse_summary(file_path)
    if summary is None:
        return None
    message_count = 0
    skipped = 0
    try:
        for obj in iter_jsonl(file_path):
            if obj is None:
                skipped += 1
                continue
            if _message_of(obj) is not None:
                message_count += 1
    except OSError:
        return None
    return SessionDetail(**summary.model_dump(), messageCount=message_count, skippedLines=skipped)
