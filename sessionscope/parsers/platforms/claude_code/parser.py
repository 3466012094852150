"""Claude Code transcripts: ``<claude home>/projects/<slug>/<session>.jsonl``.

Each line is one event; user/assistant events carry ``cwd``, ``sessionId``
and ``timestamp`` next to a ``message`` object.
"""
from __future__ import annotations

import os
from typing import Any, Optional

from sessionscope import config
from sessionscope.date_utils import file_mtime_ms, iso_to_epoch_ms
from sessionscope.models import SessionDetail, SessionSummary
from sessionscope.parsers.common import (
    clamp_text,
    filter_preview_text,
    is_context_block,
    iter_jsonl,
    pick_str,
    text_from_content,
    title_from_filename,
)
from sessionscope.paths import clean_cwd_candidate, dir_key_from_cwd, dir_key_of_file_path

PROVIDER_ID = "claude"
SESSION_SUFFIXES = (".jsonl", ".ndjson")
_SKIP_DIRS = {"node_modules", ".git"}


def is_agent_history_file(name: str) -> bool:
    lower = (name or "").lower()
    return lower.startswith("agent-") and lower.endswith(".jsonl")


def discover_session_files(root: str, *, include_agent_history: bool = False, **_: Any) -> list[str]:
    """Transcripts under ``root/projects`` (or ``root`` itself when it has no ``projects``)."""
    out: list[str] = []
    if not root or not os.path.isdir(root):
        return out
    projects_root = os.path.join(root, "projects")
    scan_root = projects_root if os.path.isdir(projects_root) else root

    for dirpath, dirnames, filenames in os.walk(scan_root, onerror=lambda exc: None):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        for name in sorted(filenames):
            lower = name.lower()
            if not include_agent_history and is_agent_history_file(lower):
                continue
            if lower.endswith(SESSION_SUFFIXES):
                out.append(os.path.join(dirpath, name))
    return out


def _max_lines(file_path: str) -> int:
    if is_agent_history_file(os.path.basename(file_path)):
        return config.CLAUDE_AGENT_SUMMARY_MAX_LINES
    return config.CLAUDE_SUMMARY_MAX_LINES


def extract_cwd(file_path: str) -> Optional[str]:
    try:
        for obj in iter_jsonl(file_path, max_lines=_max_lines(file_path)):
            if not obj:
                continue
            value = obj.get("cwd")
            if isinstance(value, str) and value.strip():
                cleaned = clean_cwd_candidate(value)
                if cleaned:
                    return cleaned
    except OSError:
        return None
    return None


def _user_text(obj: dict) -> str:
    if obj.get("type") != "user" or obj.get("isMeta"):
        return ""
    message = obj.get("message")
    content: Any = message.get("content") if isinstance(message, dict) else message
    if isinstance(content, list) and any(
        isinstance(part, dict) and part.get("type") == "tool_result" for part in content
    ):
        return ""
    return text_from_content(content)


def parse_summary(file_path: str) -> Optional[SessionSummary]:
    session_id: Optional[str] = None
    raw_date: Optional[str] = None
    cwd: Optional[str] = None
    preview = ""
    seen_any = False
    try:
        for obj in iter_jsonl(file_path, max_lines=_max_lines(file_path)):
            if not obj:
                continue
            seen_any = True
            session_id = session_id or pick_str(obj.get("sessionId"))
            raw_date = raw_date or pick_str(obj.get("timestamp"))
            if cwd is None and isinstance(obj.get("cwd"), str):
                cwd = clean_cwd_candidate(obj["cwd"]) or None
            if not preview:
                text = _user_text(obj)
                if text and not is_context_block(text):
                    preview = clamp_text(filter_preview_text(text))
            if session_id and raw_date and cwd and preview:
                break
    except OSError:
        return None
    if not seen_any:
        return None

    stem = os.path.splitext(os.path.basename(file_path))[0]
    return SessionSummary(
        id=session_id or stem,
        providerId=PROVIDER_ID,
        title=preview or title_from_filename(file_path),
        date=file_mtime_ms(file_path) or iso_to_epoch_ms(raw_date),
        filePath=file_path,
        dirKey=dir_key_from_cwd(cwd) if cwd else dir_key_of_file_path(file_path),
        rawDate=raw_date,
        preview=preview or None,
        cwd=cwd,
        resumeId=session_id,
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
            elif obj.get("type") in ("user", "assistant"):
                message_count += 1
    except OSError:
        return None
    return SessionDetail(**summary.model_dump(), messageCount=message_count, skippedLines=skipped)
