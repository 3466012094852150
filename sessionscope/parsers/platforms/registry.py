"""Session parser registry for provider-specific implementations."""
from __future__ import annotations

import logging
from types import ModuleType
from typing import Optional

from sessionscope.models import SessionDetail, SessionSummary
from sessionscope.parsers.platforms.claude_code import parser as claude_code_parser
from sessionscope.parsers.platforms.codex import parser as codex_parser
from sessionscope.parsers.platforms.gemini import parser as gemini_parser

logger = logging.getLogger("sessionscope.parsers")

_PARSERS: dict[str, ModuleType] = {
    codex_parser.PROVIDER_ID: codex_parser,
    claude_code_parser.PROVIDER_ID: claude_code_parser,
    gemini_parser.PROVIDER_ID: gemini_parser,
}

PROVIDER_IDS: tuple[str, ...] = tuple(_PARSERS)


def get_parser(provider_id: str) -> ModuleType:
    parser = _PARSERS.get((provider_id or "").lower())
    if parser is None:
        raise KeyError(f"unknown session provider: {provider_id!r}")
    return parser


def discover_session_files(provider_id: str, root: str, *, include_agent_history: bool = False) -> list[str]:
    return get_parser(provider_id).discover_session_files(root, include_agent_history=include_agent_history)


def extract_cwd(provider_id: str, file_path: str) -> Optional[str]:
    return get_parser(provider_id).extract_cwd(file_path)


def parse_summary(provider_id: str, file_path: str) -> Optional[SessionSummary]:
    """Parse a session file's summary by delegating to the provider's parser.

    Any unexpected parser failure is logged and treated as an unparseable file.
    """
    try:
        return get_parser(provider_id).parse_summary(file_path)
    except (OSError, ValueError, RecursionError) as exc:
        logger.debug("Failed to summarize %s session %s: %s", provider_id, file_path, exc)
        return None


def parse_details(provider_id: str, file_path: str) -> Optional[SessionDetail]:
    try:
        return get_parser(provider_id).parse_details(file_path)
    except (OSError, ValueError, RecursionError) as exc:
        logger.debug("Failed to parse %s session %s: %s", provider_id, file_path, exc)
        return None


def provider_for_file(file_path: str) -> Optional[str]:
    """Best guess of the provider that wrote ``file_path`` from its shape."""
    lower = (file_path or "").replace("\\", "/").lower()
    name = lower.rsplit("/", 1)[-1]
    if name.endswith(".json") and name.startswith("session-"):
        return gemini_parser.PROVIDER_ID
    if name.endswith(".ndjson") or ("/.claude/" in lower and name.endswith(".jsonl")):
        return claude_code_parser.PROVIDER_ID
    if name.endswith(".jsonl"):
        return codex_parser.PROVIDER_ID
    return None
