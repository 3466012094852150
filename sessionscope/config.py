"""sessionscope configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_list(name: str) -> list[str]:
    value = os.getenv(name) or ""
    return [seg.strip() for seg in value.split(";") if seg.strip()]


# Per-installation data directory (projects.json + projects.scan.meta.json)
DATA_DIR = Path(os.getenv("SESSIONSCOPE_DATA_DIR", str(Path.home() / ".sessionscope")))
PROJECTS_FILE_NAME = "projects.json"
SCAN_META_FILE_NAME = "projects.scan.meta.json"

# Discovery tuning
EXTRA_ROOTS = _env_list("SESSIONSCOPE_EXTRA_ROOTS")
DEFAULT_DISTRO = os.getenv("SESSIONSCOPE_DEFAULT_DISTRO", "Ubuntu-24.04")
BRANCH_TIMEOUT_SECONDS = _env_int("SESSIONSCOPE_BRANCH_TIMEOUT_SECONDS", 20)
DISCOVERY_CONCURRENCY = max(1, _env_int("SESSIONSCOPE_DISCOVERY_CONCURRENCY", 8))
SCAN_DEBOUNCE_MS = _env_int("SESSIONSCOPE_SCAN_DEBOUNCE_MS", 1500)
INCLUDE_AGENT_HISTORY = _env_bool("SESSIONSCOPE_INCLUDE_AGENT_HISTORY", False)
DISCOVERY_DEBUG = _env_bool("SESSIONSCOPE_DISCOVERY_DEBUG", False)

# A directory holding one of these is flagged as a project root
MARKER_NAMES = (".codex", "codex.json")

# Session content budgets
CWD_PREFIX_BYTES = 128 * 1024
CLAUDE_SUMMARY_MAX_LINES = 400
CLAUDE_AGENT_SUMMARY_MAX_LINES = 2000
GEMINI_MAX_BYTES = 2 * 1024 * 1024
PREVIEW_MAX_CHARS = 160

# wsl.exe subprocess timeout
WSL_EXEC_TIMEOUT_SECONDS = _env_int("SESSIONSCOPE_WSL_EXEC_TIMEOUT_SECONDS", 10)

# Provider home directories, relative to a user's home
CODEX_DIR_NAME = ".codex"
CLAUDE_DIR_NAME = ".claude"
GEMINI_DIR_NAME = ".gemini"

# Observability
OTEL_ENABLED = _env_bool("SESSIONSCOPE_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("SESSIONSCOPE_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("SESSIONSCOPE_OTEL_SERVICE_NAME", "sessionscope")
PROM_PORT = _env_int("SESSIONSCOPE_PROM_PORT", 0)
