"""Shared timestamp helpers (epoch milliseconds and ISO strings)."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y/%m/%d %H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def iso_to_epoch_ms(value: Any) -> int:
    """Epoch milliseconds for an ISO-ish timestamp or a numeric epoch; 0 if unparseable."""
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        number = float(value)
        # seconds vs milliseconds
        return int(number * 1000) if number < 1e11 else int(number)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = _parse_datetime_token(value)
        if dt is None:
            return 0
    else:
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def file_mtime_ms(path: Path | str) -> int:
    try:
        return Path(path).stat().st_mtime_ns // 1_000_000
    except OSError:
        return 0
