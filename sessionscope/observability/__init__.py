"""Observability helpers."""

from sessionscope.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_discovery,
    record_fast_path,
    record_query,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_discovery",
    "record_fast_path",
    "record_query",
]
