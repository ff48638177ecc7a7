"""Observability helpers."""

from solartrack.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_sync,
    record_transitions,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_sync",
    "record_transitions",
]
