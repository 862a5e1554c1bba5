"""Run event logging."""

from .events import (
    RUN_EVENT_SCHEMA_VERSION,
    JsonlEventLogger,
    RunEvent,
    RunEventType,
    build_run_event,
    ensure_schema_compatible,
    read_run_events,
    safe_append,
    validate_run_event,
)

__all__ = [
    "RUN_EVENT_SCHEMA_VERSION",
    "JsonlEventLogger",
    "RunEvent",
    "RunEventType",
    "build_run_event",
    "ensure_schema_compatible",
    "read_run_events",
    "safe_append",
    "validate_run_event",
]
