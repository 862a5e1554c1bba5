"""Structured JSONL run events for harvest and crawl runs.

Each line is one JSON object with a fixed set of top-level fields. The
schema major is pinned; readers reject lines written under another major.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import json
from pathlib import Path
import re
from typing import Any

from xui_harvester.errors import DiagnosticsError
from xui_harvester.logging import get_logger

logger = get_logger(__name__)

RUN_EVENT_SCHEMA_VERSION = "v1"
RUN_EVENT_COMPATIBILITY_NOTES = (
    "Top-level fields are append-only within a schema major version. "
    "Consumers must ignore unknown top-level fields and unknown payload keys. "
    "Removing a field or changing its type requires a schema major bump."
)

_SCHEMA_VERSION_RE = re.compile(r"^v?(?P<major>\d+)(?:[._-]\d+)?$")


class RunEventType(str, Enum):
    RUN_STARTED = "run_started"
    RUN_CANCELLED = "run_cancelled"
    FINALIZED = "finalized"
    CRAWL_HANDOFF = "crawl_handoff"
    QUEUE_BUILT = "queue_built"
    CRAWL_ADVANCED = "crawl_advanced"
    CRAWL_STUCK = "crawl_stuck"
    CRAWL_CANCELLED = "crawl_cancelled"


# field name -> (accepted types, nullable)
_FIELD_TYPES: dict[str, tuple[type, bool]] = {
    "schema_version": (str, False),
    "event_type": (str, False),
    "occurred_at": (str, False),
    "run_id": (str, False),
    "page_url": (str, True),
    "payload": (dict, False),
}


@dataclass(frozen=True)
class RunEvent:
    event_type: RunEventType
    run_id: str
    occurred_at: datetime
    page_url: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    schema_version: str = RUN_EVENT_SCHEMA_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "event_type": self.event_type.value,
            "occurred_at": self.occurred_at.isoformat(),
            "run_id": self.run_id,
            "page_url": self.page_url,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunEvent:
        validate_run_event(data)
        try:
            occurred_at = datetime.fromisoformat(data["occurred_at"])
        except ValueError as exc:
            raise DiagnosticsError(f"occurred_at is not an ISO timestamp: {data['occurred_at']!r}.") from exc
        return cls(
            event_type=_coerce_event_type(data["event_type"]),
            run_id=data["run_id"],
            occurred_at=occurred_at,
            page_url=data["page_url"],
            payload=dict(data["payload"]),
            schema_version=data["schema_version"],
        )


class JsonlEventLogger:
    """Append one validated JSON line per run event."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def append(
        self,
        event_type: RunEventType | str,
        *,
        run_id: str,
        page_url: str | None = None,
        payload: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> dict[str, Any]:
        event = build_run_event(
            event_type,
            run_id=run_id,
            page_url=page_url,
            payload=payload,
            occurred_at=occurred_at,
        )
        with self._path.open("a", encoding="utf-8") as stream:
            stream.write(json.dumps(event, sort_keys=True))
            stream.write("\n")
        return event


def safe_append(
    event_logger: JsonlEventLogger | None,
    event_type: RunEventType | str,
    *,
    run_id: str,
    page_url: str | None = None,
    payload: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Append when a logger is configured; failures are logged, never raised."""
    if event_logger is None:
        return None
    try:
        return event_logger.append(event_type, run_id=run_id, page_url=page_url, payload=payload)
    except (DiagnosticsError, OSError) as exc:
        logger.warning("Could not record %s event: %s", getattr(event_type, "value", event_type), exc)
        return None


def build_run_event(
    event_type: RunEventType | str,
    *,
    run_id: str,
    page_url: str | None = None,
    payload: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
) -> dict[str, Any]:
    """Build a serialized event; payload values that are not JSON types become strings."""
    if payload is not None and not isinstance(payload, dict):
        raise DiagnosticsError("payload must be a dictionary.")
    if not run_id.strip():
        raise DiagnosticsError("run_id must be non-empty.")

    moment = occurred_at or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    url = page_url.strip() if isinstance(page_url, str) else ""
    event = RunEvent(
        event_type=_coerce_event_type(event_type),
        run_id=run_id.strip(),
        occurred_at=moment,
        page_url=url or None,
        payload=json.loads(json.dumps(payload or {}, default=str)),
    )
    serialized = event.to_dict()
    validate_run_event(serialized)
    return serialized


def read_run_events(path: str | Path) -> Iterator[RunEvent]:
    """Yield events from a JSONL log, skipping blank lines."""
    with Path(path).open(encoding="utf-8") as stream:
        for line_number, line in enumerate(stream, start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as exc:
                raise DiagnosticsError(f"Line {line_number} of '{path}' is not JSON: {exc.msg}.") from exc
            if not isinstance(data, dict):
                raise DiagnosticsError(f"Line {line_number} of '{path}' is not a JSON object.")
            yield RunEvent.from_dict(data)


def validate_run_event(event: dict[str, Any]) -> None:
    for name, (expected, nullable) in _FIELD_TYPES.items():
        if name not in event:
            raise DiagnosticsError(f"Run event missing required field '{name}'.")
        value = event[name]
        if value is None and nullable:
            continue
        if not isinstance(value, expected):
            raise DiagnosticsError(f"Run event field '{name}' must be {expected.__name__}.")
        if expected is str and not value.strip():
            raise DiagnosticsError(f"Run event field '{name}' must be non-empty.")
    ensure_schema_compatible(event["schema_version"])


def ensure_schema_compatible(schema_version: str) -> None:
    current_major = _schema_major(RUN_EVENT_SCHEMA_VERSION)
    incoming_major = _schema_major(schema_version)
    if incoming_major != current_major:
        raise DiagnosticsError(
            f"Incompatible run event schema '{schema_version}'. Expected major '{current_major}'."
        )


def _schema_major(version: str) -> str:
    match = _SCHEMA_VERSION_RE.match(version.strip().lower())
    if match is None:
        raise DiagnosticsError(f"Invalid schema version '{version}'. Use forms like 'v1' or '1.0'.")
    return match.group("major")


def _coerce_event_type(value: RunEventType | str) -> RunEventType:
    if isinstance(value, RunEventType):
        return value
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise DiagnosticsError("event_type must be non-empty.")
    try:
        return RunEventType(name)
    except ValueError:
        raise DiagnosticsError(f"Unknown run event type '{name}'.") from None
