"""Structured run event schema and compatibility behavior."""

from __future__ import annotations

from datetime import datetime
import json
from pathlib import Path

import pytest

from xui_harvester.diagnostics.events import (
    RUN_EVENT_COMPATIBILITY_NOTES,
    RUN_EVENT_SCHEMA_VERSION,
    JsonlEventLogger,
    RunEventType,
    build_run_event,
    ensure_schema_compatible,
    read_run_events,
    safe_append,
    validate_run_event,
)
from xui_harvester.errors import DiagnosticsError


def test_build_run_event_includes_schema_version_and_required_fields() -> None:
    event = build_run_event(
        "finalized",
        run_id="harvest",
        page_url=" https://x.com/alice/with_replies ",
        payload={"reason": "stalled", "rows": 4},
        occurred_at=datetime(2026, 3, 1, 12, 0),
    )
    assert event["schema_version"] == RUN_EVENT_SCHEMA_VERSION
    assert event["event_type"] == "finalized"
    assert event["run_id"] == "harvest"
    assert event["page_url"] == "https://x.com/alice/with_replies"
    assert event["occurred_at"] == "2026-03-01T12:00:00+00:00"
    assert event["payload"] == {"reason": "stalled", "rows": 4}
    assert "append-only" in RUN_EVENT_COMPATIBILITY_NOTES


def test_build_run_event_rejects_blank_identifiers() -> None:
    with pytest.raises(DiagnosticsError, match="event_type"):
        build_run_event("  ", run_id="harvest")
    with pytest.raises(DiagnosticsError, match="run_id"):
        build_run_event("finalized", run_id="")


def test_validate_run_event_rejects_missing_required_fields() -> None:
    with pytest.raises(DiagnosticsError, match="missing required field 'run_id'"):
        validate_run_event(
            {
                "schema_version": "v1",
                "event_type": "finalized",
                "occurred_at": "2026-03-01T00:00:00+00:00",
                "page_url": None,
                "payload": {},
            }
        )


def test_ensure_schema_compatible_accepts_current_major_forms() -> None:
    ensure_schema_compatible("v1")
    ensure_schema_compatible("1.1")


def test_ensure_schema_compatible_rejects_incompatible_or_malformed() -> None:
    with pytest.raises(DiagnosticsError, match="Incompatible run event schema"):
        ensure_schema_compatible("v2")
    with pytest.raises(DiagnosticsError, match="Invalid schema version"):
        ensure_schema_compatible("latest")


def test_jsonl_event_logger_appends_valid_json_lines(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "run-events.jsonl"
    logger = JsonlEventLogger(log_path)
    logger.append("queue_built", run_id="crawl", payload={"queued": 3})
    logger.append("crawl_advanced", run_id="crawl", payload={"index": 1})

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["event_type"] for line in lines] == ["queue_built", "crawl_advanced"]
    assert json.loads(lines[0])["page_url"] is None


def test_safe_append_skips_without_logger_and_swallows_write_errors(tmp_path: Path) -> None:
    assert safe_append(None, "finalized", run_id="harvest") is None

    log_path = tmp_path / "events.jsonl"
    logger = JsonlEventLogger(log_path)
    log_path.mkdir()
    assert safe_append(logger, "finalized", run_id="harvest") is None
    assert safe_append(logger, " ", run_id="harvest") is None


def test_build_run_event_rejects_unknown_event_types() -> None:
    with pytest.raises(DiagnosticsError, match="Unknown run event type 'exploded'"):
        build_run_event("exploded", run_id="harvest")


def test_payload_values_are_made_json_safe() -> None:
    event = build_run_event(
        RunEventType.CRAWL_HANDOFF,
        run_id="crawl",
        payload={"at": datetime(2026, 3, 1), "path": Path("a/b")},
    )
    assert event["event_type"] == "crawl_handoff"
    assert event["payload"] == {"at": "2026-03-01 00:00:00", "path": "a/b"}


def test_read_run_events_round_trips_logged_lines(tmp_path: Path) -> None:
    log_path = tmp_path / "run-events.jsonl"
    logger = JsonlEventLogger(log_path)
    logger.append(RunEventType.RUN_STARTED, run_id="harvest", page_url="https://x.com/alice/with_replies")
    logger.append(RunEventType.FINALIZED, run_id="harvest", payload={"reason": "stalled"})
    with log_path.open("a", encoding="utf-8") as stream:
        stream.write("\n")

    events = list(read_run_events(log_path))

    assert [event.event_type for event in events] == [RunEventType.RUN_STARTED, RunEventType.FINALIZED]
    assert events[0].page_url == "https://x.com/alice/with_replies"
    assert events[1].payload == {"reason": "stalled"}
    assert events[1].occurred_at.tzinfo is not None


def test_read_run_events_rejects_non_object_lines(tmp_path: Path) -> None:
    log_path = tmp_path / "run-events.jsonl"
    log_path.write_text("[1, 2]\n", encoding="utf-8")
    with pytest.raises(DiagnosticsError, match="Line 1"):
        list(read_run_events(log_path))
