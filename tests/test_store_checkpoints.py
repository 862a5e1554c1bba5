"""Checkpoint store: dedup, remembered ids, debounce and the resume gate."""

from __future__ import annotations

from datetime import datetime, timezone
import json

from xui_harvester.models import ResumeCursor
from xui_harvester.store.base import REMEMBERED_IDS_KEY, RESUME_CURSOR_KEY
from xui_harvester.store.checkpoints import CheckpointStore
from xui_harvester.store.memory import MemoryStateStore
from xui_harvester.testing import ManualClock


def test_seen_ids_are_rejected_within_a_run_and_reset_by_begin_run() -> None:
    checkpoints = CheckpointStore(MemoryStateStore(), remember_enabled=False)
    assert checkpoints.should_accept("1") is True
    checkpoints.mark_accepted("1")
    assert checkpoints.should_accept("1") is False
    assert checkpoints.should_accept("") is False

    checkpoints.begin_run()
    assert checkpoints.should_accept("1") is True
    assert checkpoints.remembered_ids == frozenset()


def test_remembered_ids_are_loaded_and_skipped() -> None:
    store = MemoryStateStore({REMEMBERED_IDS_KEY: "10\n11"})
    checkpoints = CheckpointStore(store)
    assert checkpoints.should_accept("10") is False
    assert checkpoints.should_accept("12") is True

    disabled = CheckpointStore(store, remember_enabled=False)
    assert disabled.should_accept("10") is True


def test_remembered_writes_are_debounced() -> None:
    clock = ManualClock()
    store = MemoryStateStore()
    checkpoints = CheckpointStore(store, save_debounce_ms=900, now_ms=clock.now_ms)

    checkpoints.mark_accepted("1")
    clock.advance(500)
    checkpoints.mark_accepted("2")
    assert checkpoints.poll_pending_save() is False
    assert store.read_record(REMEMBERED_IDS_KEY) is None
    assert checkpoints.has_pending_save is True

    clock.advance(400)
    assert checkpoints.poll_pending_save() is True
    assert store.read_record(REMEMBERED_IDS_KEY) == "1\n2"
    assert checkpoints.has_pending_save is False


def test_accept_without_remember_only_marks_seen() -> None:
    store = MemoryStateStore()
    checkpoints = CheckpointStore(store)
    checkpoints.mark_accepted("5", remember=False)
    assert checkpoints.should_accept("5") is False
    assert checkpoints.remembered_ids == frozenset()
    assert checkpoints.has_pending_save is False


def test_gate_is_closed_until_cursor_is_observed() -> None:
    store = MemoryStateStore({RESUME_CURSOR_KEY: json.dumps({"id": "50", "exclusive": False})})
    checkpoints = CheckpointStore(store)
    assert checkpoints.gate_open is False
    assert checkpoints.is_gate_open("60") is False
    assert checkpoints.is_gate_open("50") is True
    assert checkpoints.is_gate_open("60") is True
    assert checkpoints.is_cursor_skip("50") is False


def test_exclusive_cursor_is_skipped_and_disabled_gate_is_open() -> None:
    store = MemoryStateStore({RESUME_CURSOR_KEY: json.dumps({"id": "50", "exclusive": True})})
    checkpoints = CheckpointStore(store)
    assert checkpoints.is_cursor_skip("50") is True
    assert checkpoints.is_cursor_skip("51") is False

    checkpoints.begin_run(gate_enabled=False)
    assert checkpoints.gate_open is True
    assert checkpoints.is_cursor_skip("50") is False


def test_cursor_set_and_clear_persist() -> None:
    store = MemoryStateStore()
    checkpoints = CheckpointStore(store)
    assert checkpoints.status_text() == "Start: from top (no resume cursor)."

    cursor = checkpoints.set_resume_cursor("77", exclusive=True)
    assert cursor == ResumeCursor(post_id="77", exclusive=True)
    assert checkpoints.status_text() == "Start: after post 77."
    assert CheckpointStore(store).resume_cursor == cursor

    checkpoints.set_resume_cursor("78")
    assert checkpoints.status_text() == "Start: at post 78."

    checkpoints.clear_resume_cursor()
    assert checkpoints.gate_open is True
    assert store.read_record(RESUME_CURSOR_KEY) is None


def test_forget_and_clear_remembered() -> None:
    store = MemoryStateStore({REMEMBERED_IDS_KEY: "1\n2\n3"})
    checkpoints = CheckpointStore(store)
    assert checkpoints.forget_ids(["2", "9"]) == 1
    assert store.read_record(REMEMBERED_IDS_KEY) == "1\n3"
    assert checkpoints.clear_remembered() == 2
    assert store.read_record(REMEMBERED_IDS_KEY) is None


def test_export_and_import_payload() -> None:
    store = MemoryStateStore({REMEMBERED_IDS_KEY: "2\n1"})
    checkpoints = CheckpointStore(store)
    moment = datetime(2026, 1, 2, tzinfo=timezone.utc)
    payload = checkpoints.export_payload(exported_at=moment)
    assert payload == {"version": 1, "exported_at": moment.isoformat(), "ids": ["1", "2"]}

    fresh_store = MemoryStateStore({REMEMBERED_IDS_KEY: "1"})
    fresh = CheckpointStore(fresh_store)
    assert fresh.import_payload(json.dumps(payload)) == (1, 2)
    assert fresh.import_payload("3\n3\n1\n") == (1, 3)
    assert fresh_store.read_record(REMEMBERED_IDS_KEY) == "1\n2\n3"


def test_import_payload_normalizes_status_urls_and_skips_junk() -> None:
    store = MemoryStateStore()
    checkpoints = CheckpointStore(store)

    added, total = checkpoints.import_payload(
        json.dumps({"ids": ["https://x.com/bob/status/42", "https://x.com/i/web/status/42", "garbage", "7"]})
    )

    assert (added, total) == (2, 2)
    assert checkpoints.remembered_ids == frozenset({"42", "7"})
    assert checkpoints.should_accept("42") is False
