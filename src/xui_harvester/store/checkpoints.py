"""Dedup set, remembered ids and the resume cursor for one crawl run."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timezone
import time
from typing import Any

from xui_harvester.extract.normalize import parse_remembered_ids_payload
from xui_harvester.logging import get_logger
from xui_harvester.models import ResumeCursor
from xui_harvester.store import records
from xui_harvester.store.base import StateStore

EXPORT_FORMAT_VERSION = 1

logger = get_logger(__name__)


class CheckpointStore:
    """Decide which observed ids a run may accept and remember them across runs.

    Remembered ids and the resume cursor are read once at construction. The
    per-run seen-set is authoritative for the current run even when persistence
    fails; writes of the remembered set are coalesced by a debounce window.
    """

    def __init__(
        self,
        state_store: StateStore,
        *,
        remember_enabled: bool = True,
        save_debounce_ms: int = 900,
        now_ms: Callable[[], float] | None = None,
    ) -> None:
        self._state_store = state_store
        self._remember_enabled = remember_enabled
        self._save_debounce_ms = max(0, int(save_debounce_ms))
        self._now_ms = now_ms or (lambda: time.monotonic() * 1000.0)
        self._remembered: set[str] = records.load_remembered_ids(state_store)
        self._cursor: ResumeCursor | None = records.load_resume_cursor(state_store)
        self._seen: set[str] = set()
        self._gate_enabled = True
        self._gate_open = self._cursor is None
        self._dirty = False
        self._save_due_at: float | None = None

    @property
    def remember_enabled(self) -> bool:
        return self._remember_enabled

    @property
    def remembered_ids(self) -> frozenset[str]:
        return frozenset(self._remembered)

    @property
    def resume_cursor(self) -> ResumeCursor | None:
        return self._cursor

    @property
    def gate_open(self) -> bool:
        return self._gate_open

    @property
    def has_pending_save(self) -> bool:
        return self._dirty

    def begin_run(self, *, gate_enabled: bool = True) -> None:
        """Reset per-run state; status pages run with the cursor gate disabled."""
        self._seen = set()
        self._gate_enabled = gate_enabled
        self._gate_open = (not gate_enabled) or self._cursor is None

    def should_accept(self, post_id: str) -> bool:
        if not post_id or post_id in self._seen:
            return False
        if self._remember_enabled and post_id in self._remembered:
            return False
        return True

    def mark_accepted(self, post_id: str, *, remember: bool = True) -> None:
        self._seen.add(post_id)
        if not (self._remember_enabled and remember) or post_id in self._remembered:
            return
        self._remembered.add(post_id)
        self._dirty = True
        if self._save_due_at is None:
            self._save_due_at = self._now_ms() + self._save_debounce_ms

    def poll_pending_save(self) -> bool:
        """Write the remembered set when the debounce window has elapsed."""
        if self._save_due_at is None or self._now_ms() < self._save_due_at:
            return False
        return self.flush()

    def flush(self) -> bool:
        self._save_due_at = None
        if not self._dirty:
            return True
        if records.save_remembered_ids(self._state_store, self._remembered):
            self._dirty = False
            return True
        return False

    def is_gate_open(self, post_id: str) -> bool:
        """One-shot latch: closed until the resume cursor id is observed."""
        if self._gate_open:
            return True
        if self._cursor is not None and post_id == self._cursor.post_id:
            self._gate_open = True
            logger.info("Reached resume cursor %s; accepting posts from here.", post_id)
            return True
        return False

    def is_cursor_skip(self, post_id: str) -> bool:
        return (
            self._gate_enabled
            and self._cursor is not None
            and self._cursor.exclusive
            and post_id == self._cursor.post_id
        )

    def set_resume_cursor(self, post_id: str, *, exclusive: bool = False) -> ResumeCursor:
        cursor = ResumeCursor(post_id=post_id, exclusive=exclusive)
        self._cursor = cursor
        records.save_resume_cursor(self._state_store, cursor)
        return cursor

    def clear_resume_cursor(self) -> None:
        self._cursor = None
        self._gate_open = True
        records.clear_resume_cursor(self._state_store)

    def forget_ids(self, post_ids: Iterable[str]) -> int:
        removed = 0
        for post_id in post_ids:
            if post_id in self._remembered:
                self._remembered.discard(post_id)
                removed += 1
            self._seen.discard(post_id)
        if removed:
            self._dirty = True
            self.flush()
        return removed

    def clear_remembered(self) -> int:
        count = len(self._remembered)
        self._remembered.clear()
        self._dirty = False
        self._save_due_at = None
        records.clear_remembered_ids(self._state_store)
        return count

    def export_payload(self, *, exported_at: datetime | None = None) -> dict[str, Any]:
        moment = exported_at or datetime.now(timezone.utc)
        return {
            "version": EXPORT_FORMAT_VERSION,
            "exported_at": moment.isoformat(),
            "ids": sorted(self._remembered),
        }

    def import_payload(self, raw: str | bytes) -> tuple[int, int]:
        """Merge ids from an export file; returns ``(added, total)``."""
        added = 0
        for post_id in parse_remembered_ids_payload(raw):
            if post_id not in self._remembered:
                self._remembered.add(post_id)
                added += 1
        if added:
            self._dirty = True
            self.flush()
        return added, len(self._remembered)

    def status_text(self) -> str:
        if self._cursor is None:
            return "Start: from top (no resume cursor)."
        mode = "after" if self._cursor.exclusive else "at"
        return f"Start: {mode} post {self._cursor.post_id}."
