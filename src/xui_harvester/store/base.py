"""Storage interfaces for persisted crawl records."""

from __future__ import annotations

from typing import Protocol

REMEMBERED_IDS_KEY = "remembered_ids"
RESUME_CURSOR_KEY = "resume_cursor"
CRAWL_RUN_KEY = "crawl_run"
AGGREGATE_KEY = "aggregate"

RECORD_KEYS = (REMEMBERED_IDS_KEY, RESUME_CURSOR_KEY, CRAWL_RUN_KEY, AGGREGATE_KEY)


class StateStore(Protocol):
    def read_record(self, key: str) -> str | None:
        """Return the stored value for ``key`` or ``None`` when absent."""

    def write_record(self, key: str, value: str) -> None:
        """Persist ``value`` under ``key``, replacing any previous value."""

    def delete_record(self, key: str) -> None:
        """Remove ``key`` if present."""
