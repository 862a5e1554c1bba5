"""Persisted record contracts."""

from .base import (
    AGGREGATE_KEY,
    CRAWL_RUN_KEY,
    RECORD_KEYS,
    REMEMBERED_IDS_KEY,
    RESUME_CURSOR_KEY,
    StateStore,
)
from .checkpoints import CheckpointStore
from .memory import MemoryStateStore
from .sqlite import DEFAULT_MIGRATIONS, HarvestRunRecord, Migration, SQLiteMigrationRunner, SQLiteStateStore

__all__ = [
    "AGGREGATE_KEY",
    "CRAWL_RUN_KEY",
    "CheckpointStore",
    "DEFAULT_MIGRATIONS",
    "HarvestRunRecord",
    "MemoryStateStore",
    "Migration",
    "RECORD_KEYS",
    "REMEMBERED_IDS_KEY",
    "RESUME_CURSOR_KEY",
    "SQLiteMigrationRunner",
    "SQLiteStateStore",
    "StateStore",
]
