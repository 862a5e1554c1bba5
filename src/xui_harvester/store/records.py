"""Typed load/save/clear helpers for the four persisted crawl records.

Storage failures never escape these helpers: reads fall back to defaults and
writes report ``False`` so callers keep running on in-memory state.
"""

from __future__ import annotations

from collections.abc import Iterable
import json
from typing import Any

from xui_harvester.errors import StoreError
from xui_harvester.logging import get_logger
from xui_harvester.models import Aggregate, AggregateEntry, CrawlRunState, ResumeCursor
from xui_harvester.store.base import (
    AGGREGATE_KEY,
    CRAWL_RUN_KEY,
    REMEMBERED_IDS_KEY,
    RESUME_CURSOR_KEY,
    StateStore,
)

RECORD_VERSION = 1

logger = get_logger(__name__)


def load_remembered_ids(store: StateStore) -> set[str]:
    raw = _read(store, REMEMBERED_IDS_KEY)
    if not raw:
        return set()
    return {line.strip() for line in raw.splitlines() if line.strip()}


def save_remembered_ids(store: StateStore, ids: Iterable[str]) -> bool:
    return _write(store, REMEMBERED_IDS_KEY, "\n".join(sorted(set(ids))))


def clear_remembered_ids(store: StateStore) -> bool:
    return _delete(store, REMEMBERED_IDS_KEY)


def load_resume_cursor(store: StateStore) -> ResumeCursor | None:
    payload = _read_json(store, RESUME_CURSOR_KEY)
    if payload is None:
        return None
    post_id = str(payload.get("id") or "").strip()
    if not post_id:
        return None
    return ResumeCursor(post_id=post_id, exclusive=bool(payload.get("exclusive", False)))


def save_resume_cursor(store: StateStore, cursor: ResumeCursor) -> bool:
    return _write_json(
        store,
        RESUME_CURSOR_KEY,
        {"version": RECORD_VERSION, "id": cursor.post_id, "exclusive": cursor.exclusive},
    )


def clear_resume_cursor(store: StateStore) -> bool:
    return _delete(store, RESUME_CURSOR_KEY)


def load_run_state(store: StateStore) -> CrawlRunState | None:
    payload = _read_json(store, CRAWL_RUN_KEY)
    if payload is None:
        return None
    queue_raw = payload.get("queue")
    if not isinstance(queue_raw, list):
        logger.warning("Ignoring crawl run record without a queue list.")
        return None
    queue = tuple(str(item) for item in queue_raw if str(item).strip())
    index = payload.get("index", 0)
    if isinstance(index, bool) or not isinstance(index, int):
        index = 0
    return CrawlRunState(
        target_queue=queue,
        current_index=max(0, min(index, len(queue))),
        owner_key=str(payload.get("owner_key") or "account"),
        owner_handle=str(payload.get("owner_handle") or ""),
        origin_ref=str(payload.get("origin_ref") or ""),
        done=bool(payload.get("done", False)),
        paused=bool(payload.get("paused", False)),
        cancelled=bool(payload.get("cancelled", False)),
        stuck=bool(payload.get("stuck", False)),
        mode=str(payload.get("mode") or "search"),
        started_at=str(payload.get("started_at") or ""),
    )


def save_run_state(store: StateStore, state: CrawlRunState) -> bool:
    return _write_json(store, CRAWL_RUN_KEY, run_state_to_dict(state))


def clear_run_state(store: StateStore) -> bool:
    return _delete(store, CRAWL_RUN_KEY)


def run_state_to_dict(state: CrawlRunState) -> dict[str, Any]:
    return {
        "version": RECORD_VERSION,
        "mode": state.mode,
        "queue": list(state.target_queue),
        "index": state.current_index,
        "owner_key": state.owner_key,
        "owner_handle": state.owner_handle,
        "origin_ref": state.origin_ref,
        "done": state.done,
        "paused": state.paused,
        "cancelled": state.cancelled,
        "stuck": state.stuck,
        "started_at": state.started_at,
    }


def load_aggregate(store: StateStore) -> Aggregate | None:
    payload = _read_json(store, AGGREGATE_KEY)
    if payload is None:
        return None
    entries_raw = payload.get("entries")
    if not isinstance(entries_raw, list):
        entries_raw = []
    entries: list[AggregateEntry] = []
    for raw in entries_raw:
        if not isinstance(raw, dict) or not raw.get("id"):
            continue
        entries.append(
            AggregateEntry(
                post_id=str(raw["id"]),
                author_handle=str(raw.get("author_handle") or ""),
                avatar_url=str(raw.get("avatar_url") or ""),
                is_voice_post=bool(raw.get("is_voice_post", False)),
            )
        )
    return Aggregate(
        owner_key=str(payload.get("owner_key") or "account"),
        owner_handle=str(payload.get("owner_handle") or ""),
        entries=tuple(entries),
    )


def save_aggregate(store: StateStore, aggregate: Aggregate) -> bool:
    return _write_json(store, AGGREGATE_KEY, aggregate_to_dict(aggregate))


def clear_aggregate(store: StateStore) -> bool:
    return _delete(store, AGGREGATE_KEY)


def aggregate_to_dict(aggregate: Aggregate) -> dict[str, Any]:
    return {
        "version": RECORD_VERSION,
        "owner_key": aggregate.owner_key,
        "owner_handle": aggregate.owner_handle,
        "entries": [
            {
                "id": entry.post_id,
                "author_handle": entry.author_handle,
                "avatar_url": entry.avatar_url,
                "is_voice_post": entry.is_voice_post,
            }
            for entry in aggregate.entries
        ],
    }


def _read(store: StateStore, key: str) -> str | None:
    try:
        return store.read_record(key)
    except StoreError as exc:
        logger.warning("Could not read record %s; continuing without it: %s", key, exc)
        return None


def _read_json(store: StateStore, key: str) -> dict[str, Any] | None:
    raw = _read(store, key)
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring corrupt %s record.", key)
        return None
    if not isinstance(payload, dict):
        logger.warning("Ignoring %s record that is not a JSON object.", key)
        return None
    return payload


def _write(store: StateStore, key: str, value: str) -> bool:
    try:
        store.write_record(key, value)
    except StoreError as exc:
        logger.warning("Could not persist record %s; keeping in-memory state: %s", key, exc)
        return False
    return True


def _write_json(store: StateStore, key: str, payload: dict[str, Any]) -> bool:
    return _write(store, key, json.dumps(payload, sort_keys=True))


def _delete(store: StateStore, key: str) -> bool:
    try:
        store.delete_record(key)
    except StoreError as exc:
        logger.warning("Could not clear record %s: %s", key, exc)
        return False
    return True
