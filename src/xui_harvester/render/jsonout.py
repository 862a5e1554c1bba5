"""JSON and JSONL rendering of output rows and crawl aggregates."""

from __future__ import annotations

import json

from xui_harvester.models import Aggregate, AggregateEntry, OutputRow


def render_json(rows: tuple[OutputRow, ...]) -> str:
    return json.dumps([output_row_to_dict(row) for row in rows], indent=2, sort_keys=True)


def render_jsonl(rows: tuple[OutputRow, ...]) -> str:
    return "\n".join(json.dumps(output_row_to_dict(row), sort_keys=True) for row in rows)


def output_row_to_dict(row: OutputRow) -> dict[str, object]:
    post = row.post
    return {
        "id": post.post_id,
        "url": post.url,
        "author_handle": post.author_handle,
        "author_name": post.author_name,
        "timestamp": post.timestamp,
        "text": post.text,
        "is_reply": post.is_reply,
        "is_translated": post.is_translated,
        "is_voice_post": post.is_voice_post,
        "depth": row.depth,
        "section": row.section,
        "thread_number": row.thread_number,
        "post_number_in_thread": row.post_number_in_thread,
        "parent_id": row.parent_id,
        "has_reply": row.has_reply,
        "reply_ids": list(row.reply_ids),
    }


def aggregate_to_dict(aggregate: Aggregate) -> dict[str, object]:
    return {
        "owner_key": aggregate.owner_key,
        "owner_handle": aggregate.owner_handle,
        "entries": [aggregate_entry_to_dict(entry) for entry in aggregate.entries],
    }


def aggregate_entry_to_dict(entry: AggregateEntry) -> dict[str, object]:
    return {
        "id": entry.post_id,
        "author_handle": entry.author_handle,
        "avatar_url": entry.avatar_url,
        "is_voice_post": entry.is_voice_post,
    }
