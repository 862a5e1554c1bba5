"""Tab-separated rendering for shell pipelines."""

from __future__ import annotations

from xui_harvester.models import Aggregate, OutputRow


def render_plain(rows: tuple[OutputRow, ...]) -> str:
    lines: list[str] = []
    for row in rows:
        post = row.post
        text = (post.text or "").replace("\n", " ").replace("\t", " ")
        lines.append(
            "\t".join(
                (
                    str(row.section),
                    str(row.depth),
                    post.post_id,
                    post.timestamp or "",
                    post.author_handle,
                    text,
                )
            )
        )
    return "\n".join(lines)


def render_aggregate_plain(aggregate: Aggregate) -> str:
    """Avatar TSV (one line per author) followed by the voice-post URL list."""
    lines = ["# handle\tavatar_url"]
    seen_handles: set[str] = set()
    for entry in aggregate.entries:
        handle = entry.author_handle.lstrip("@")
        if not handle or not entry.avatar_url or handle.casefold() in seen_handles:
            continue
        seen_handles.add(handle.casefold())
        lines.append(f"{handle}\t{entry.avatar_url}")
    voice = [entry for entry in aggregate.entries if entry.is_voice_post]
    if voice:
        lines.append("# voice posts")
        lines.extend(f"https://x.com/i/web/status/{entry.post_id}" for entry in voice)
    return "\n".join(lines)
