"""Human-friendly rendering: threads indented by depth, sections separated."""

from __future__ import annotations

from xui_harvester.models import Aggregate, OutputRow

_INDENT = "    "


def render_pretty(rows: tuple[OutputRow, ...]) -> str:
    if not rows:
        return "(no posts)"

    lines: list[str] = []
    current_section: int | None = None
    for row in rows:
        if current_section is not None and row.section != current_section:
            lines.append("")
            lines.append("-" * 40)
            lines.append("")
        current_section = row.section
        post = row.post
        indent = _INDENT * max(0, row.depth)
        label = ""
        if row.thread_number is not None:
            label = f"[{row.thread_number}.{row.post_number_in_thread}] "
        flags = " (translated)" if post.is_translated else ""
        lines.append(f"{indent}{label}{post.author_handle or '-'} {post.timestamp or '-'} {post.post_id}{flags}")
        for text_line in (post.text or "").splitlines():
            lines.append(f"{indent}  {text_line}")
    return "\n".join(lines)


def render_aggregate_pretty(aggregate: Aggregate) -> str:
    voice_count = sum(1 for entry in aggregate.entries if entry.is_voice_post)
    header = (
        f"Crawl aggregate for {aggregate.owner_handle or aggregate.owner_key}: "
        f"{len(aggregate.entries)} posts, {voice_count} voice"
    )
    lines = [header]
    for entry in aggregate.entries:
        marker = " [voice]" if entry.is_voice_post else ""
        lines.append(f"  {entry.post_id} {entry.author_handle or '-'}{marker}")
    return "\n".join(lines)
