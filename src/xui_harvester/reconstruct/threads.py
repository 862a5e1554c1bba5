"""Rebuild conversation threads from a flat, DOM-ordered run buffer.

The page never exposes real reply edges. An owner reply is attached to the
most recent non-owner post seen before it in DOM order, and every non-owner
author's posts in a root section form one thread.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from xui_harvester.models import ObservedPost, OutputRow, PageMode, RunContext


@dataclass(frozen=True)
class RootSection:
    root: ObservedPost
    replies: tuple[ObservedPost, ...] = ()


@dataclass
class ThreadEntry:
    post: ObservedPost
    is_parent: bool = False
    parent_id: str | None = None
    reply_ids: list[str] = field(default_factory=list)

    @property
    def has_reply(self) -> bool:
        return bool(self.reply_ids)


def same_handle(left: str, right: str) -> bool:
    return bool(left) and left.lstrip("@").casefold() == right.lstrip("@").casefold()


def is_root_post(post: ObservedPost, owner_handle: str) -> bool:
    return same_handle(post.author_handle, owner_handle) and not post.is_reply


def split_root_sections(
    posts: Sequence[ObservedPost], owner_handle: str
) -> tuple[RootSection, ...]:
    """Cut the buffer at each owner root post; anything before the first root is dropped."""
    sections: list[RootSection] = []
    current_root: ObservedPost | None = None
    current_replies: list[ObservedPost] = []
    for post in posts:
        if is_root_post(post, owner_handle):
            if current_root is not None:
                sections.append(RootSection(current_root, tuple(current_replies)))
            current_root = post
            current_replies = []
        elif current_root is not None:
            current_replies.append(post)
    if current_root is not None:
        sections.append(RootSection(current_root, tuple(current_replies)))
    return tuple(sections)


def group_into_threads(
    posts: Sequence[ObservedPost], owner_handle: str
) -> list[list[ThreadEntry]]:
    buckets: dict[str, list[ThreadEntry]] = {}
    last_parent: ThreadEntry | None = None
    last_bucket_key: str | None = None

    for post in posts:
        if same_handle(post.author_handle, owner_handle):
            # Owner posts without a preceding non-owner parent are left out.
            if post.is_reply and last_parent is not None and last_bucket_key is not None:
                last_parent.reply_ids.append(post.post_id)
                buckets[last_bucket_key].append(
                    ThreadEntry(post=post, parent_id=last_parent.post.post_id)
                )
            continue

        key = _bucket_key(post.author_handle)
        entry = ThreadEntry(post=post, is_parent=True)
        buckets.setdefault(key, []).append(entry)
        last_parent = entry
        last_bucket_key = key

    threads = [
        sorted(bucket, key=lambda entry: entry.post.sort_timestamp)
        for bucket in buckets.values()
    ]
    threads.sort(key=lambda thread: thread[0].post.sort_timestamp)
    return threads


def reconstruct_section(
    section: RootSection, owner_handle: str, *, section_index: int = 0
) -> tuple[OutputRow, ...]:
    rows = [OutputRow(post=section.root, depth=0, section=section_index)]
    threads = group_into_threads(section.replies, owner_handle)
    for thread_number, thread in enumerate(threads, start=1):
        for post_number, entry in enumerate(thread, start=1):
            rows.append(
                OutputRow(
                    post=entry.post,
                    depth=1 if post_number == 1 else 2,
                    thread_number=thread_number,
                    post_number_in_thread=post_number,
                    section=section_index,
                    parent_id=entry.parent_id,
                    has_reply=entry.has_reply,
                    reply_ids=tuple(entry.reply_ids),
                )
            )
    return tuple(rows)


def flat_rows(posts: Sequence[ObservedPost], *, section_index: int = 0) -> tuple[OutputRow, ...]:
    """Unthreaded output: first post as root, the rest at depth 1 in original order."""
    return tuple(
        OutputRow(post=post, depth=0 if index == 0 else 1, section=section_index)
        for index, post in enumerate(posts)
    )


def reconstruct_timeline(
    posts: Sequence[ObservedPost], owner_handle: str
) -> tuple[OutputRow, ...]:
    if not posts:
        return ()
    if not owner_handle:
        return flat_rows(posts)
    sections = split_root_sections(posts, owner_handle)
    if not sections:
        return flat_rows(posts)
    rows: list[OutputRow] = []
    for index, section in enumerate(sections):
        rows.extend(reconstruct_section(section, owner_handle, section_index=index))
    return tuple(rows)


def reconstruct_status_page(
    posts: Sequence[ObservedPost],
    root_rest_id: str,
    *,
    owner_handle: str = "",
) -> tuple[OutputRow, ...]:
    if not posts:
        return ()
    root = next((post for post in posts if post.post_id == root_rest_id), posts[0])
    comments = tuple(post for post in posts if post is not root)
    resolved_owner = owner_handle or root.author_handle
    if not resolved_owner:
        return flat_rows((root, *comments))
    return reconstruct_section(RootSection(root=root, replies=comments), resolved_owner)


def reconstruct(posts: Sequence[ObservedPost], context: RunContext) -> tuple[OutputRow, ...]:
    """Dispatch to the page-mode specific reconstruction."""
    if context.mode is PageMode.STATUS:
        return reconstruct_status_page(posts, context.root_rest_id)
    return reconstruct_timeline(posts, context.owner_handle)


def _bucket_key(handle: str) -> str:
    return handle.lstrip("@").casefold()
