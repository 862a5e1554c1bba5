"""Data model contracts for cross-module use."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PageMode(str, Enum):
    WITH_REPLIES = "with_replies"
    STATUS = "status"
    SEARCH = "search"
    SEARCH_ADVANCED = "search_advanced"
    OTHER = "other"

    @property
    def is_search(self) -> bool:
        return self in (PageMode.SEARCH, PageMode.SEARCH_ADVANCED)


@dataclass(frozen=True)
class ObservedPost:
    """One post reported by the page source during a tick.

    ``timestamp`` is an ISO-8601 string or ``None`` when the page did not
    render one; ordering treats ``None`` as the empty string.
    """

    post_id: str
    author_handle: str = ""
    timestamp: str | None = None
    is_reply: bool = False
    has_declared_replies: bool = False
    is_repost: bool = False
    url: str = ""
    author_name: str = ""
    text: str = ""
    avatar_url: str = ""
    is_voice_post: bool = False
    is_translated: bool = False

    @property
    def sort_timestamp(self) -> str:
        return self.timestamp or ""


@dataclass(frozen=True)
class ActivityPulse:
    """Scroll and mutation signals read once per tick.

    ``new_node_observed_at_ms`` is on the engine clock and drifts with call
    latency. ``new_node_mark`` is the raw page value; it only changes when a
    new post node is actually observed.
    """

    scroll_y: float
    document_height: float
    new_node_observed_at_ms: float | None = None
    end_marker_visible: bool = False
    new_node_mark: float | None = None


@dataclass(frozen=True)
class OutputRow:
    post: ObservedPost
    depth: int
    thread_number: int | None = None
    post_number_in_thread: int | None = None
    section: int = 0
    parent_id: str | None = None
    has_reply: bool = False
    reply_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResumeCursor:
    post_id: str
    exclusive: bool = False


@dataclass(frozen=True)
class RunContext:
    mode: PageMode
    owner_handle: str = ""
    export_key: str = "account"
    root_rest_id: str = ""
    page_url: str = ""


@dataclass(frozen=True)
class CrawlRunState:
    """Persisted progress of one multi-page crawl run."""

    target_queue: tuple[str, ...]
    current_index: int = 0
    owner_key: str = "account"
    owner_handle: str = ""
    origin_ref: str = ""
    done: bool = False
    paused: bool = False
    cancelled: bool = False
    stuck: bool = False
    mode: str = PageMode.SEARCH.value
    started_at: str = ""

    @property
    def remaining(self) -> int:
        return max(0, len(self.target_queue) - self.current_index)

    @property
    def current_target(self) -> str | None:
        if 0 <= self.current_index < len(self.target_queue):
            return self.target_queue[self.current_index]
        return None


@dataclass(frozen=True)
class AggregateEntry:
    post_id: str
    author_handle: str = ""
    avatar_url: str = ""
    is_voice_post: bool = False


@dataclass(frozen=True)
class Aggregate:
    owner_key: str = "account"
    owner_handle: str = ""
    entries: tuple[AggregateEntry, ...] = ()
