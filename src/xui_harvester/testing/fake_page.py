"""Scriptable in-memory page source for engine and crawl tests."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from xui_harvester.errors import CollectError
from xui_harvester.models import ActivityPulse, ObservedPost

ROW_HEIGHT_PX = 100


class FakePageSource:
    """A timeline of posts shown through a fixed-size window.

    Each ``scroll_by`` moves the window ``step`` posts further down until the
    last post is visible. Posts stay rendered for one window above the
    viewport, the way the live timeline keeps recent rows mounted. ``pages``
    maps URLs to timelines for ``navigate``.
    """

    def __init__(
        self,
        url: str,
        posts: Sequence[ObservedPost] = (),
        *,
        window: int = 5,
        step: int = 2,
        pages: Mapping[str, Sequence[ObservedPost]] | None = None,
        overlay_active: bool = False,
        translated_ids: Iterable[str] = (),
        end_marker: bool = False,
    ) -> None:
        self._url = url
        self.posts = list(posts)
        self.window = window
        self.step = step
        self.pages = dict(pages or {})
        self.overlay_active = overlay_active
        self.translated_ids = set(translated_ids)
        self.end_marker = end_marker
        self.offset = 0
        self.new_node_at_ms: float | None = None
        self.navigations: list[str] = []
        self.scroll_calls = 0
        self.fail_scrolls = 0
        self.waits: list[float] = []

    @property
    def url(self) -> str:
        return self._url

    @property
    def at_bottom(self) -> bool:
        return self.offset + self.window >= len(self.posts)

    def observe_posts(self) -> Sequence[ObservedPost]:
        start = max(0, self.offset - self.window)
        return tuple(post for post in self.posts[start : self.offset + self.window] if not post.is_repost)

    def activity_pulse(self) -> ActivityPulse:
        return ActivityPulse(
            scroll_y=float(self.offset * ROW_HEIGHT_PX),
            document_height=float(max(len(self.posts), self.window) * ROW_HEIGHT_PX),
            new_node_observed_at_ms=self.new_node_at_ms,
            end_marker_visible=self.end_marker and self.at_bottom,
            new_node_mark=self.new_node_at_ms,
        )

    def has_overlay_content_for(self, post_id: str) -> bool:
        return post_id in self.translated_ids

    def overlay_system_active(self) -> bool:
        return self.overlay_active

    def scroll_by(self, pixels: int) -> None:
        self.scroll_calls += 1
        if self.fail_scrolls > 0:
            self.fail_scrolls -= 1
            raise CollectError("scroll failed")
        self.offset = min(self.offset + self.step, max(0, len(self.posts) - self.window))

    def navigate(self, url: str) -> None:
        self.navigations.append(url)
        self._url = url
        if url in self.pages:
            self.posts = list(self.pages[url])
        self.offset = 0

    def wait(self, seconds: float) -> None:
        self.waits.append(seconds)
