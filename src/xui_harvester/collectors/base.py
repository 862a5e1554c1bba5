"""Page-source interface consumed by the harvest engine."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from xui_harvester.models import ActivityPulse, ObservedPost


class PageSource(Protocol):
    @property
    def url(self) -> str:
        """Current page URL."""

    def observe_posts(self) -> Sequence[ObservedPost]:
        """Return posts currently rendered, in DOM order, excluding reposts."""

    def activity_pulse(self) -> ActivityPulse:
        """Return scroll/height/new-node signals in the engine clock."""

    def has_overlay_content_for(self, post_id: str) -> bool:
        """Whether the translation overlay has attached to ``post_id``."""

    def overlay_system_active(self) -> bool:
        """Whether a translation overlay system is present on the page."""

    def scroll_by(self, pixels: int) -> None:
        """Scroll the timeline down by ``pixels``."""

    def navigate(self, url: str) -> None:
        """Load ``url`` in place of the current page."""
