"""Rendering interfaces."""

from __future__ import annotations

from typing import Protocol

from xui_harvester.models import OutputRow


class Renderer(Protocol):
    def render(self, rows: tuple[OutputRow, ...]) -> str:
        """Render reconstructed output rows as text."""
