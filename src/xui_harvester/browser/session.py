"""Playwright browser lifecycle for harvest runs."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from xui_harvester.collectors.page import PlaywrightPageSource
from xui_harvester.config import VALID_BROWSER_ENGINES, BrowserConfig
from xui_harvester.errors import BrowserError
from xui_harvester.logging import get_logger

logger = get_logger(__name__)


class BrowserSessionManager(Protocol):
    def open(self) -> None:
        """Open browser resources."""

    def close(self) -> None:
        """Close browser resources."""

    def new_page_source(self) -> PlaywrightPageSource:
        """Create a page wrapped as a harvest page source."""


@dataclass(frozen=True)
class BrowserLaunchOptions:
    engine: str
    headless: bool
    navigation_timeout_ms: int
    action_timeout_ms: int
    locale: str
    viewport_width: int
    viewport_height: int
    storage_state: str | None = None

    @classmethod
    def from_config(cls, config: BrowserConfig, *, headless: bool | None = None) -> BrowserLaunchOptions:
        storage_state = config.storage_state
        if storage_state:
            storage_state = str(Path(storage_state).expanduser())
        return cls(
            engine=config.engine,
            headless=config.headless if headless is None else headless,
            navigation_timeout_ms=config.navigation_timeout_ms,
            action_timeout_ms=config.action_timeout_ms,
            locale=config.locale,
            viewport_width=config.viewport_width,
            viewport_height=config.viewport_height,
            storage_state=storage_state or None,
        )


class PlaywrightBrowserSession:
    """One browser and context, torn down deterministically on close."""

    def __init__(
        self,
        options: BrowserLaunchOptions,
        *,
        playwright_factory: Callable[[], AbstractContextManager[Any]] | None = None,
    ) -> None:
        if options.engine not in VALID_BROWSER_ENGINES:
            raise BrowserError(
                f"Unsupported browser engine '{options.engine}'. Use one of: "
                + ", ".join(sorted(VALID_BROWSER_ENGINES))
                + "."
            )
        self.options = options
        self._playwright_factory = playwright_factory or _default_playwright_factory
        self._playwright_cm: AbstractContextManager[Any] | None = None
        self._browser: Any | None = None
        self._context: Any | None = None

    @property
    def is_open(self) -> bool:
        return self._context is not None

    def open(self) -> None:
        if self._context is not None:
            return

        try:
            self._playwright_cm = self._playwright_factory()
            playwright = self._playwright_cm.__enter__()
            launcher = getattr(playwright, self.options.engine, None)
            if launcher is None:
                raise BrowserError(f"Playwright has no '{self.options.engine}' browser type.")

            self._browser = launcher.launch(headless=self.options.headless)
            context_kwargs: dict[str, Any] = {
                "locale": self.options.locale,
                "viewport": {
                    "width": self.options.viewport_width,
                    "height": self.options.viewport_height,
                },
            }
            if self.options.storage_state is not None:
                if not Path(self.options.storage_state).exists():
                    raise BrowserError(
                        f"storage_state file '{self.options.storage_state}' does not exist. "
                        "Export a logged-in session first or remove `storage_state` from config."
                    )
                context_kwargs["storage_state"] = self.options.storage_state
            self._context = self._browser.new_context(**context_kwargs)
            self._context.set_default_timeout(self.options.action_timeout_ms)
        except BrowserError:
            self._teardown(raise_on_error=False)
            raise
        except Exception as exc:
            self._teardown(raise_on_error=False)
            raise BrowserError(f"Failed to open browser session: {exc}") from exc
        logger.debug("Opened %s browser (headless=%s).", self.options.engine, self.options.headless)

    def new_page_source(self) -> PlaywrightPageSource:
        if self._context is None:
            self.open()
        if self._context is None:
            raise BrowserError("Browser session is not open.")

        try:
            page = self._context.new_page()
            set_navigation_timeout = getattr(page, "set_default_navigation_timeout", None)
            if callable(set_navigation_timeout):
                set_navigation_timeout(self.options.navigation_timeout_ms)
        except Exception as exc:
            raise BrowserError(f"Failed to create browser page: {exc}") from exc
        return PlaywrightPageSource(page, navigation_timeout_ms=self.options.navigation_timeout_ms)

    def close(self) -> None:
        self._teardown(raise_on_error=True)

    def __enter__(self) -> PlaywrightBrowserSession:
        self.open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        try:
            self.close()
        except BrowserError:
            if exc_type is None:
                raise
        return False

    def _teardown(self, *, raise_on_error: bool) -> None:
        errors: list[str] = []
        for label, attr in (("context", "_context"), ("browser", "_browser")):
            handle = getattr(self, attr)
            if handle is None:
                continue
            try:
                handle.close()
            except Exception as exc:
                errors.append(f"{label} close failed: {exc}")
            finally:
                setattr(self, attr, None)

        if self._playwright_cm is not None:
            try:
                self._playwright_cm.__exit__(None, None, None)
            except Exception as exc:
                errors.append(f"playwright teardown failed: {exc}")
            finally:
                self._playwright_cm = None

        if raise_on_error and errors:
            raise BrowserError("Errors occurred during browser teardown: " + "; ".join(errors))


def _default_playwright_factory() -> AbstractContextManager[Any]:
    try:
        from playwright.sync_api import sync_playwright
    except ModuleNotFoundError as exc:
        raise BrowserError(
            "Playwright is not available. Install dependencies and run "
            "`python -m playwright install chromium`."
        ) from exc
    return sync_playwright()
