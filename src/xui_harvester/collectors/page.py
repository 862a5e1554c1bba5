"""Playwright-backed page source: DOM observation via ``page.evaluate`` snippets."""

from __future__ import annotations

from collections.abc import Callable, Sequence
import time
from typing import Any, Protocol

from xui_harvester.errors import CollectError
from xui_harvester.extract.normalize import normalize_observed_batch
from xui_harvester.logging import get_logger
from xui_harvester.models import ActivityPulse, ObservedPost

logger = get_logger(__name__)

_TRANSLATION_SELECTOR = ", ".join(
    (
        ".immersive-translate-target-inner",
        ".immersive-translate-target-translation-block-wrapper",
        ".immersive-translate-target-translation-inline-wrapper",
        ".immersive-translate-target-translation-vertical-block-wrapper",
        ".immersive-translate-target-translation-pre-whitespace",
        ".immersive-translate-target-translation-pdf-block-wrapper",
        "[data-immersive-translate-translation-element-mark]",
    )
)
_OVERLAY_PRESENCE_SELECTOR = ", ".join(
    (
        ".immersive-translate-target-wrapper",
        _TRANSLATION_SELECTOR,
        "[data-immersive-translate-paragraph]",
    )
)
_END_MARKER_TEXTS = (
    "you’re all caught up",
    "you're all caught up",
    "you have caught up",
    "you’ve reached the end",
    "you've reached the end",
    "nothing to see here",
    "no more posts",
    "no more tweets",
    "end of results",
    "end of the results",
)

_OBSERVE_POSTS_JS = r"""
() => {
  const bannerIsReply = (article) => {
    for (const el of article.querySelectorAll('div, span')) {
      if (el.closest('[data-testid="tweetText"]')) continue;
      const text = (el.textContent || '').trim();
      if (/^replying to\b/i.test(text) && /@[A-Za-z0-9_]{1,15}/.test(text)) return true;
    }
    return false;
  };
  const out = [];
  for (const article of document.querySelectorAll('article[data-testid="tweet"]')) {
    const social = article.querySelector('[data-testid="socialContext"]');
    const link = article.querySelector('a[href*="/status/"]');
    const time = article.querySelector('time');
    const stats = article.querySelector('div[role="group"][aria-label]');
    const replyMatch = stats ? (stats.getAttribute('aria-label') || '').match(/(\d+)\s+repl/i) : null;
    const gutterLine = article.querySelector('div.r-18kxxzh > div.r-1bnu78o.r-m5arl1');
    const avatar = article.querySelector('[data-testid="Tweet-User-Avatar"] img');
    const textEl = article.querySelector('[data-testid="tweetText"]');
    out.push({
      url: link ? link.href : '',
      handle: (article.querySelector('div[data-testid="User-Name"] a[tabindex="-1"] span') || {}).innerText || '',
      name: (article.querySelector('div[data-testid="User-Name"] a:not([tabindex="-1"]) span span') || {}).innerText || '',
      timestamp: time ? time.getAttribute('datetime') || '' : '',
      isReply: !!gutterLine || bannerIsReply(article),
      hasReplies: !!(replyMatch && parseInt(replyMatch[1], 10) > 0),
      isRepost: !!(social && /repost/i.test(social.innerText || '')),
      text: textEl ? textEl.innerText || '' : '',
      avatar: avatar ? avatar.src || '' : '',
      isVoice: !!article.querySelector('[data-testid="audioPlayer"], [aria-label*="Voice"]'),
    });
  }
  return out;
}
"""

_INSTALL_OBSERVER_JS = r"""
() => {
  if (window.__xuiHarvestObserver) return true;
  window.__xuiHarvestLastNewNodeMs = Date.now();
  const observer = new MutationObserver((mutations) => {
    for (const mutation of mutations) {
      for (const node of mutation.addedNodes) {
        if (node.nodeType !== 1) continue;
        if (node.matches('article[data-testid="tweet"]') || node.querySelector('article[data-testid="tweet"]')) {
          window.__xuiHarvestLastNewNodeMs = Date.now();
          return;
        }
      }
    }
  });
  observer.observe(document.body, { childList: true, subtree: true });
  window.__xuiHarvestObserver = observer;
  return true;
}
"""

_PULSE_JS = r"""
(endTexts) => {
  let endVisible = false;
  for (const el of document.querySelectorAll('div[role="status"], div[aria-live], span')) {
    const text = (el.textContent || '').trim().toLowerCase();
    if (text && endTexts.some((needle) => text.includes(needle))) { endVisible = true; break; }
  }
  return {
    scrollY: window.scrollY,
    documentHeight: document.documentElement.scrollHeight,
    lastNewNodeMs: window.__xuiHarvestLastNewNodeMs || null,
    pageNowMs: Date.now(),
    endVisible,
  };
}
"""

_HAS_OVERLAY_JS = r"""
([restId, selector]) => {
  for (const article of document.querySelectorAll('article[data-testid="tweet"]')) {
    const link = article.querySelector('a[href*="/status/' + restId + '"]');
    if (!link) continue;
    const textEl = article.querySelector('[data-testid="tweetText"]');
    if (!textEl) return false;
    if (textEl.matches(selector) || textEl.querySelector(selector)) return true;
    const parent = textEl.parentElement;
    if (parent) {
      for (const node of parent.children) {
        if (node !== textEl && (node.matches(selector) || node.querySelector(selector))) return true;
      }
    }
    const wrapper = textEl.closest('.immersive-translate-target-wrapper, [data-immersive-translate-paragraph]');
    return !!(wrapper && (wrapper.matches(selector) || wrapper.querySelector(selector)));
  }
  return false;
}
"""


class EvaluatingPage(Protocol):
    @property
    def url(self) -> str:
        """Current page URL."""

    def goto(self, url: str, **kwargs: Any) -> Any:
        """Navigate to a URL."""

    def evaluate(self, expression: str, arg: Any = None) -> Any:
        """Run a JavaScript function on page."""


class PlaywrightPageSource:
    """Adapt a Playwright page to the engine's ``PageSource`` protocol."""

    def __init__(
        self,
        page: EvaluatingPage,
        *,
        navigation_timeout_ms: int = 30_000,
        now_ms: Callable[[], float] | None = None,
    ) -> None:
        self._page = page
        self._navigation_timeout_ms = navigation_timeout_ms
        self._now_ms = now_ms or (lambda: time.monotonic() * 1000.0)
        self._observer_installed = False

    @property
    def url(self) -> str:
        return str(self._page.url)

    def observe_posts(self) -> Sequence[ObservedPost]:
        self._ensure_observer()
        raw = self._evaluate(_OBSERVE_POSTS_JS, None, "observe posts")
        if not isinstance(raw, list):
            return ()
        return normalize_observed_batch(raw)

    def activity_pulse(self) -> ActivityPulse:
        self._ensure_observer()
        raw = self._evaluate(_PULSE_JS, list(_END_MARKER_TEXTS), "read activity pulse")
        if not isinstance(raw, dict):
            raise CollectError("Activity pulse returned an unexpected payload.")
        new_node_at: float | None = None
        new_node_mark: float | None = None
        last_new_node = raw.get("lastNewNodeMs")
        page_now = raw.get("pageNowMs")
        if isinstance(last_new_node, (int, float)) and not isinstance(last_new_node, bool):
            new_node_mark = float(last_new_node)
            if isinstance(page_now, (int, float)):
                # Page timestamps use the page clock; shift them onto ours.
                new_node_at = self._now_ms() - max(0.0, float(page_now) - new_node_mark)
        return ActivityPulse(
            scroll_y=float(raw.get("scrollY") or 0.0),
            document_height=float(raw.get("documentHeight") or 0.0),
            new_node_observed_at_ms=new_node_at,
            end_marker_visible=bool(raw.get("endVisible")),
            new_node_mark=new_node_mark,
        )

    def has_overlay_content_for(self, post_id: str) -> bool:
        return bool(
            self._evaluate(_HAS_OVERLAY_JS, [post_id, _TRANSLATION_SELECTOR], "check overlay")
        )

    def overlay_system_active(self) -> bool:
        expression = f"() => !!document.querySelector({_OVERLAY_PRESENCE_SELECTOR!r})"
        return bool(self._evaluate(expression, None, "detect overlay"))

    def scroll_by(self, pixels: int) -> None:
        self._evaluate("(dy) => window.scrollBy(0, dy)", int(pixels), "scroll")

    def navigate(self, url: str) -> None:
        try:
            self._page.goto(url, wait_until="domcontentloaded", timeout=self._navigation_timeout_ms)
        except Exception as exc:
            raise CollectError(f"Could not navigate to '{url}': {exc}") from exc
        self._observer_installed = False
        logger.debug("Navigated to %s", url)

    def wait(self, seconds: float) -> None:
        wait_for_timeout = getattr(self._page, "wait_for_timeout", None)
        if callable(wait_for_timeout):
            wait_for_timeout(max(0.0, seconds) * 1000.0)
            return
        time.sleep(max(0.0, seconds))

    def _ensure_observer(self) -> None:
        if self._observer_installed:
            return
        self._evaluate(_INSTALL_OBSERVER_JS, None, "install mutation observer")
        self._observer_installed = True

    def _evaluate(self, expression: str, arg: Any, action: str) -> Any:
        try:
            if arg is None:
                return self._page.evaluate(expression)
            return self._page.evaluate(expression, arg)
        except Exception as exc:
            raise CollectError(f"Could not {action}: {exc}") from exc
