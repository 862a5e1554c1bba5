"""Bounded per-post deferral while a translation overlay attaches."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
import time

from xui_harvester.config import TranslationConfig
from xui_harvester.logging import get_logger
from xui_harvester.scheduler.timing import (
    CancelFn,
    NowMsFn,
    PollResult,
    SleepFn,
    monotonic_ms,
    poll_until,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeferralPolicy:
    enabled: bool = False
    wait_ms: int = 15_000
    poll_ms: int = 50
    max_attempts: int = 25
    stale_multiplier: int = 3
    min_wait_ms: int = 1200

    @property
    def max_wait_ms(self) -> int:
        return max(self.min_wait_ms, self.wait_ms)

    @property
    def stale_after_ms(self) -> int:
        return self.max_wait_ms * self.stale_multiplier

    @classmethod
    def from_config(cls, config: TranslationConfig) -> DeferralPolicy:
        return cls(
            enabled=config.wait_for_overlay,
            wait_ms=config.wait_ms,
            poll_ms=config.poll_ms,
            max_attempts=config.max_attempts,
            stale_multiplier=config.stale_multiplier,
            min_wait_ms=config.min_wait_ms,
        )


@dataclass
class DeferralEntry:
    first_seen_ms: float
    attempts: int = 0


class DeferralScheduler:
    """Track deferred posts and decide when to stop waiting for their overlay."""

    def __init__(
        self,
        policy: DeferralPolicy | None = None,
        *,
        now_ms: NowMsFn | None = None,
        sleep_fn: SleepFn | None = None,
        is_cancelled: CancelFn | None = None,
    ) -> None:
        self.policy = policy or DeferralPolicy()
        self._now_ms = now_ms or monotonic_ms
        self._sleep = sleep_fn or time.sleep
        self._is_cancelled = is_cancelled or (lambda: False)
        self._entries: dict[str, DeferralEntry] = {}

    def should_defer(
        self,
        post_id: str,
        has_overlay_content_now: bool,
        *,
        overlay_active: bool = True,
    ) -> bool:
        if not self.policy.enabled or not overlay_active or has_overlay_content_now:
            return False

        now = self._now_ms()
        entry = self._entries.get(post_id)
        if entry is None or now - entry.first_seen_ms > self.policy.stale_after_ms:
            # Re-rendered after being unloaded: start a fresh window.
            entry = DeferralEntry(first_seen_ms=now)
            self._entries[post_id] = entry
        entry.attempts += 1

        elapsed = now - entry.first_seen_ms
        if elapsed <= self.policy.max_wait_ms and entry.attempts <= self.policy.max_attempts:
            return True
        logger.debug(
            "Giving up on overlay for %s after %d attempts / %.0fms.",
            post_id,
            entry.attempts,
            elapsed,
        )
        return False

    def discard(self, post_id: str) -> None:
        self._entries.pop(post_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def entry(self, post_id: str) -> DeferralEntry | None:
        return self._entries.get(post_id)

    def is_expired(self, post_id: str) -> bool:
        """A deferred post whose wait window ran out; the next extract accepts it untranslated."""
        entry = self._entries.get(post_id)
        return entry is not None and self._now_ms() - entry.first_seen_ms > self.policy.max_wait_ms

    def pending_ids(self) -> tuple[str, ...]:
        """Deferred ids still inside their wait window, in first-deferral order."""
        now = self._now_ms()
        return tuple(
            post_id
            for post_id, entry in self._entries.items()
            if now - entry.first_seen_ms <= self.policy.max_wait_ms
        )

    def drop_stale(self) -> int:
        now = self._now_ms()
        stale = [
            post_id
            for post_id, entry in self._entries.items()
            if now - entry.first_seen_ms > self.policy.stale_after_ms
        ]
        for post_id in stale:
            del self._entries[post_id]
        return len(stale)

    def settle(
        self,
        pending_ids: Iterable[str],
        has_overlay_content: Callable[[str], bool],
        *,
        poll_ms: float | None = None,
        max_wait_ms: float | None = None,
    ) -> PollResult:
        """Wait until every pending id shows overlay content or ages out of its window.

        Bounded by ``max_wait_ms`` (the policy's per-post window by default).
        """
        remaining = list(dict.fromkeys(pending_ids))

        def _all_landed() -> bool:
            remaining[:] = [
                post_id
                for post_id in remaining
                if not has_overlay_content(post_id) and not self.is_expired(post_id)
            ]
            return not remaining

        return poll_until(
            _all_landed,
            timeout_ms=self.policy.max_wait_ms if max_wait_ms is None else max_wait_ms,
            poll_ms=self.policy.poll_ms if poll_ms is None else poll_ms,
            now_ms=self._now_ms,
            sleep_fn=self._sleep,
            is_cancelled=self._is_cancelled,
        )

    def wait_for_any_overlay(
        self,
        candidate_ids: Iterable[str],
        has_overlay_content: Callable[[str], bool],
        overlay_active: Callable[[], bool],
    ) -> PollResult:
        """After a scroll, give the overlay a bounded chance to land on any fresh post."""
        candidates = list(dict.fromkeys(candidate_ids))
        if not self.policy.enabled or not candidates:
            return PollResult(satisfied=True, waited_ms=0.0)

        def _landed_or_inactive() -> bool:
            if not overlay_active():
                return True
            return any(has_overlay_content(post_id) for post_id in candidates)

        return poll_until(
            _landed_or_inactive,
            timeout_ms=self.policy.max_wait_ms,
            poll_ms=self.policy.poll_ms,
            now_ms=self._now_ms,
            sleep_fn=self._sleep,
            is_cancelled=self._is_cancelled,
        )
