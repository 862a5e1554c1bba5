"""Tick-driven harvest engine: scroll, extract, dedupe, defer and auto-stop."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
import time
from typing import Any

from xui_harvester.collectors.base import PageSource
from xui_harvester.collectors.context import run_context_from_url
from xui_harvester.config import RuntimeConfig
from xui_harvester.diagnostics.events import JsonlEventLogger, RunEventType, safe_append
from xui_harvester.errors import CollectError, CrawlError
from xui_harvester.logging import get_logger
from xui_harvester.models import ActivityPulse, ObservedPost, OutputRow, PageMode, RunContext
from xui_harvester.reconstruct.threads import flat_rows, reconstruct
from xui_harvester.scheduler.deferral import DeferralPolicy, DeferralScheduler
from xui_harvester.scheduler.orchestrator import CrawlOrchestrator
from xui_harvester.scheduler.stall import (
    STOP_CANCELLED,
    StallDecision,
    StallDetector,
    StallPolicy,
    TickSignals,
)
from xui_harvester.scheduler.timing import NowMsFn, SleepFn, monotonic_ms
from xui_harvester.store.checkpoints import CheckpointStore

logger = get_logger(__name__)

STOP_MANUAL = "manual_stop"
STOP_TICK_BUDGET = "tick_budget"
STOP_INTERRUPTED = "interrupted"

_OVERLAY_CANDIDATE_LIMIT = 12

FinalizedFn = Callable[[tuple[OutputRow, ...]], None]


class EngineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    WAITING_INITIAL_DELAY = "waiting_initial_delay"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class EngineSettings:
    tick_ms: int = 600
    scroll_step_px: int = 1200
    status_initial_delay_ms: int = 2000
    stall: StallPolicy = field(default_factory=StallPolicy)
    deferral: DeferralPolicy = field(default_factory=DeferralPolicy)

    @classmethod
    def from_config(cls, config: RuntimeConfig, *, wait_for_overlay: bool | None = None) -> EngineSettings:
        deferral = DeferralPolicy.from_config(config.translation)
        if wait_for_overlay is not None:
            deferral = replace(deferral, enabled=wait_for_overlay)
        return cls(
            tick_ms=config.crawl.tick_ms,
            scroll_step_px=config.crawl.scroll_step_px,
            status_initial_delay_ms=config.crawl.status_initial_delay_ms,
            stall=StallPolicy.from_config(config.crawl),
            deferral=deferral,
        )


@dataclass(frozen=True)
class RunStatus:
    state: EngineState
    message: str = ""
    accepted: int = 0
    deferred: int = 0
    no_progress_ticks: int = 0
    stop_reason: str | None = None


@dataclass(frozen=True)
class TickOutcome:
    ran: bool
    accepted: int = 0
    deferred: int = 0
    decision: StallDecision | None = None
    error: str | None = None


@dataclass(frozen=True)
class HarvestResult:
    context: RunContext
    rows: tuple[OutputRow, ...]
    accepted: int
    ticks: int
    stop_reason: str | None
    finalized: bool


StateChangedFn = Callable[[RunStatus], None]


class HarvestEngine:
    """Drive one page's harvest run, one cooperative tick at a time.

    Accepted posts accumulate in a run buffer in DOM order. When the stall
    detector stops (or a stop is requested) the buffer is reconstructed into
    output rows exactly once and handed to ``on_finalized``. When the page is
    the active target of a crawl run, the orchestrator is told to advance.
    """

    def __init__(
        self,
        source: PageSource,
        checkpoints: CheckpointStore,
        *,
        settings: EngineSettings | None = None,
        context: RunContext | None = None,
        orchestrator: CrawlOrchestrator | None = None,
        on_finalized: FinalizedFn | None = None,
        on_state_changed: StateChangedFn | None = None,
        now_ms: NowMsFn | None = None,
        sleep_fn: SleepFn | None = None,
        event_logger: JsonlEventLogger | None = None,
        run_id: str = "harvest",
    ) -> None:
        self._source = source
        self._checkpoints = checkpoints
        self.settings = settings or EngineSettings()
        self._context = context
        self._orchestrator = orchestrator
        self._on_finalized = on_finalized
        self._on_state_changed = on_state_changed
        self._now_ms = now_ms or monotonic_ms
        self._sleep = sleep_fn or time.sleep
        self._event_logger = event_logger
        self._run_id = run_id

        self._deferral = DeferralScheduler(
            self.settings.deferral,
            now_ms=self._now_ms,
            sleep_fn=self._sleep,
            is_cancelled=self._is_cancelled,
        )
        self._stall: StallDetector | None = None
        self._buffer: list[ObservedPost] = []
        self._rows: tuple[OutputRow, ...] = ()
        self._accepted_total = 0
        self._state = EngineState.IDLE
        self._started = False
        self._tick_in_progress = False
        self._stop_requested = False
        self._cancel_all = False
        self._search_target = False
        self._delay_until: float | None = None
        self._last_scroll_y: float | None = None
        self._last_height: float | None = None
        self._last_new_node_ms = 0.0
        self._last_new_node_mark: float | None = None
        self._stop_reason: str | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def context(self) -> RunContext:
        if self._context is None:
            self._context = run_context_from_url(self._source.url)
        return self._context

    @property
    def buffer(self) -> tuple[ObservedPost, ...]:
        return tuple(self._buffer)

    @property
    def deferral(self) -> DeferralScheduler:
        return self._deferral

    @property
    def rows(self) -> tuple[OutputRow, ...]:
        return self._rows

    @property
    def accepted_count(self) -> int:
        return self._accepted_total

    @property
    def stop_reason(self) -> str | None:
        return self._stop_reason

    @property
    def finished(self) -> bool:
        return self._state in (EngineState.FINALIZED, EngineState.CANCELLED)

    @property
    def is_search_target(self) -> bool:
        return self._search_target

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        context = self.context
        is_status = context.mode is PageMode.STATUS
        self._checkpoints.begin_run(gate_enabled=not is_status)
        self._stall = StallDetector(
            self.settings.stall,
            single_timeline=context.mode is PageMode.WITH_REPLIES,
            new_node_mark=self._current_new_node_mark,
            now_ms=self._now_ms,
            sleep_fn=self._sleep,
            is_cancelled=self._is_cancelled,
        )
        self._search_target = self._orchestrator is not None and self._orchestrator.is_active_target(
            self._source.url
        )
        now = self._now_ms()
        self._last_new_node_ms = now
        if is_status and self._search_target:
            self._delay_until = now + self.settings.status_initial_delay_ms
            self._state = EngineState.WAITING_INITIAL_DELAY
        else:
            self._state = EngineState.RUNNING
        self._log_event(RunEventType.RUN_STARTED, {"mode": context.mode.value, "search_target": self._search_target})
        self._emit(f"Harvesting {context.mode.value} page. {self._checkpoints.status_text()}")

    def tick(self) -> TickOutcome:
        """Run one tick. Re-entrant calls and calls after finalize are no-ops."""
        if self.finished or self._tick_in_progress:
            return TickOutcome(ran=False)
        if not self._started:
            self.start()
        self._tick_in_progress = True
        try:
            if self._stop_requested:
                self._finalize(STOP_MANUAL)
                return TickOutcome(ran=True)
            if self._delay_until is not None:
                if self._now_ms() < self._delay_until:
                    return TickOutcome(ran=False)
                self._delay_until = None
                self._state = EngineState.RUNNING
            self._checkpoints.poll_pending_save()
            return self._run_tick()
        except Exception as exc:
            logger.exception("Harvest tick failed.")
            self._emit(f"Tick failed: {exc}")
            return TickOutcome(ran=True, error=str(exc))
        finally:
            self._tick_in_progress = False

    def run(self, max_ticks: int | None = None) -> HarvestResult:
        """Tick at ``tick_ms`` pacing until the run finalizes or is cancelled."""
        self.start()
        ticks = 0
        try:
            while not self.finished:
                started = self._now_ms()
                outcome = self.tick()
                if outcome.ran:
                    ticks += 1
                if self.finished:
                    break
                if max_ticks is not None and ticks >= max_ticks:
                    self._finalize(STOP_TICK_BUDGET)
                    break
                elapsed = self._now_ms() - started
                self._sleep(max(0.0, self.settings.tick_ms - elapsed) / 1000.0)
        except KeyboardInterrupt:
            if self._search_target:
                self._pause_crawl()
            self._finalize(STOP_INTERRUPTED)
        return HarvestResult(
            context=self.context,
            rows=self._rows,
            accepted=self._accepted_total,
            ticks=ticks,
            stop_reason=self._stop_reason,
            finalized=self._state is EngineState.FINALIZED,
        )

    def request_stop(self, *, cancel_all: bool = False) -> tuple[OutputRow, ...] | None:
        """Finalize now, or at the start of the next tick when one is running."""
        if self.finished:
            return None
        self._cancel_all = self._cancel_all or cancel_all
        if self._tick_in_progress:
            self._stop_requested = True
            return None
        if not self._started:
            self.start()
        return self._finalize(STOP_MANUAL)

    def cancel(self) -> None:
        """Abandon the run without emitting output."""
        if self.finished:
            return
        self._state = EngineState.CANCELLED
        self._stop_reason = STOP_CANCELLED
        self._deferral.clear()
        self._buffer.clear()
        self._checkpoints.flush()
        self._log_event(RunEventType.RUN_CANCELLED, {})
        self._emit("Harvest cancelled.")

    def _run_tick(self) -> TickOutcome:
        stall = self._stall
        if stall is None:
            raise CrawlError("Harvest engine did not start cleanly; no stall detector.")
        before = self._pulse()
        if self._last_scroll_y is None and before is not None:
            self._last_scroll_y = before.scroll_y
            self._last_height = before.document_height
        buffer_before = len(self._buffer)

        self._settle_outstanding()
        self._source.scroll_by(self.settings.scroll_step_px)
        self._wait_for_overlay_after_scroll()

        accepted, deferred = self._extract()
        if deferred:
            self._emit(f"Waiting for translation on {deferred} posts.", deferred=deferred)
            self._settle_outstanding()
            accepted_again, deferred = self._extract()
            accepted += accepted_again

        after = self._pulse()
        did_scroll = False
        did_grow = False
        if after is not None:
            did_scroll = before is not None and after.scroll_y != before.scroll_y
            did_grow = before is not None and after.document_height != before.document_height
            did_scroll = did_scroll or after.scroll_y != self._last_scroll_y
            did_grow = did_grow or after.document_height != self._last_height
            if after.new_node_mark is not None and after.new_node_mark != self._last_new_node_mark:
                self._last_new_node_mark = after.new_node_mark
                if after.new_node_observed_at_ms is not None:
                    self._last_new_node_ms = max(self._last_new_node_ms, after.new_node_observed_at_ms)
            self._last_scroll_y = after.scroll_y
            self._last_height = after.document_height
        now = self._now_ms()
        if did_grow:
            self._last_new_node_ms = now

        signals = TickSignals(
            new_items_accepted=len(self._buffer) > buffer_before,
            scroll_changed=did_scroll,
            height_changed=did_grow,
            end_marker_visible=bool(after and after.end_marker_visible),
            ms_since_last_new_node=max(0.0, now - self._last_new_node_ms),
        )
        decision = stall.observe(signals, gate_open=self._checkpoints.gate_open)
        if decision.stopped:
            self._finalize(decision.stop_reason or STOP_MANUAL)
        else:
            self._emit(
                f"Harvesting: {self._accepted_total} posts.",
                deferred=deferred,
                no_progress_ticks=decision.no_progress_ticks,
            )
        return TickOutcome(ran=True, accepted=accepted, deferred=deferred, decision=decision)

    def _extract(self) -> tuple[int, int]:
        posts = self._source.observe_posts()
        overlay_active = self._deferral.policy.enabled and self._source.overlay_system_active()
        accepted = 0
        deferred = 0
        for post in posts:
            try:
                outcome = self._consider(post, overlay_active)
            except Exception:
                logger.exception("Skipping post %s after an extraction failure.", post.post_id)
                continue
            if outcome == "accepted":
                accepted += 1
            elif outcome == "deferred":
                deferred += 1
        return accepted, deferred

    def _consider(self, post: ObservedPost, overlay_active: bool) -> str:
        post_id = post.post_id
        if post.is_repost or not post_id:
            return "skipped"
        if not self._checkpoints.is_gate_open(post_id):
            return "skipped"
        if self._checkpoints.is_cursor_skip(post_id):
            return "skipped"
        if not self._checkpoints.should_accept(post_id):
            return "skipped"

        has_overlay = overlay_active and self._source.has_overlay_content_for(post_id)
        if self._deferral.should_defer(post_id, has_overlay, overlay_active=overlay_active):
            return "deferred"

        self._buffer.append(replace(post, is_translated=has_overlay))
        self._accepted_total += 1
        # Untranslated accepts stay unremembered so a later run can pick up the translation.
        self._checkpoints.mark_accepted(post_id, remember=not overlay_active or has_overlay)
        self._deferral.discard(post_id)
        return "accepted"

    def _settle_outstanding(self) -> None:
        dropped = self._deferral.drop_stale()
        if dropped:
            logger.debug("Dropped %d stale translation deferrals.", dropped)
        pending = [
            post_id for post_id in self._deferral.pending_ids() if self._checkpoints.should_accept(post_id)
        ]
        if pending:
            self._deferral.settle(pending, self._source.has_overlay_content_for)

    def _wait_for_overlay_after_scroll(self) -> None:
        if not self._deferral.policy.enabled or not self._source.overlay_system_active():
            return
        candidates = [
            post.post_id
            for post in self._source.observe_posts()
            if not post.is_repost
            and self._checkpoints.should_accept(post.post_id)
            and not self._deferral.is_expired(post.post_id)
        ][:_OVERLAY_CANDIDATE_LIMIT]
        self._deferral.wait_for_any_overlay(
            candidates,
            self._source.has_overlay_content_for,
            self._source.overlay_system_active,
        )

    def _finalize(self, reason: str) -> tuple[OutputRow, ...] | None:
        if self._state is EngineState.FINALIZED:
            return None
        self._state = EngineState.FINALIZED
        self._stop_reason = reason
        if self._stall is not None:
            self._stall.stop(reason)
        context = self.context

        if context.mode is PageMode.STATUS and not self._buffer:
            self._capture_status_fallback()
        if context.mode is not PageMode.STATUS and self._buffer:
            self._checkpoints.set_resume_cursor(self._buffer[-1].post_id, exclusive=True)

        try:
            rows = reconstruct(self._buffer, context)
        except Exception:
            logger.exception("Thread reconstruction failed; emitting posts unthreaded.")
            rows = flat_rows(self._buffer)
        self._rows = rows
        self._checkpoints.flush()
        self._log_event(RunEventType.FINALIZED, {"reason": reason, "accepted": self._accepted_total, "rows": len(rows)})
        self._emit(f"Finished ({reason}): {len(rows)} rows.")

        if self._on_finalized is not None:
            try:
                self._on_finalized(rows)
            except Exception:
                logger.exception("Output handler failed after finalize.")

        self._hand_off()
        self._buffer.clear()
        self._deferral.clear()
        return rows

    def _capture_status_fallback(self) -> None:
        """Take whatever is visible when a status page never produced an accept."""
        try:
            posts = self._source.observe_posts()
            overlay_active = self._deferral.policy.enabled and self._source.overlay_system_active()
        except CollectError as exc:
            logger.warning("Status page fallback capture failed: %s", exc)
            return
        seen: set[str] = set()
        for post in posts:
            if post.is_repost or not post.post_id or post.post_id in seen:
                continue
            seen.add(post.post_id)
            try:
                has_overlay = overlay_active and self._source.has_overlay_content_for(post.post_id)
            except CollectError as exc:
                logger.debug("Overlay check failed for %s: %s", post.post_id, exc)
                has_overlay = False
            self._buffer.append(replace(post, is_translated=has_overlay))
            self._checkpoints.mark_accepted(post.post_id, remember=not overlay_active or has_overlay)
        self._accepted_total += len(seen)

    def _hand_off(self) -> None:
        orchestrator = self._orchestrator
        if orchestrator is None or not self._search_target:
            return
        try:
            orchestrator.record_aggregate(self._buffer)
            if self._cancel_all:
                orchestrator.cancel()
                return
            result = orchestrator.advance(self._source.url)
        except CrawlError as exc:
            logger.warning("Crawl hand-off skipped: %s", exc)
            return
        self._log_event(
            RunEventType.CRAWL_HANDOFF,
            {"state": result.state.value, "index": result.index, "resolved": result.resolved},
        )

    def _pause_crawl(self) -> None:
        if self._orchestrator is None:
            return
        try:
            self._orchestrator.pause()
        except CrawlError as exc:
            logger.warning("Could not pause the crawl run after an interrupt: %s", exc)

    def _pulse(self) -> ActivityPulse | None:
        try:
            return self._source.activity_pulse()
        except CollectError as exc:
            logger.debug("Activity pulse unavailable: %s", exc)
            return None

    def _current_new_node_mark(self) -> float | None:
        pulse = self._pulse()
        return None if pulse is None else pulse.new_node_mark

    def _is_cancelled(self) -> bool:
        return self._state is EngineState.CANCELLED or self._stop_requested

    def _emit(
        self,
        message: str,
        *,
        deferred: int = 0,
        no_progress_ticks: int = 0,
    ) -> None:
        status = RunStatus(
            state=self._state,
            message=message,
            accepted=self._accepted_total,
            deferred=deferred,
            no_progress_ticks=no_progress_ticks,
            stop_reason=self._stop_reason,
        )
        logger.debug("%s", message)
        if self._on_state_changed is not None:
            try:
                self._on_state_changed(status)
            except Exception:
                logger.exception("Run state listener failed.")

    def _log_event(self, event_type: RunEventType, payload: dict[str, Any]) -> None:
        safe_append(
            self._event_logger,
            event_type,
            run_id=self._run_id,
            page_url=self._source.url,
            payload=payload,
        )
