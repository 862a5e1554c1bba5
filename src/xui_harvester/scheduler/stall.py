"""Auto-stop decisions from per-tick progress and page-activity signals."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import time

from xui_harvester.config import CrawlConfig
from xui_harvester.logging import get_logger
from xui_harvester.scheduler.timing import CancelFn, NowMsFn, SleepFn, monotonic_ms, poll_until

logger = get_logger(__name__)

STOP_END_OF_TIMELINE = "end_of_timeline"
STOP_LOAD_TIMEOUT = "load_wait_timeout"
STOP_STALLED = "stalled"
STOP_CANCELLED = "cancelled"


class StallState(str, Enum):
    RUNNING = "running"
    PAUSED_WAITING_FOR_LOAD = "paused_waiting_for_load"
    STOPPED = "stopped"


@dataclass(frozen=True)
class StallPolicy:
    auto_stop: bool = True
    max_no_new_ticks: int = 12
    end_marker_ticks: int = 4
    pause_after_ticks: int = 2
    pause_threshold_ms: int = 1100
    load_wait_timeout_ms: int = 10_000
    load_poll_ms: int = 100

    @classmethod
    def from_config(cls, config: CrawlConfig) -> StallPolicy:
        return cls(
            auto_stop=config.auto_stop,
            max_no_new_ticks=config.max_no_new_ticks,
            end_marker_ticks=config.end_marker_ticks,
            pause_after_ticks=config.pause_after_ticks,
            pause_threshold_ms=config.pause_threshold_ms,
            load_wait_timeout_ms=config.load_wait_timeout_ms,
            load_poll_ms=config.load_poll_ms,
        )


@dataclass(frozen=True)
class TickSignals:
    new_items_accepted: bool
    scroll_changed: bool
    height_changed: bool
    end_marker_visible: bool = False
    ms_since_last_new_node: float = 0.0

    @property
    def stalled_scroll(self) -> bool:
        return not self.scroll_changed and not self.height_changed


@dataclass(frozen=True)
class StallDecision:
    state: StallState
    no_progress_ticks: int
    stop_reason: str | None = None
    waited_ms: float = 0.0

    @property
    def stopped(self) -> bool:
        return self.state is StallState.STOPPED


class StallDetector:
    """State machine ``RUNNING -> (PAUSED_WAITING_FOR_LOAD) -> RUNNING | STOPPED``.

    ``observe`` is called once per tick. The pause path only applies in
    single-timeline mode and blocks cooperatively until either a new node is
    reported by a change in ``new_node_mark`` or the load wait times
    out. ``STOPPED`` is terminal.
    """

    def __init__(
        self,
        policy: StallPolicy | None = None,
        *,
        single_timeline: bool = False,
        new_node_mark: Callable[[], float | None] | None = None,
        now_ms: NowMsFn | None = None,
        sleep_fn: SleepFn | None = None,
        is_cancelled: CancelFn | None = None,
    ) -> None:
        self.policy = policy or StallPolicy()
        self.single_timeline = single_timeline
        self._new_node_mark = new_node_mark or (lambda: None)
        self._now_ms = now_ms or monotonic_ms
        self._sleep = sleep_fn or time.sleep
        self._is_cancelled = is_cancelled or (lambda: False)
        self._state = StallState.RUNNING
        self._no_progress_ticks = 0
        self._stop_reason: str | None = None

    @property
    def state(self) -> StallState:
        return self._state

    @property
    def no_progress_ticks(self) -> int:
        return self._no_progress_ticks

    @property
    def stop_reason(self) -> str | None:
        return self._stop_reason

    def observe(self, signals: TickSignals, *, gate_open: bool = True) -> StallDecision:
        if self._state is StallState.STOPPED:
            return self._decision()

        if signals.new_items_accepted:
            self._no_progress_ticks = 0
        else:
            self._no_progress_ticks += 1

        if not gate_open:
            # Never give up before the resume cursor has been reached.
            self._no_progress_ticks = 0
            return self._decision()

        if not self.policy.auto_stop:
            return self._decision()

        if signals.end_marker_visible and self._no_progress_ticks >= self.policy.end_marker_ticks:
            return self._stop(STOP_END_OF_TIMELINE)

        if (
            self.single_timeline
            and signals.stalled_scroll
            and self._no_progress_ticks >= self.policy.pause_after_ticks
            and signals.ms_since_last_new_node >= self.policy.pause_threshold_ms
        ):
            return self._wait_for_load()

        if self._no_progress_ticks >= self.policy.max_no_new_ticks and signals.stalled_scroll:
            return self._stop(STOP_STALLED)

        return self._decision()

    def stop(self, reason: str) -> StallDecision:
        if self._state is StallState.STOPPED:
            return self._decision()
        return self._stop(reason)

    def _wait_for_load(self) -> StallDecision:
        self._state = StallState.PAUSED_WAITING_FOR_LOAD
        baseline = self._new_node_mark()
        logger.debug(
            "No new posts for %d ticks; waiting up to %dms for the timeline to load.",
            self._no_progress_ticks,
            self.policy.load_wait_timeout_ms,
        )

        def _new_node_seen() -> bool:
            latest = self._new_node_mark()
            return latest is not None and latest != baseline

        result = poll_until(
            _new_node_seen,
            timeout_ms=self.policy.load_wait_timeout_ms,
            poll_ms=self.policy.load_poll_ms,
            now_ms=self._now_ms,
            sleep_fn=self._sleep,
            is_cancelled=self._is_cancelled,
        )
        if result.cancelled:
            return self._stop(STOP_CANCELLED, waited_ms=result.waited_ms)
        if result.satisfied:
            self._state = StallState.RUNNING
            self._no_progress_ticks = 0
            return self._decision(waited_ms=result.waited_ms)
        return self._stop(STOP_LOAD_TIMEOUT, waited_ms=result.waited_ms)

    def _stop(self, reason: str, *, waited_ms: float = 0.0) -> StallDecision:
        self._state = StallState.STOPPED
        self._stop_reason = reason
        logger.info("Stall detector stopped: %s (no progress for %d ticks).", reason, self._no_progress_ticks)
        return self._decision(waited_ms=waited_ms)

    def _decision(self, *, waited_ms: float = 0.0) -> StallDecision:
        return StallDecision(
            state=self._state,
            no_progress_ticks=self._no_progress_ticks,
            stop_reason=self._stop_reason,
            waited_ms=waited_ms,
        )
