"""Stall detector transitions for scrolling timelines."""

from __future__ import annotations

from xui_harvester.config import CrawlConfig
from xui_harvester.scheduler.stall import (
    STOP_CANCELLED,
    STOP_END_OF_TIMELINE,
    STOP_LOAD_TIMEOUT,
    STOP_STALLED,
    StallDetector,
    StallPolicy,
    StallState,
    TickSignals,
)
from xui_harvester.testing import ManualClock

STUCK = TickSignals(new_items_accepted=False, scroll_changed=False, height_changed=False)
SCROLLING = TickSignals(new_items_accepted=False, scroll_changed=True, height_changed=False)
PROGRESS = TickSignals(new_items_accepted=True, scroll_changed=True, height_changed=True)


def test_new_items_reset_the_no_progress_counter() -> None:
    detector = StallDetector()
    detector.observe(STUCK)
    detector.observe(STUCK)
    assert detector.no_progress_ticks == 2
    decision = detector.observe(PROGRESS)
    assert decision.no_progress_ticks == 0
    assert decision.state is StallState.RUNNING


def test_stops_after_max_no_new_ticks_with_stalled_scroll() -> None:
    detector = StallDetector(StallPolicy(max_no_new_ticks=3))
    decisions = [detector.observe(STUCK) for _ in range(3)]
    assert [decision.stopped for decision in decisions] == [False, False, True]
    assert decisions[-1].stop_reason == STOP_STALLED


def test_moving_scroll_is_not_a_stall() -> None:
    detector = StallDetector(StallPolicy(max_no_new_ticks=3))
    for _ in range(10):
        decision = detector.observe(SCROLLING)
    assert decision.stopped is False
    assert decision.no_progress_ticks == 10


def test_end_marker_stops_after_four_empty_ticks() -> None:
    detector = StallDetector()
    signals = TickSignals(
        new_items_accepted=False, scroll_changed=True, height_changed=False, end_marker_visible=True
    )
    decisions = [detector.observe(signals) for _ in range(4)]
    assert [decision.stopped for decision in decisions] == [False, False, False, True]
    assert detector.stop_reason == STOP_END_OF_TIMELINE


def test_closed_gate_never_stops() -> None:
    detector = StallDetector(StallPolicy(max_no_new_ticks=2))
    for _ in range(20):
        decision = detector.observe(STUCK, gate_open=False)
    assert decision.state is StallState.RUNNING
    assert decision.no_progress_ticks == 0


def test_auto_stop_disabled_keeps_running() -> None:
    detector = StallDetector(StallPolicy(auto_stop=False, max_no_new_ticks=2))
    for _ in range(5):
        decision = detector.observe(STUCK)
    assert decision.stopped is False


def _idle(ms: float) -> TickSignals:
    return TickSignals(
        new_items_accepted=False, scroll_changed=False, height_changed=False, ms_since_last_new_node=ms
    )


def test_single_timeline_pauses_and_resumes_when_new_node_arrives() -> None:
    last_node = {"at": 0.0}

    def _new_node(clock: ManualClock) -> None:
        if clock.now >= 300:
            last_node["at"] = clock.now

    clock = ManualClock(on_sleep=_new_node)
    detector = StallDetector(
        single_timeline=True,
        new_node_mark=lambda: last_node["at"],
        now_ms=clock.now_ms,
        sleep_fn=clock.sleep,
    )
    assert detector.observe(_idle(1500)).state is StallState.RUNNING
    decision = detector.observe(_idle(1500))
    assert decision.state is StallState.RUNNING
    assert decision.no_progress_ticks == 0
    assert decision.waited_ms == 300


def test_single_timeline_wait_times_out() -> None:
    clock = ManualClock()
    detector = StallDetector(
        StallPolicy(load_wait_timeout_ms=500),
        single_timeline=True,
        new_node_mark=lambda: 0.0,
        now_ms=clock.now_ms,
        sleep_fn=clock.sleep,
    )
    detector.observe(_idle(1200))
    decision = detector.observe(_idle(1200))
    assert decision.stopped is True
    assert decision.stop_reason == STOP_LOAD_TIMEOUT
    assert decision.waited_ms == 500


def test_recent_new_node_does_not_trigger_load_wait() -> None:
    clock = ManualClock()
    detector = StallDetector(single_timeline=True, now_ms=clock.now_ms, sleep_fn=clock.sleep)
    for _ in range(3):
        decision = detector.observe(_idle(200))
    assert decision.state is StallState.RUNNING
    assert clock.sleeps == []


def test_cancel_during_load_wait() -> None:
    clock = ManualClock()
    detector = StallDetector(
        single_timeline=True,
        now_ms=clock.now_ms,
        sleep_fn=clock.sleep,
        is_cancelled=lambda: True,
    )
    detector.observe(_idle(2000))
    decision = detector.observe(_idle(2000))
    assert decision.stop_reason == STOP_CANCELLED


def test_stopped_is_terminal() -> None:
    detector = StallDetector()
    first = detector.stop("manual_stop")
    assert first.stopped is True
    assert detector.stop("other").stop_reason == "manual_stop"
    assert detector.observe(PROGRESS).stop_reason == "manual_stop"


def test_policy_from_config() -> None:
    policy = StallPolicy.from_config(CrawlConfig(max_no_new_ticks=7, auto_stop=False))
    assert policy.max_no_new_ticks == 7
    assert policy.auto_stop is False
