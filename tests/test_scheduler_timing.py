"""Bounded polling and the deterministic clock helpers."""

from __future__ import annotations

import pytest

from xui_harvester.scheduler.timing import poll_until
from xui_harvester.testing import ManualClock, SleepRecorder


def test_poll_until_returns_immediately_when_predicate_holds() -> None:
    clock = ManualClock()
    result = poll_until(lambda: True, timeout_ms=500, poll_ms=50, now_ms=clock.now_ms, sleep_fn=clock.sleep)
    assert result.satisfied is True
    assert result.waited_ms == 0
    assert clock.sleeps == []


def test_poll_until_times_out_without_extending_deadline() -> None:
    clock = ManualClock()
    result = poll_until(lambda: False, timeout_ms=250, poll_ms=100, now_ms=clock.now_ms, sleep_fn=clock.sleep)
    assert result.satisfied is False
    assert result.cancelled is False
    assert result.waited_ms == 250
    assert clock.sleeps == [0.1, 0.1, 0.05]


def test_poll_until_sees_state_change_made_during_sleep() -> None:
    flags = {"ready": False}

    def _flip(clock: ManualClock) -> None:
        if clock.now >= 300:
            flags["ready"] = True

    clock = ManualClock(on_sleep=_flip)
    result = poll_until(
        lambda: flags["ready"], timeout_ms=1000, poll_ms=100, now_ms=clock.now_ms, sleep_fn=clock.sleep
    )
    assert result.satisfied is True
    assert result.waited_ms == 300


def test_poll_until_honours_cancellation_before_checking() -> None:
    checks: list[int] = []

    def _check() -> bool:
        checks.append(1)
        return False

    clock = ManualClock()
    result = poll_until(
        _check,
        timeout_ms=1000,
        poll_ms=100,
        now_ms=clock.now_ms,
        sleep_fn=clock.sleep,
        is_cancelled=lambda: True,
    )
    assert result.cancelled is True
    assert result.satisfied is False
    assert checks == []


def test_manual_clock_rejects_negative_advance() -> None:
    clock = ManualClock(now=10.0)
    assert clock.advance(5) == 15.0
    with pytest.raises(ValueError, match="backwards"):
        clock.advance(-1)


def test_sleep_recorder_totals_requested_sleeps() -> None:
    recorder = SleepRecorder()
    recorder(0.25)
    recorder(0.5)
    assert recorder.calls == [0.25, 0.5]
    assert recorder.total_ms == 750.0
