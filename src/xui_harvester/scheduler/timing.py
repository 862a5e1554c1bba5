"""Clock aliases and the cooperative bounded-poll helper shared by waits."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import time

NowMsFn = Callable[[], float]
SleepFn = Callable[[float], None]
CancelFn = Callable[[], bool]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class PollResult:
    satisfied: bool
    waited_ms: float
    cancelled: bool = False


def poll_until(
    predicate: Callable[[], bool],
    *,
    timeout_ms: float,
    poll_ms: float,
    now_ms: NowMsFn,
    sleep_fn: SleepFn,
    is_cancelled: CancelFn | None = None,
) -> PollResult:
    """Poll ``predicate`` every ``poll_ms`` until it holds or ``timeout_ms`` elapses.

    The deadline is measured from the start of this call and is never extended.
    Cancellation is checked before each condition check.
    """
    started = now_ms()
    cancelled = is_cancelled or (lambda: False)
    interval = max(1.0, float(poll_ms))
    while True:
        if cancelled():
            return PollResult(satisfied=False, waited_ms=now_ms() - started, cancelled=True)
        if predicate():
            return PollResult(satisfied=True, waited_ms=now_ms() - started)
        elapsed = now_ms() - started
        remaining = timeout_ms - elapsed
        if remaining <= 0:
            return PollResult(satisfied=False, waited_ms=elapsed)
        sleep_fn(min(interval, remaining) / 1000.0)
