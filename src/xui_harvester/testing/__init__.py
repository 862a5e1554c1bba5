"""Test-only utilities for deterministic timing and page assertions."""

from .fake_page import FakePageSource
from .time_control import ManualClock, SleepRecorder

__all__ = ["FakePageSource", "ManualClock", "SleepRecorder"]
