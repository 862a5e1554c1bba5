"""Per-post translation-overlay deferral windows."""

from __future__ import annotations

from xui_harvester.config import TranslationConfig
from xui_harvester.scheduler.deferral import DeferralPolicy, DeferralScheduler
from xui_harvester.testing import ManualClock

POLICY = DeferralPolicy(enabled=True, wait_ms=1000, min_wait_ms=500, poll_ms=100)


def test_disabled_or_inactive_overlay_never_defers() -> None:
    clock = ManualClock()
    disabled = DeferralScheduler(DeferralPolicy(enabled=False), now_ms=clock.now_ms)
    assert disabled.should_defer("1", False) is False

    scheduler = DeferralScheduler(POLICY, now_ms=clock.now_ms)
    assert scheduler.should_defer("1", False, overlay_active=False) is False
    assert scheduler.should_defer("1", True) is False
    assert scheduler.entry("1") is None


def test_defer_window_expires_and_restarts_after_going_stale() -> None:
    clock = ManualClock()
    scheduler = DeferralScheduler(POLICY, now_ms=clock.now_ms)

    assert scheduler.should_defer("1", False) is True
    clock.advance(1000)
    assert scheduler.should_defer("1", False) is True
    clock.advance(1)
    assert scheduler.should_defer("1", False) is False

    clock.advance(3000)
    assert scheduler.should_defer("1", False) is True
    entry = scheduler.entry("1")
    assert entry is not None
    assert entry.attempts == 1
    assert entry.first_seen_ms == 4001


def test_defer_gives_up_after_max_attempts() -> None:
    clock = ManualClock()
    scheduler = DeferralScheduler(
        DeferralPolicy(enabled=True, wait_ms=1000, min_wait_ms=500, max_attempts=2),
        now_ms=clock.now_ms,
    )
    assert [scheduler.should_defer("1", False) for _ in range(3)] == [True, True, False]


def test_max_wait_never_drops_below_minimum() -> None:
    policy = DeferralPolicy(enabled=True, wait_ms=100, min_wait_ms=1200, stale_multiplier=3)
    assert policy.max_wait_ms == 1200
    assert policy.stale_after_ms == 3600


def test_pending_ids_expiry_and_drop_stale() -> None:
    clock = ManualClock()
    scheduler = DeferralScheduler(POLICY, now_ms=clock.now_ms)
    scheduler.should_defer("a", False)
    clock.advance(500)
    scheduler.should_defer("b", False)
    assert scheduler.pending_ids() == ("a", "b")

    clock.advance(600)
    assert scheduler.pending_ids() == ("b",)
    assert scheduler.is_expired("a") is True
    assert scheduler.is_expired("b") is False
    assert scheduler.is_expired("never-deferred") is False
    assert scheduler.drop_stale() == 0

    clock.advance(2000)
    assert scheduler.drop_stale() == 1
    assert scheduler.entry("a") is None

    scheduler.discard("b")
    assert scheduler.pending_ids() == ()


def test_settle_waits_until_every_pending_post_has_overlay() -> None:
    landed: set[str] = set()

    def _land(clock: ManualClock) -> None:
        landed.add("a" if len(clock.sleeps) == 1 else "b")

    clock = ManualClock(on_sleep=_land)
    scheduler = DeferralScheduler(POLICY, now_ms=clock.now_ms, sleep_fn=clock.sleep)
    result = scheduler.settle(["a", "b", "a"], lambda post_id: post_id in landed)
    assert result.satisfied is True
    assert result.waited_ms == 200


def test_settle_is_bounded() -> None:
    clock = ManualClock()
    scheduler = DeferralScheduler(POLICY, now_ms=clock.now_ms, sleep_fn=clock.sleep)
    result = scheduler.settle(["a"], lambda _post_id: False, max_wait_ms=300)
    assert result.satisfied is False
    assert result.waited_ms == 300


def test_wait_for_any_overlay_stops_when_overlay_goes_inactive() -> None:
    clock = ManualClock()
    scheduler = DeferralScheduler(POLICY, now_ms=clock.now_ms, sleep_fn=clock.sleep)
    result = scheduler.wait_for_any_overlay(["a"], lambda _post_id: False, lambda: False)
    assert result.satisfied is True
    assert clock.sleeps == []

    disabled = DeferralScheduler(DeferralPolicy(enabled=False), now_ms=clock.now_ms)
    assert disabled.wait_for_any_overlay(["a"], lambda _post_id: False, lambda: True).waited_ms == 0.0


def test_wait_for_any_overlay_reports_cancellation() -> None:
    clock = ManualClock()
    scheduler = DeferralScheduler(
        POLICY, now_ms=clock.now_ms, sleep_fn=clock.sleep, is_cancelled=lambda: True
    )
    result = scheduler.wait_for_any_overlay(["a"], lambda _post_id: False, lambda: True)
    assert result.cancelled is True


def test_policy_from_config() -> None:
    policy = DeferralPolicy.from_config(TranslationConfig(wait_for_overlay=True, wait_ms=12_000))
    assert policy.enabled is True
    assert policy.max_wait_ms == 12_000


def test_settle_returns_once_deferred_posts_age_out() -> None:
    clock = ManualClock()
    scheduler = DeferralScheduler(POLICY, now_ms=clock.now_ms, sleep_fn=clock.sleep)
    scheduler.should_defer("a", False)
    clock.advance(400)
    result = scheduler.settle(["a"], lambda _post_id: False)
    assert result.satisfied is True
    assert result.waited_ms == 700
