"""Multi-page crawl queue, advance, pause and completion behavior."""

from __future__ import annotations

from typing import Any

import pytest

from xui_harvester.errors import CrawlError
from xui_harvester.models import Aggregate, ObservedPost
from xui_harvester.scheduler.orchestrator import CrawlOrchestrator, CrawlState, CrawlStatus
from xui_harvester.store import records
from xui_harvester.store.base import AGGREGATE_KEY, CRAWL_RUN_KEY, REMEMBERED_IDS_KEY
from xui_harvester.store.checkpoints import CheckpointStore
from xui_harvester.store.memory import MemoryStateStore

ORIGIN = "https://x.com/search?q=from%3Abob&f=live"


def status(post_id: str) -> str:
    return f"https://x.com/i/web/status/{post_id}"


class Recorder:
    def __init__(self) -> None:
        self.navigations: list[str] = []
        self.exports: list[Aggregate] = []
        self.statuses: list[CrawlStatus] = []

    def navigate(self, url: str) -> None:
        self.navigations.append(url)

    def export(self, aggregate: Aggregate) -> None:
        self.exports.append(aggregate)

    def on_state(self, crawl_status: CrawlStatus) -> None:
        self.statuses.append(crawl_status)


def make(store: MemoryStateStore, recorder: Recorder, **kwargs: Any) -> CrawlOrchestrator:
    return CrawlOrchestrator(
        store,
        navigate=recorder.navigate,
        export_aggregate=recorder.export,
        on_state_changed=recorder.on_state,
        **kwargs,
    )


def started(store: MemoryStateStore, recorder: Recorder, count: int = 3) -> CrawlOrchestrator:
    orchestrator = make(store, recorder)
    orchestrator.start(
        [status(str(n)) for n in range(1, count + 1)],
        10,
        owner_key="bob",
        owner_handle="@bob",
        origin_ref=ORIGIN,
    )
    return orchestrator


def test_build_queue_dedupes_filters_and_canonicalizes() -> None:
    store = MemoryStateStore({REMEMBERED_IDS_KEY: "2"})
    checkpoints = CheckpointStore(store)
    orchestrator = CrawlOrchestrator(store, checkpoints=checkpoints)
    run = orchestrator.build_queue(
        [
            "https://x.com/alice/status/1",
            "https://x.com/bob/status/1/photo/1",
            "https://x.com/alice/status/2",
            "https://x.com/alice/home",
            "https://x.com/carol/status/3?s=20",
        ],
        5,
        owner_key="bob",
    )
    assert run.target_queue == (status("1"), status("3"))
    assert orchestrator.state is CrawlState.RUNNING
    assert records.load_run_state(store) == run
    assert records.load_aggregate(store) == Aggregate(owner_key="bob")


def test_build_queue_caps_at_max_targets() -> None:
    orchestrator = CrawlOrchestrator(MemoryStateStore())
    run = orchestrator.build_queue([status(str(n)) for n in range(1, 8)], 3)
    assert run.target_queue == (status("1"), status("2"), status("3"))
    assert run.owner_key == "account"


def test_empty_queue_raises_and_persists_nothing() -> None:
    store = MemoryStateStore()
    orchestrator = CrawlOrchestrator(store)
    with pytest.raises(CrawlError, match="No new status targets"):
        orchestrator.build_queue(["https://x.com/home"], 5)
    with pytest.raises(CrawlError, match="max_targets"):
        orchestrator.build_queue([status("1")], 0)
    assert store.keys() == ()
    assert orchestrator.state is CrawlState.IDLE


def test_three_target_run_advances_in_order_and_completes() -> None:
    store = MemoryStateStore()
    recorder = Recorder()
    orchestrator = started(store, recorder)
    assert recorder.navigations == [status("1")]

    result = orchestrator.advance("https://x.com/bob/status/1")
    assert (result.state, result.index, result.navigate_to) == (CrawlState.RUNNING, 1, status("2"))

    reloaded = make(store, recorder)
    assert reloaded.run_state is not None
    assert reloaded.run_state.current_index == 1
    reloaded.record_aggregate([ObservedPost(post_id="20", author_handle="@x", is_voice_post=True)])
    reloaded.advance(status("2"))

    final = make(store, recorder)
    result = final.advance(status("3"))
    assert result.state is CrawlState.DONE
    assert result.index == 3
    assert result.navigate_to == ORIGIN
    assert recorder.navigations == [status("1"), status("2"), status("3"), ORIGIN]
    assert len(recorder.exports) == 1
    assert [entry.post_id for entry in recorder.exports[0].entries] == ["20"]
    assert store.read_record(CRAWL_RUN_KEY) is None
    assert store.read_record(AGGREGATE_KEY) is None
    assert final.state is CrawlState.DONE


def test_advance_skips_forward_but_never_backwards() -> None:
    store = MemoryStateStore()
    recorder = Recorder()
    orchestrator = started(store, recorder, count=4)

    result = orchestrator.advance(status("2"))
    assert result.index == 2
    assert result.navigate_to == status("3")

    result = orchestrator.advance(status("1"))
    assert result.index == 2
    assert result.navigate_to == status("3")


def test_unknown_completed_target_marks_run_stuck() -> None:
    store = MemoryStateStore()
    recorder = Recorder()
    orchestrator = started(store, recorder)

    result = orchestrator.advance(status("999"))
    assert result.state is CrawlState.STUCK
    assert result.resolved is False
    assert result.index == 0
    assert orchestrator.state is CrawlState.STUCK
    assert "stuck" in recorder.statuses[-1].message

    assert orchestrator.cancel().state is CrawlState.CANCELLED


def test_stuck_run_survives_reload_until_cancelled() -> None:
    store = MemoryStateStore()
    recorder = Recorder()
    orchestrator = started(store, recorder)
    orchestrator.advance(status("999"))

    reloaded = make(store, recorder)
    assert reloaded.state is CrawlState.STUCK
    assert records.load_run_state(store).stuck is True

    result = reloaded.advance(status("1"))
    assert result.state is CrawlState.STUCK
    assert result.resolved is False
    assert reloaded.run_state.current_index == 0
    with pytest.raises(CrawlError, match="stuck"):
        reloaded.resume_paused()
    with pytest.raises(CrawlError, match="stuck"):
        reloaded.pause()

    assert reloaded.cancel().state is CrawlState.CANCELLED
    assert store.read_record(CRAWL_RUN_KEY) is None


def test_pause_finishes_current_page_without_continuing() -> None:
    store = MemoryStateStore()
    recorder = Recorder()
    orchestrator = started(store, recorder)

    assert orchestrator.pause() is CrawlState.PAUSED
    result = orchestrator.advance(status("1"))
    assert result.state is CrawlState.PAUSED
    assert result.navigate_to is None
    assert recorder.navigations == [status("1")]

    reloaded = make(store, recorder)
    assert reloaded.state is CrawlState.PAUSED
    result = reloaded.resume_paused()
    assert result.navigate_to == status("2")
    assert reloaded.state is CrawlState.RUNNING

    assert reloaded.toggle_pause() is CrawlState.PAUSED
    assert reloaded.toggle_pause() is CrawlState.RUNNING


def test_paused_completion_does_not_return_to_origin() -> None:
    store = MemoryStateStore()
    recorder = Recorder()
    orchestrator = started(store, recorder, count=1)
    orchestrator.pause()

    result = orchestrator.advance(status("1"))
    assert result.state is CrawlState.DONE
    assert result.navigate_to is None
    assert recorder.navigations == [status("1")]
    assert len(recorder.exports) == 1


def test_failed_export_keeps_aggregate_record() -> None:
    store = MemoryStateStore()

    def _boom(_aggregate: Aggregate) -> None:
        raise OSError("disk full")

    orchestrator = CrawlOrchestrator(store, export_aggregate=_boom)
    orchestrator.start([status("1")], 5, owner_key="bob")
    orchestrator.record_aggregate([ObservedPost(post_id="7")])
    result = orchestrator.advance(status("1"))

    assert result.state is CrawlState.DONE
    assert store.read_record(CRAWL_RUN_KEY) is None
    kept = records.load_aggregate(store)
    assert kept is not None
    assert [entry.post_id for entry in kept.entries] == ["7"]


def test_cancel_clears_records_and_returns_to_origin() -> None:
    store = MemoryStateStore()
    recorder = Recorder()
    orchestrator = started(store, recorder)

    result = orchestrator.cancel()
    assert result.state is CrawlState.CANCELLED
    assert result.navigate_to == ORIGIN
    assert store.read_record(CRAWL_RUN_KEY) is None
    assert store.read_record(AGGREGATE_KEY) is None
    assert recorder.exports == []
    assert orchestrator.status_text() == "Crawl run cancelled."

    with pytest.raises(CrawlError, match="already finished"):
        orchestrator.pause()


def test_commands_without_run_raise() -> None:
    orchestrator = CrawlOrchestrator(MemoryStateStore())
    assert orchestrator.status_text() == "No crawl run."
    with pytest.raises(CrawlError, match="No crawl run is active"):
        orchestrator.advance(status("1"))
    with pytest.raises(CrawlError, match="No crawl run is active"):
        orchestrator.resume_paused()
    assert orchestrator.cancel().state is CrawlState.IDLE


def test_record_aggregate_dedupes_and_tracks_active_targets() -> None:
    store = MemoryStateStore()
    orchestrator = started(store, Recorder())
    orchestrator.record_aggregate([ObservedPost(post_id="1"), ObservedPost(post_id="2")])
    aggregate = orchestrator.record_aggregate([ObservedPost(post_id="2"), ObservedPost(post_id="3")])
    assert aggregate is not None
    assert [entry.post_id for entry in aggregate.entries] == ["1", "2", "3"]
    assert aggregate.owner_handle == "@bob"

    assert orchestrator.is_active_target("https://x.com/bob/status/2") is True
    assert orchestrator.is_active_target(status("42")) is False
    assert orchestrator.status_text() == "Crawl run running: 1/3 (owner bob)."


def test_navigation_flushes_pending_checkpoint_writes() -> None:
    store = MemoryStateStore()
    checkpoints = CheckpointStore(store, save_debounce_ms=60_000)
    recorder = Recorder()
    orchestrator = make(store, recorder, checkpoints=checkpoints)
    orchestrator.start([status("1"), status("2")], 5)
    checkpoints.mark_accepted("11")
    assert store.read_record(REMEMBERED_IDS_KEY) is None

    orchestrator.advance(status("1"))
    assert store.read_record(REMEMBERED_IDS_KEY) == "11"


def test_failing_listener_does_not_break_the_run() -> None:
    def _listener(_status: CrawlStatus) -> None:
        raise RuntimeError("listener broke")

    orchestrator = CrawlOrchestrator(MemoryStateStore(), on_state_changed=_listener)
    result = orchestrator.start([status("1"), status("2")], 5)
    assert result.state is CrawlState.RUNNING
