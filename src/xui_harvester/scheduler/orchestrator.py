"""Multi-page crawl orchestration with persisted queue/index/pause state."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from xui_harvester.diagnostics.events import JsonlEventLogger, RunEventType, safe_append
from xui_harvester.errors import CrawlError
from xui_harvester.extract.normalize import extract_rest_id, normalize_status_url
from xui_harvester.logging import get_logger
from xui_harvester.models import Aggregate, AggregateEntry, CrawlRunState, ObservedPost
from xui_harvester.store import records
from xui_harvester.store.base import StateStore
from xui_harvester.store.checkpoints import CheckpointStore

logger = get_logger(__name__)

NavigateFn = Callable[[str], None]
ExportAggregateFn = Callable[[Aggregate], None]


class CrawlState(str, Enum):
    IDLE = "idle"
    BUILDING_QUEUE = "building_queue"
    RUNNING = "running"
    PAUSED = "paused"
    STUCK = "stuck"
    CANCELLED = "cancelled"
    DONE = "done"


@dataclass(frozen=True)
class CrawlStatus:
    state: CrawlState
    index: int = 0
    total: int = 0
    message: str = ""


@dataclass(frozen=True)
class AdvanceResult:
    state: CrawlState
    index: int
    navigate_to: str | None = None
    resolved: bool = True


CrawlStateChangedFn = Callable[[CrawlStatus], None]


class CrawlOrchestrator:
    """Walk a queue of status-page targets across page reloads.

    Every mutation is written through to the state store so a fresh instance
    (one per loaded page) resumes from the last persisted index.
    """

    def __init__(
        self,
        state_store: StateStore,
        *,
        checkpoints: CheckpointStore | None = None,
        navigate: NavigateFn | None = None,
        export_aggregate: ExportAggregateFn | None = None,
        on_state_changed: CrawlStateChangedFn | None = None,
        event_logger: JsonlEventLogger | None = None,
        run_id: str = "crawl",
    ) -> None:
        self._state_store = state_store
        self._checkpoints = checkpoints
        self._navigate = navigate
        self._export_aggregate = export_aggregate
        self._on_state_changed = on_state_changed
        self._event_logger = event_logger
        self._run_id = run_id
        self._run: CrawlRunState | None = records.load_run_state(state_store)
        self._aggregate: Aggregate | None = records.load_aggregate(state_store)
        self._building = False

    @property
    def run_state(self) -> CrawlRunState | None:
        return self._run

    @property
    def aggregate(self) -> Aggregate | None:
        return self._aggregate

    @property
    def state(self) -> CrawlState:
        if self._building:
            return CrawlState.BUILDING_QUEUE
        run = self._run
        if run is None:
            return CrawlState.IDLE
        if run.cancelled:
            return CrawlState.CANCELLED
        if run.done:
            return CrawlState.DONE
        if run.stuck:
            return CrawlState.STUCK
        if run.paused:
            return CrawlState.PAUSED
        return CrawlState.RUNNING

    def build_queue(
        self,
        candidates: Iterable[str],
        max_targets: int,
        *,
        owner_key: str = "account",
        owner_handle: str = "",
        origin_ref: str = "",
        started_at: datetime | None = None,
    ) -> CrawlRunState:
        """Dedupe candidates by status id, cap the queue and persist a fresh run."""
        if max_targets <= 0:
            raise CrawlError("max_targets must be > 0.")
        self._building = True
        self._emit("Building crawl queue.")
        try:
            queue: list[str] = []
            seen: set[str] = set()
            for candidate in candidates:
                rest_id = extract_rest_id(candidate)
                if not rest_id or rest_id in seen:
                    continue
                seen.add(rest_id)
                if self._checkpoints is not None and not self._checkpoints.should_accept(rest_id):
                    continue
                queue.append(normalize_status_url(candidate))
                if len(queue) >= max_targets:
                    break
        finally:
            self._building = False

        if not queue:
            self._emit("No new targets found (all already harvested or none visible).")
            raise CrawlError("No new status targets to crawl; all candidates were already harvested.")

        moment = started_at or datetime.now(timezone.utc)
        run = CrawlRunState(
            target_queue=tuple(queue),
            owner_key=owner_key or "account",
            owner_handle=owner_handle,
            origin_ref=origin_ref,
            started_at=moment.isoformat(),
        )
        self._run = run
        self._aggregate = Aggregate(owner_key=run.owner_key, owner_handle=owner_handle)
        self._persist()
        records.save_aggregate(self._state_store, self._aggregate)
        limit_note = f" (limit reached: {max_targets})" if len(queue) >= max_targets else ""
        self._emit(f"{len(queue)} status targets queued{limit_note}.")
        self._log_event(RunEventType.QUEUE_BUILT, {"queued": len(queue), "origin": origin_ref})
        return run

    def start(
        self,
        candidates: Iterable[str],
        max_targets: int,
        *,
        owner_key: str = "account",
        owner_handle: str = "",
        origin_ref: str = "",
    ) -> AdvanceResult:
        run = self.build_queue(
            candidates,
            max_targets,
            owner_key=owner_key,
            owner_handle=owner_handle,
            origin_ref=origin_ref,
        )
        first = run.target_queue[0]
        self._request_navigation(first)
        return AdvanceResult(state=self.state, index=0, navigate_to=first)

    def advance(self, completed_ref: str) -> AdvanceResult:
        """Mark ``completed_ref`` done and move to the next target."""
        run = self._require_active(allow_stuck=True)
        queue = run.target_queue
        index = run.current_index
        if run.stuck:
            return AdvanceResult(state=CrawlState.STUCK, index=index, resolved=False)
        found: int | None = None
        if index < len(queue) and _same_target(queue[index], completed_ref):
            found = index
        else:
            found = next(
                (position for position, target in enumerate(queue) if _same_target(target, completed_ref)),
                None,
            )

        if found is None:
            self._run = replace(run, stuck=True)
            self._persist()
            self._emit(
                f"Crawl run is stuck: '{completed_ref}' is not in the queue. Cancel the run to continue."
            )
            self._log_event(RunEventType.CRAWL_STUCK, {"completed": completed_ref, "index": index})
            return AdvanceResult(state=CrawlState.STUCK, index=index, resolved=False)

        next_index = max(index, found + 1)
        was_paused = run.paused
        if next_index >= len(queue):
            self._run = replace(run, current_index=len(queue), done=True, paused=False)
            self._persist()
            self._log_event(RunEventType.CRAWL_ADVANCED, {"index": len(queue), "done": True})
            self._complete()
            navigate_to = None if was_paused or not run.origin_ref else run.origin_ref
            self._emit("Crawl run complete.")
            if navigate_to:
                self._request_navigation(navigate_to)
            return AdvanceResult(state=CrawlState.DONE, index=len(queue), navigate_to=navigate_to)

        self._run = replace(run, current_index=next_index)
        self._persist()
        self._log_event(RunEventType.CRAWL_ADVANCED, {"index": next_index, "paused": was_paused})
        if was_paused:
            self._emit(f"Paused after {next_index}/{len(queue)}.")
            return AdvanceResult(state=CrawlState.PAUSED, index=next_index)
        target = queue[next_index]
        self._emit(f"Opening {next_index + 1}/{len(queue)}.")
        self._request_navigation(target)
        return AdvanceResult(state=CrawlState.RUNNING, index=next_index, navigate_to=target)

    def pause(self) -> CrawlState:
        run = self._require_active()
        if not run.paused:
            self._run = replace(run, paused=True)
            self._persist()
            self._emit("Crawl run paused; the current page finishes without auto-continuing.")
        return self.state

    def resume(self) -> CrawlState:
        run = self._require_active()
        if run.paused:
            self._run = replace(run, paused=False)
            self._persist()
            self._emit("Crawl run resumed.")
        return self.state

    def toggle_pause(self) -> CrawlState:
        run = self._require_active()
        return self.resume() if run.paused else self.pause()

    def resume_paused(self) -> AdvanceResult:
        """Unpause a persisted run and navigate to its current target."""
        run = self._require_active()
        if not run.target_queue:
            raise CrawlError("Cannot resume crawl run: no remaining targets in queue.")
        safe_index = max(0, min(run.current_index, len(run.target_queue) - 1))
        self._run = replace(run, paused=False, current_index=safe_index)
        self._persist()
        target = run.target_queue[safe_index]
        self._emit(f"Resuming crawl run at {safe_index + 1}/{len(run.target_queue)}.")
        self._request_navigation(target)
        return AdvanceResult(state=self.state, index=safe_index, navigate_to=target)

    def cancel(self) -> AdvanceResult:
        run = self._run
        if run is None or run.done:
            return AdvanceResult(state=self.state, index=run.current_index if run else 0)
        self._run = replace(
            run,
            target_queue=(),
            current_index=0,
            done=True,
            paused=False,
            cancelled=True,
        )
        self._aggregate = None
        records.clear_run_state(self._state_store)
        records.clear_aggregate(self._state_store)
        self._log_event(RunEventType.CRAWL_CANCELLED, {"index": run.current_index})
        self._emit("Crawl run cancelled.")
        navigate_to = run.origin_ref or None
        if navigate_to:
            self._request_navigation(navigate_to)
        return AdvanceResult(state=CrawlState.CANCELLED, index=0, navigate_to=navigate_to)

    def is_active_target(self, url: str) -> bool:
        run = self._run
        if run is None or run.done or run.cancelled:
            return False
        return any(_same_target(target, url) for target in run.target_queue)

    def record_aggregate(self, posts: Sequence[ObservedPost]) -> Aggregate | None:
        run = self._run
        if run is None or run.done:
            return None
        aggregate = self._aggregate or Aggregate(owner_key=run.owner_key, owner_handle=run.owner_handle)
        known = {entry.post_id for entry in aggregate.entries}
        additions = [
            AggregateEntry(
                post_id=post.post_id,
                author_handle=post.author_handle,
                avatar_url=post.avatar_url,
                is_voice_post=post.is_voice_post,
            )
            for post in posts
            if post.post_id not in known
        ]
        if additions:
            aggregate = replace(aggregate, entries=aggregate.entries + tuple(additions))
        self._aggregate = aggregate
        records.save_aggregate(self._state_store, aggregate)
        return aggregate

    def status_text(self) -> str:
        run = self._run
        state = self.state
        if run is None:
            return "No crawl run."
        total = len(run.target_queue)
        if state is CrawlState.DONE:
            return f"Crawl run done ({total} targets)."
        if state is CrawlState.CANCELLED:
            return "Crawl run cancelled."
        position = min(run.current_index + 1, total)
        return f"Crawl run {state.value}: {position}/{total} (owner {run.owner_key})."

    def _complete(self) -> None:
        aggregate = self._aggregate
        run = self._run
        if aggregate is None and run is not None:
            aggregate = Aggregate(owner_key=run.owner_key, owner_handle=run.owner_handle)
        exported = True
        if self._export_aggregate is not None and aggregate is not None:
            try:
                self._export_aggregate(aggregate)
            except Exception:
                exported = False
                logger.exception("Aggregate export failed; keeping the aggregate record.")
        records.clear_run_state(self._state_store)
        if exported:
            records.clear_aggregate(self._state_store)
            self._aggregate = None

    def _request_navigation(self, url: str) -> None:
        if self._checkpoints is not None:
            self._checkpoints.flush()
        if self._navigate is not None:
            self._navigate(url)

    def _require_active(self, *, allow_stuck: bool = False) -> CrawlRunState:
        run = self._run
        if run is None:
            raise CrawlError("No crawl run is active. Start one from a search page.")
        if run.done:
            raise CrawlError("Crawl run has already finished; start a new one.")
        if run.stuck and not allow_stuck:
            raise CrawlError("Crawl run is stuck; cancel it to continue.")
        return run

    def _persist(self) -> None:
        if self._run is not None:
            records.save_run_state(self._state_store, self._run)

    def _emit(self, message: str) -> None:
        run = self._run
        status = CrawlStatus(
            state=self.state,
            index=run.current_index if run else 0,
            total=len(run.target_queue) if run else 0,
            message=message,
        )
        logger.info("Crawl %s: %s", status.state.value, message)
        if self._on_state_changed is not None:
            try:
                self._on_state_changed(status)
            except Exception:
                logger.exception("Crawl state listener failed.")

    def _log_event(self, event_type: RunEventType, payload: dict[str, Any]) -> None:
        safe_append(self._event_logger, event_type, run_id=self._run_id, payload=payload)


def _same_target(target: str, ref: str) -> bool:
    target_id = extract_rest_id(target)
    ref_id = extract_rest_id(ref)
    if target_id and ref_id:
        return target_id == ref_id
    return normalize_status_url(target) == normalize_status_url(ref)
