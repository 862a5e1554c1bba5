"""Search-page target collection and the page-by-page crawl driver."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
import time

from xui_harvester.collectors.base import PageSource
from xui_harvester.collectors.context import run_context_from_url
from xui_harvester.config import RuntimeConfig
from xui_harvester.diagnostics.events import JsonlEventLogger
from xui_harvester.errors import CollectError, CrawlError
from xui_harvester.extract.normalize import extract_rest_id, normalize_status_url
from xui_harvester.logging import get_logger
from xui_harvester.models import Aggregate, OutputRow, RunContext
from xui_harvester.scheduler.engine import EngineSettings, HarvestEngine, HarvestResult, StateChangedFn
from xui_harvester.scheduler.orchestrator import (
    CrawlOrchestrator,
    CrawlState,
    CrawlStateChangedFn,
    ExportAggregateFn,
)
from xui_harvester.scheduler.timing import CancelFn, NowMsFn, SleepFn, monotonic_ms
from xui_harvester.store.base import StateStore
from xui_harvester.store.checkpoints import CheckpointStore

logger = get_logger(__name__)

PageFinalizedFn = Callable[[RunContext, tuple[OutputRow, ...]], None]


@dataclass(frozen=True)
class SearchCrawlResult:
    state: CrawlState
    pages: tuple[HarvestResult, ...]
    queued: int
    exported: Aggregate | None = None


def collect_search_targets(
    source: PageSource,
    *,
    max_targets: int,
    should_accept: Callable[[str], bool] | None = None,
    scroll_step_px: int = 1200,
    max_ticks: int = 300,
    stall_ticks: int = 20,
    tick_ms: int = 600,
    sleep_fn: SleepFn | None = None,
    is_cancelled: CancelFn | None = None,
) -> tuple[str, ...]:
    """Scroll a search results page and gather unseen status URLs in page order."""
    if max_targets <= 0:
        raise CrawlError("max_targets must be > 0.")
    sleep = sleep_fn or time.sleep
    cancelled = is_cancelled or (lambda: False)
    accept = should_accept or (lambda _post_id: True)
    found: dict[str, str] = {}
    no_progress_ticks = 0

    for _ in range(max_ticks):
        if cancelled():
            break
        size_before = len(found)
        for post in source.observe_posts():
            rest_id = extract_rest_id(post.url) or post.post_id
            if not rest_id or rest_id in found or not accept(rest_id):
                continue
            found[rest_id] = normalize_status_url(rest_id)
            if len(found) >= max_targets:
                break
        if len(found) >= max_targets:
            break

        before = source.activity_pulse()
        source.scroll_by(scroll_step_px)
        after = source.activity_pulse()
        moved = after.scroll_y != before.scroll_y or after.document_height != before.document_height

        if len(found) == size_before and not moved:
            no_progress_ticks += 1
        else:
            no_progress_ticks = 0
        if after.end_marker_visible and not moved:
            break
        if no_progress_ticks >= stall_ticks:
            break
        sleep(tick_ms / 1000.0)

    logger.info("Collected %d search targets.", len(found))
    return tuple(found.values())


def run_search_crawl(
    source: PageSource,
    state_store: StateStore,
    *,
    config: RuntimeConfig,
    search_url: str | None = None,
    max_targets: int | None = None,
    max_pages: int | None = None,
    max_ticks_per_page: int | None = None,
    wait_for_overlay: bool | None = None,
    remember_ids: bool | None = None,
    on_page_finalized: PageFinalizedFn | None = None,
    export_aggregate: ExportAggregateFn | None = None,
    on_state_changed: StateChangedFn | None = None,
    on_crawl_state_changed: CrawlStateChangedFn | None = None,
    now_ms: NowMsFn | None = None,
    sleep_fn: SleepFn | None = None,
    event_logger: JsonlEventLogger | None = None,
) -> SearchCrawlResult:
    """Start a crawl from ``search_url`` (or continue the persisted one) and walk its queue.

    Each target gets a fresh ``CheckpointStore`` and ``CrawlOrchestrator``
    loaded from ``state_store``, the same way a reloaded page would.
    """
    clock = now_ms or monotonic_ms
    sleep = sleep_fn or time.sleep
    remember = config.checkpoint.remember_ids if remember_ids is None else remember_ids
    settings = EngineSettings.from_config(config, wait_for_overlay=wait_for_overlay)
    pending_navigation: list[str] = []
    exported: list[Aggregate] = []

    def _navigate(url: str) -> None:
        pending_navigation.append(url)

    def _export(aggregate: Aggregate) -> None:
        exported.append(aggregate)
        if export_aggregate is not None:
            export_aggregate(aggregate)

    def _checkpoints() -> CheckpointStore:
        return CheckpointStore(
            state_store,
            remember_enabled=remember,
            save_debounce_ms=config.checkpoint.save_debounce_ms,
            now_ms=clock,
        )

    def _orchestrator(checkpoints: CheckpointStore) -> CrawlOrchestrator:
        return CrawlOrchestrator(
            state_store,
            checkpoints=checkpoints,
            navigate=_navigate,
            export_aggregate=_export,
            on_state_changed=on_crawl_state_changed,
            event_logger=event_logger,
        )

    checkpoints = _checkpoints()
    orchestrator = _orchestrator(checkpoints)

    if search_url:
        if orchestrator.state is CrawlState.PAUSED:
            orchestrator.resume_paused()
        else:
            source.navigate(search_url)
            first_handle = _first_visible_handle(source)
            context = run_context_from_url(source.url, first_visible_handle=first_handle)
            if not context.mode.is_search:
                raise CrawlError(f"'{search_url}' is not a search results page.")
            candidates = collect_search_targets(
                source,
                max_targets=max_targets or config.search.max_targets,
                should_accept=checkpoints.should_accept,
                scroll_step_px=config.crawl.scroll_step_px,
                max_ticks=config.search.collect_max_ticks,
                stall_ticks=config.search.collect_stall_ticks,
                tick_ms=config.crawl.tick_ms,
                sleep_fn=sleep,
            )
            orchestrator.start(
                candidates,
                max_targets or config.search.max_targets,
                owner_key=context.export_key,
                owner_handle=context.owner_handle,
                origin_ref=search_url,
            )
    else:
        state = orchestrator.state
        run = orchestrator.run_state
        if state is CrawlState.PAUSED:
            orchestrator.resume_paused()
        elif state is CrawlState.RUNNING and run is not None and run.current_target:
            pending_navigation.append(run.current_target)
        else:
            raise CrawlError("No crawl run to continue. Start one with a search URL.")

    run = orchestrator.run_state
    queued = len(run.target_queue) if run is not None else 0
    pages: list[HarvestResult] = []

    while pending_navigation:
        url = pending_navigation.pop(0)
        source.navigate(url)
        if orchestrator.state is not CrawlState.RUNNING:
            break
        if max_pages is not None and len(pages) >= max_pages:
            break
        checkpoints = _checkpoints()
        orchestrator = _orchestrator(checkpoints)
        context = run_context_from_url(source.url)
        engine = HarvestEngine(
            source,
            checkpoints,
            settings=settings,
            context=context,
            orchestrator=orchestrator,
            on_finalized=partial(on_page_finalized, context) if on_page_finalized else None,
            on_state_changed=on_state_changed,
            now_ms=clock,
            sleep_fn=sleep,
            event_logger=event_logger,
            run_id="crawl",
        )
        pages.append(engine.run(max_ticks=max_ticks_per_page))

    return SearchCrawlResult(
        state=orchestrator.state,
        pages=tuple(pages),
        queued=queued,
        exported=exported[-1] if exported else None,
    )


def _first_visible_handle(source: PageSource) -> str:
    try:
        posts = source.observe_posts()
    except CollectError as exc:
        logger.debug("Could not read first visible handle: %s", exc)
        return ""
    return next((post.author_handle for post in posts if post.author_handle), "")
