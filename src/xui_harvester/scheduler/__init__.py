"""Harvest engine, wait policies and crawl orchestration."""

from .deferral import DeferralEntry, DeferralPolicy, DeferralScheduler
from .engine import (
    STOP_INTERRUPTED,
    STOP_MANUAL,
    STOP_TICK_BUDGET,
    EngineSettings,
    EngineState,
    HarvestEngine,
    HarvestResult,
    RunStatus,
    TickOutcome,
)
from .orchestrator import AdvanceResult, CrawlOrchestrator, CrawlState, CrawlStatus
from .search import SearchCrawlResult, collect_search_targets, run_search_crawl
from .stall import (
    STOP_CANCELLED,
    STOP_END_OF_TIMELINE,
    STOP_LOAD_TIMEOUT,
    STOP_STALLED,
    StallDecision,
    StallDetector,
    StallPolicy,
    StallState,
    TickSignals,
)
from .timing import PollResult, monotonic_ms, poll_until

__all__ = [
    "AdvanceResult",
    "CrawlOrchestrator",
    "CrawlState",
    "CrawlStatus",
    "DeferralEntry",
    "DeferralPolicy",
    "DeferralScheduler",
    "EngineSettings",
    "EngineState",
    "HarvestEngine",
    "HarvestResult",
    "PollResult",
    "RunStatus",
    "STOP_CANCELLED",
    "STOP_END_OF_TIMELINE",
    "STOP_INTERRUPTED",
    "STOP_LOAD_TIMEOUT",
    "STOP_MANUAL",
    "STOP_STALLED",
    "STOP_TICK_BUDGET",
    "SearchCrawlResult",
    "StallDecision",
    "StallDetector",
    "StallPolicy",
    "StallState",
    "TickOutcome",
    "TickSignals",
    "collect_search_targets",
    "monotonic_ms",
    "poll_until",
    "run_search_crawl",
]
