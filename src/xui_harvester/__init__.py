"""xui_harvester package."""

from .config import (
    AppConfig,
    BrowserConfig,
    CheckpointConfig,
    CrawlConfig,
    RuntimeConfig,
    SearchConfig,
    TranslationConfig,
    config_to_dict,
    default_config,
    init_default_config,
    load_runtime_config,
    resolve_config_path,
)
from .models import (
    ActivityPulse,
    Aggregate,
    AggregateEntry,
    CrawlRunState,
    ObservedPost,
    OutputRow,
    PageMode,
    ResumeCursor,
    RunContext,
)

__all__ = [
    "ActivityPulse",
    "Aggregate",
    "AggregateEntry",
    "AppConfig",
    "BrowserConfig",
    "CheckpointConfig",
    "CrawlConfig",
    "CrawlRunState",
    "ObservedPost",
    "OutputRow",
    "PageMode",
    "ResumeCursor",
    "RunContext",
    "RuntimeConfig",
    "SearchConfig",
    "TranslationConfig",
    "config_to_dict",
    "default_config",
    "init_default_config",
    "load_runtime_config",
    "resolve_config_path",
]

__version__ = "0.1.0"
