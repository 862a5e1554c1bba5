"""Page sources and page-context helpers."""

from .base import PageSource
from .context import (
    STATUS_EXPORT_KEY,
    SearchDateRange,
    describe_search_date_range,
    detect_page_mode,
    infer_search_owner,
    parse_search_date_range,
    run_context_from_url,
    search_query_of,
    shift_search_date_range,
)
from .page import PlaywrightPageSource

__all__ = [
    "STATUS_EXPORT_KEY",
    "PageSource",
    "PlaywrightPageSource",
    "SearchDateRange",
    "describe_search_date_range",
    "detect_page_mode",
    "infer_search_owner",
    "parse_search_date_range",
    "run_context_from_url",
    "search_query_of",
    "shift_search_date_range",
]
