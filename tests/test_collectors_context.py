"""Page-mode detection, run context and search date-window shifting."""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest

from xui_harvester.collectors.context import (
    describe_search_date_range,
    detect_page_mode,
    infer_search_owner,
    parse_search_date_range,
    run_context_from_url,
    shift_search_date_range,
)
from xui_harvester.errors import CollectError
from xui_harvester.models import PageMode


def test_detect_page_mode_by_path() -> None:
    assert detect_page_mode("https://x.com/alice/with_replies") is PageMode.WITH_REPLIES
    assert detect_page_mode("https://x.com/alice/status/123") is PageMode.STATUS
    assert detect_page_mode("https://x.com/search?q=cats") is PageMode.SEARCH
    assert detect_page_mode("https://x.com/search-advanced?q=cats") is PageMode.SEARCH_ADVANCED
    assert detect_page_mode("https://x.com/home") is PageMode.OTHER


def test_run_context_for_replies_timeline_uses_path_owner() -> None:
    context = run_context_from_url("https://x.com/Alice_1/with_replies")
    assert context.mode is PageMode.WITH_REPLIES
    assert context.owner_handle == "@Alice_1"
    assert context.export_key == "Alice_1"


def test_run_context_for_status_page_uses_status_export_key() -> None:
    context = run_context_from_url("https://x.com/alice/status/999")
    assert context.mode is PageMode.STATUS
    assert context.root_rest_id == "999"
    assert context.export_key == "status"


def test_search_owner_prefers_from_token_then_first_visible_handle() -> None:
    url = "https://x.com/search?q=from%3Abob%20cats&f=live"
    assert infer_search_owner(url, first_visible_handle="@carol") == "@bob"
    assert infer_search_owner("https://x.com/search?q=cats", first_visible_handle="carol") == "@carol"
    context = run_context_from_url("https://x.com/search?q=cats", first_visible_handle="")
    assert context.export_key == "account"


def test_parse_and_describe_search_date_range() -> None:
    url = "https://x.com/search?q=from%3Abob%20since%3A2024-01-01%20until%3A2024-01-16"
    info = parse_search_date_range(url)
    assert info is not None
    assert info.since is not None and info.since.isoformat() == "2024-01-01"
    assert describe_search_date_range(url) == "since:2024-01-01 until:2024-01-16"
    assert parse_search_date_range("https://x.com/search?q=cats") is None


def test_shift_search_date_range_moves_window_by_its_width() -> None:
    url = "https://x.com/search?q=from%3Abob%20since%3A2024-01-01%20until%3A2024-01-16&f=live"
    forward = shift_search_date_range(url, 1)
    query = parse_qs(urlsplit(forward).query)
    assert query["q"] == ["from:bob since:2024-1-16 until:2024-1-31"]
    assert query["f"] == ["live"]

    backward = shift_search_date_range(url, -1)
    assert parse_qs(urlsplit(backward).query)["q"] == ["from:bob since:2023-12-17 until:2024-1-1"]


def test_shift_search_date_range_uses_default_span_for_empty_window() -> None:
    url = "https://x.com/search?q=since%3A2024-02-01%20until%3A2024-02-01"
    shifted = shift_search_date_range(url, 1)
    assert parse_qs(urlsplit(shifted).query)["q"] == ["since:2024-2-16 until:2024-2-16"]


def test_shift_search_date_range_rejects_non_search_and_missing_dates() -> None:
    with pytest.raises(CollectError, match="only available on /search"):
        shift_search_date_range("https://x.com/alice/with_replies", 1)
    with pytest.raises(CollectError, match="since:/until:"):
        shift_search_date_range("https://x.com/search?q=cats", 1)
