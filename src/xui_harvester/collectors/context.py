"""Page-mode detection, run context and search date-window helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from xui_harvester.errors import CollectError
from xui_harvester.extract.normalize import (
    extract_rest_id,
    handle_to_export_key,
    normalize_handle,
)
from xui_harvester.models import PageMode, RunContext

STATUS_EXPORT_KEY = "status"
DEFAULT_DATE_SPAN_DAYS = 15

_WITH_REPLIES_RE = re.compile(r"/with_replies/?$", re.IGNORECASE)
_SEARCH_ADVANCED_RE = re.compile(r"^/search-advanced/?", re.IGNORECASE)
_SEARCH_RE = re.compile(r"^/search/?", re.IGNORECASE)
_FROM_TOKEN_RE = re.compile(r"from:(\w{1,15})", re.IGNORECASE)
_SINCE_RE = re.compile(r"\bsince:(\d{4}-\d{1,2}-\d{1,2})\b", re.IGNORECASE)
_UNTIL_RE = re.compile(r"\buntil:(\d{4}-\d{1,2}-\d{1,2})\b", re.IGNORECASE)


@dataclass(frozen=True)
class SearchDateRange:
    query: str
    since_text: str = ""
    until_text: str = ""
    since: date | None = None
    until: date | None = None


def detect_page_mode(url: str) -> PageMode:
    path = _path_of(url)
    if _WITH_REPLIES_RE.search(path):
        return PageMode.WITH_REPLIES
    if _SEARCH_ADVANCED_RE.search(path):
        return PageMode.SEARCH_ADVANCED
    if _SEARCH_RE.search(path):
        return PageMode.SEARCH
    if "/status/" in path.lower() and extract_rest_id(url):
        return PageMode.STATUS
    return PageMode.OTHER


def search_query_of(url: str) -> str:
    try:
        query = urlsplit(url).query
    except ValueError:
        return ""
    for key, value in parse_qsl(query, keep_blank_values=True):
        if key == "q":
            return value
    return ""


def infer_search_owner(url: str, *, first_visible_handle: str = "") -> str:
    """Owner from a ``from:<handle>`` token, else the first visible result's handle."""
    match = _FROM_TOKEN_RE.search(search_query_of(url))
    if match:
        return f"@{match.group(1)}"
    return normalize_handle(first_visible_handle)


def run_context_from_url(url: str, *, first_visible_handle: str = "") -> RunContext:
    mode = detect_page_mode(url)
    if mode is PageMode.WITH_REPLIES:
        segments = [segment for segment in _path_of(url).split("/") if segment]
        owner = normalize_handle(segments[0]) if segments else ""
        return RunContext(
            mode=mode,
            owner_handle=owner,
            export_key=handle_to_export_key(owner),
            page_url=url,
        )
    if mode is PageMode.STATUS:
        return RunContext(
            mode=mode,
            export_key=STATUS_EXPORT_KEY,
            root_rest_id=extract_rest_id(url),
            page_url=url,
        )
    if mode.is_search:
        owner = infer_search_owner(url, first_visible_handle=first_visible_handle)
        return RunContext(
            mode=mode,
            owner_handle=owner,
            export_key=handle_to_export_key(owner),
            page_url=url,
        )
    return RunContext(mode=mode, page_url=url)


def parse_search_date_range(url: str) -> SearchDateRange | None:
    query = search_query_of(url)
    since_match = _SINCE_RE.search(query)
    until_match = _UNTIL_RE.search(query)
    if since_match is None and until_match is None:
        return None
    since_text = since_match.group(1) if since_match else ""
    until_text = until_match.group(1) if until_match else ""
    return SearchDateRange(
        query=query,
        since_text=since_text,
        until_text=until_text,
        since=_parse_date_token(since_text),
        until=_parse_date_token(until_text),
    )


def describe_search_date_range(url: str) -> str:
    info = parse_search_date_range(url)
    if info is None:
        return ""
    parts: list[str] = []
    if info.since_text:
        parts.append(f"since:{info.since_text}")
    if info.until_text:
        parts.append(f"until:{info.until_text}")
    return " ".join(parts)


def shift_search_date_range(url: str, direction: int = 1) -> str:
    """Move the ``since:``/``until:`` window by its own width.

    ``direction`` is ``1`` (forward in time) or ``-1`` (backward).
    """
    if direction not in (1, -1):
        direction = 1
    if not detect_page_mode(url).is_search:
        raise CollectError("Date range shifting is only available on /search pages.")
    info = parse_search_date_range(url)
    if info is None or info.since is None or info.until is None:
        raise CollectError("Could not find valid since:/until: dates in the search query.")

    span_days = (info.until - info.since).days
    if span_days <= 0:
        span_days = DEFAULT_DATE_SPAN_DAYS
    step = timedelta(days=span_days * direction)
    new_since = _format_date_token(info.since + step)
    new_until = _format_date_token(info.until + step)

    new_query = _SINCE_RE.sub(f"since:{new_since}", info.query, count=1)
    new_query = _UNTIL_RE.sub(f"until:{new_until}", new_query, count=1)
    return _replace_query_param(url, "q", new_query)


def _parse_date_token(text: str) -> date | None:
    if not text:
        return None
    parts = text.split("-")
    if len(parts) != 3:
        return None
    try:
        return date(int(parts[0]), int(parts[1]), int(parts[2]))
    except ValueError:
        return None


def _format_date_token(value: date) -> str:
    return f"{value.year}-{value.month}-{value.day}"


def _replace_query_param(url: str, key: str, value: str) -> str:
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    replaced = False
    updated: list[tuple[str, str]] = []
    for name, current in params:
        if name == key:
            if replaced:
                continue
            updated.append((name, value))
            replaced = True
        else:
            updated.append((name, current))
    if not replaced:
        updated.append((key, value))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(updated), parts.fragment))


def _path_of(url: str) -> str:
    try:
        return urlsplit(url).path or ""
    except ValueError:
        return ""
