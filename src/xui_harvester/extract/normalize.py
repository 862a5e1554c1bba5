"""Post id, URL and handle normalization helpers for deterministic downstream behavior."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
import json
import re
import unicodedata
from urllib.parse import urlsplit, urlunsplit

from xui_harvester.models import ObservedPost

CANONICAL_ORIGIN = "https://x.com"
DEFAULT_EXPORT_KEY = "account"

_STATUS_PATH_ID_RE = re.compile(r"/status/(\d+)")
_DIGITS_ONLY_RE = re.compile(r"^\d+$")
_ZERO_WIDTH_RE = re.compile(r"[\u200b\u200c\u200d\ufeff]")
_EXPORT_KEY_UNSAFE_RE = re.compile(r"[^a-z0-9_-]", re.IGNORECASE)


def extract_rest_id(url: str | None) -> str:
    """Return the numeric status id in ``url`` or an empty string."""
    if not url:
        return ""
    value = str(url).strip()
    if _DIGITS_ONLY_RE.fullmatch(value):
        return value
    try:
        path = urlsplit(value).path
    except ValueError:
        path = value
    match = _STATUS_PATH_ID_RE.search(path) or _STATUS_PATH_ID_RE.search(value)
    return match.group(1) if match else ""


def normalize_status_url(url: str | None, *, origin: str = CANONICAL_ORIGIN) -> str:
    """Map any ``/status/<id>`` URL onto one canonical form.

    The same post can be linked as ``/<user>/status/<id>``, ``/i/web/status/<id>``
    or with ``/photo/1`` suffixes; all of them collapse to
    ``<origin>/i/web/status/<id>``. Other URLs only lose query and fragment.
    """
    if not url:
        return ""
    value = str(url).strip()
    rest_id = extract_rest_id(value) if "/status/" in value or _DIGITS_ONLY_RE.fullmatch(value) else ""
    if rest_id:
        return f"{origin.rstrip('/')}/i/web/status/{rest_id}"
    try:
        parts = urlsplit(value)
    except ValueError:
        return value.split("#", 1)[0].split("?", 1)[0]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def normalize_post_id(raw: object) -> str:
    if raw is None:
        return ""
    return extract_rest_id(str(raw))


def normalize_handle(raw: str | None) -> str:
    if raw is None:
        return ""
    value = str(raw).strip()
    stripped = value.lstrip("@").strip()
    return f"@{stripped}" if stripped else ""


def handle_to_export_key(handle: str | None) -> str:
    value = (handle or "").strip().lstrip("@")
    if not value:
        return DEFAULT_EXPORT_KEY
    return _EXPORT_KEY_UNSAFE_RE.sub("_", value)


def normalize_timestamp(raw: object) -> str | None:
    if raw is None:
        return None
    value = str(raw).strip()
    if not value:
        return None
    candidate = f"{value[:-1]}+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + (
        f"{parsed.microsecond // 1000:03d}Z"
    )


def normalize_text(raw: str | None) -> str:
    if not raw:
        return ""
    normalized = unicodedata.normalize("NFKC", raw)
    without_zero_width = _ZERO_WIDTH_RE.sub("", normalized)
    lines = [" ".join(line.split()) for line in without_zero_width.splitlines()]
    return "\n".join(line for line in lines if line)


def build_observed_post(raw: Mapping[str, object]) -> ObservedPost | None:
    """Convert one raw page record into an ``ObservedPost``.

    Records without a resolvable status id are dropped. Missing handles and
    timestamps become sentinels instead of failing the batch.
    """
    url = str(raw.get("url") or "")
    post_id = normalize_post_id(raw.get("id") or url)
    if not post_id:
        return None
    return ObservedPost(
        post_id=post_id,
        author_handle=normalize_handle(_as_str(raw.get("handle"))),
        timestamp=normalize_timestamp(raw.get("timestamp")),
        is_reply=bool(raw.get("isReply")),
        has_declared_replies=bool(raw.get("hasReplies")),
        is_repost=bool(raw.get("isRepost")),
        url=normalize_status_url(url) if url else normalize_status_url(f"/status/{post_id}"),
        author_name=normalize_text(_as_str(raw.get("name"))),
        text=normalize_text(_as_str(raw.get("text"))),
        avatar_url=_as_str(raw.get("avatar")).strip(),
        is_voice_post=bool(raw.get("isVoice")),
    )


def normalize_observed_batch(records: Iterable[object]) -> tuple[ObservedPost, ...]:
    """Build posts in page order, dropping reposts and in-batch duplicates."""
    posts: list[ObservedPost] = []
    seen: set[str] = set()
    for record in records:
        if not isinstance(record, Mapping):
            continue
        post = build_observed_post(record)
        if post is None or post.is_repost or post.post_id in seen:
            continue
        seen.add(post.post_id)
        posts.append(post)
    return tuple(posts)


def parse_remembered_ids_payload(raw: str | bytes | None) -> list[str]:
    """Parse remembered ids from newline text, a JSON array, or ``{"ids": [...]}``."""
    if raw is None:
        return []
    text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
    text = text.strip()
    if not text:
        return []

    candidates: Sequence[object]
    if text[0] in "[{":
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            candidates = parsed
        elif isinstance(parsed, dict) and isinstance(parsed.get("ids"), list):
            candidates = parsed["ids"]
        else:
            candidates = text.splitlines()
    else:
        candidates = text.splitlines()

    ids: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        value = normalize_post_id(candidate)
        if not value or value in seen:
            continue
        seen.add(value)
        ids.append(value)
    return ids


def _as_str(value: object) -> str:
    if value is None:
        return ""
    return str(value)
