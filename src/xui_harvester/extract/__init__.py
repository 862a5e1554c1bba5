"""Normalization helpers for raw page observations."""

from .normalize import (
    CANONICAL_ORIGIN,
    DEFAULT_EXPORT_KEY,
    build_observed_post,
    extract_rest_id,
    handle_to_export_key,
    normalize_handle,
    normalize_observed_batch,
    normalize_status_url,
    normalize_timestamp,
    parse_remembered_ids_payload,
)

__all__ = [
    "CANONICAL_ORIGIN",
    "DEFAULT_EXPORT_KEY",
    "build_observed_post",
    "extract_rest_id",
    "handle_to_export_key",
    "normalize_handle",
    "normalize_observed_batch",
    "normalize_status_url",
    "normalize_timestamp",
    "parse_remembered_ids_payload",
]
