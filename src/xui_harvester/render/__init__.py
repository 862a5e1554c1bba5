"""Render contracts and concrete output formatters."""

from __future__ import annotations

import json

from xui_harvester.errors import RenderError
from xui_harvester.models import Aggregate, OutputRow
from xui_harvester.render.base import Renderer
from xui_harvester.render.jsonout import (
    aggregate_entry_to_dict,
    aggregate_to_dict,
    output_row_to_dict,
    render_json,
    render_jsonl,
)
from xui_harvester.render.plain import render_aggregate_plain, render_plain
from xui_harvester.render.pretty import render_aggregate_pretty, render_pretty


def render_rows(rows: tuple[OutputRow, ...], output_format: str) -> str:
    if output_format == "pretty":
        return render_pretty(rows)
    if output_format == "plain":
        return render_plain(rows)
    if output_format == "json":
        return render_json(rows)
    if output_format == "jsonl":
        return render_jsonl(rows)
    raise RenderError(
        f"Unsupported output format '{output_format}'. Use one of: pretty, plain, json, jsonl."
    )


def render_aggregate(aggregate: Aggregate, output_format: str) -> str:
    if output_format == "pretty":
        return render_aggregate_pretty(aggregate)
    if output_format == "plain":
        return render_aggregate_plain(aggregate)
    if output_format == "json":
        return json.dumps(aggregate_to_dict(aggregate), indent=2, sort_keys=True)
    if output_format == "jsonl":
        return "\n".join(
            json.dumps(aggregate_entry_to_dict(entry), sort_keys=True) for entry in aggregate.entries
        )
    raise RenderError(
        f"Unsupported output format '{output_format}'. Use one of: pretty, plain, json, jsonl."
    )


__all__ = [
    "Renderer",
    "aggregate_entry_to_dict",
    "aggregate_to_dict",
    "output_row_to_dict",
    "render_aggregate",
    "render_aggregate_plain",
    "render_aggregate_pretty",
    "render_json",
    "render_jsonl",
    "render_plain",
    "render_pretty",
    "render_rows",
]
