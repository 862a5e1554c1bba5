"""Thread reconstruction over finalized run buffers."""

from .threads import (
    RootSection,
    ThreadEntry,
    flat_rows,
    group_into_threads,
    reconstruct,
    reconstruct_section,
    reconstruct_status_page,
    reconstruct_timeline,
    split_root_sections,
)

__all__ = [
    "RootSection",
    "ThreadEntry",
    "flat_rows",
    "group_into_threads",
    "reconstruct",
    "reconstruct_section",
    "reconstruct_status_page",
    "reconstruct_timeline",
    "split_root_sections",
]
