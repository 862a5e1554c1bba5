"""In-process record store for runs that should not touch disk."""

from __future__ import annotations


class MemoryStateStore:
    def __init__(self, records: dict[str, str] | None = None) -> None:
        self._records: dict[str, str] = dict(records or {})

    def read_record(self, key: str) -> str | None:
        return self._records.get(key)

    def write_record(self, key: str, value: str) -> None:
        self._records[key] = value

    def delete_record(self, key: str) -> None:
        self._records.pop(key, None)

    def keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._records))
