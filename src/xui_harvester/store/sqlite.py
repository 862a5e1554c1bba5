"""SQLite-backed record store with deterministic migration bootstrap."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
import sqlite3

from xui_harvester.errors import StoreError


@dataclass(frozen=True)
class Migration:
    version: str
    statements: tuple[str, ...]


@dataclass(frozen=True)
class HarvestRunRecord:
    run_id: int
    page_url: str
    mode: str
    started_at: datetime
    finished_at: datetime | None
    status: str
    accepted_count: int
    stop_reason: str | None


DEFAULT_MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version="0001_initial_record_schema",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS records (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
        ),
    ),
    Migration(
        version="0002_harvest_runs",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS harvest_runs (
                run_id INTEGER PRIMARY KEY AUTOINCREMENT,
                page_url TEXT NOT NULL,
                mode TEXT NOT NULL,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                status TEXT NOT NULL DEFAULT 'running',
                accepted_count INTEGER NOT NULL DEFAULT 0,
                stop_reason TEXT
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_harvest_runs_started ON harvest_runs(started_at)",
        ),
    ),
)


class SQLiteMigrationRunner:
    """Apply ordered migrations and enforce base pragmas."""

    def __init__(self, migrations: Sequence[Migration] | None = None) -> None:
        self._migrations = tuple(migrations or DEFAULT_MIGRATIONS)
        versions = [migration.version for migration in self._migrations]
        if versions != sorted(versions):
            raise StoreError("Migrations must be in ascending version order.")
        if len(set(versions)) != len(versions):
            raise StoreError("Migration versions must be unique.")

    def bootstrap(self, conn: sqlite3.Connection) -> None:
        self._apply_pragmas(conn)
        self._ensure_migration_table(conn)
        self._apply_pending_migrations(conn)

    def _apply_pragmas(self, conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA busy_timeout = 5000")

    def _ensure_migration_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        conn.commit()

    def applied_versions(self, conn: sqlite3.Connection) -> tuple[str, ...]:
        rows = conn.execute("SELECT version FROM schema_migrations ORDER BY version").fetchall()
        return tuple(str(row[0]) for row in rows)

    def _apply_pending_migrations(self, conn: sqlite3.Connection) -> None:
        applied = set(self.applied_versions(conn))
        for migration in self._migrations:
            if migration.version in applied:
                continue
            try:
                conn.execute("BEGIN")
                for statement in migration.statements:
                    conn.execute(statement)
                conn.execute(
                    "INSERT INTO schema_migrations(version, applied_at) VALUES(?, ?)",
                    (migration.version, _dt_to_db(_utcnow())),
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StoreError(
                    f"Failed applying migration '{migration.version}': {exc}."
                ) from exc


class SQLiteStateStore:
    """SQLite implementation of the keyed record store plus harvest run history."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        migration_runner: SQLiteMigrationRunner | None = None,
    ) -> None:
        self._db_path = Path(db_path).expanduser()
        self._migration_runner = migration_runner or SQLiteMigrationRunner()

        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path))
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open SQLite database '{self._db_path}': {exc}.") from exc
        except OSError as exc:
            raise StoreError(f"Could not prepare database path '{self._db_path}': {exc}.") from exc

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._migration_runner.bootstrap(self._conn)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not close SQLite database '{self._db_path}': {exc}.") from exc

    def __enter__(self) -> SQLiteStateStore:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        self.close()
        return False

    def read_record(self, key: str) -> str | None:
        try:
            row = self._conn.execute(
                "SELECT value FROM records WHERE key = ?",
                (key,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not read record '{key}': {exc}.") from exc
        if row is None:
            return None
        return str(row["value"])

    def write_record(self, key: str, value: str) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO records(key, value, updated_at)
                VALUES(?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, _dt_to_db(_utcnow())),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not write record '{key}': {exc}.") from exc

    def delete_record(self, key: str) -> None:
        try:
            self._conn.execute("DELETE FROM records WHERE key = ?", (key,))
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not delete record '{key}': {exc}.") from exc

    def record_keys(self) -> tuple[str, ...]:
        try:
            rows = self._conn.execute("SELECT key FROM records ORDER BY key").fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not list records: {exc}.") from exc
        return tuple(str(row["key"]) for row in rows)

    def begin_run(self, page_url: str, mode: str, started_at: datetime | None = None) -> int:
        started = _dt_to_db(_normalize_datetime(started_at or _utcnow()))
        try:
            cursor = self._conn.execute(
                """
                INSERT INTO harvest_runs(page_url, mode, started_at, status)
                VALUES(?, ?, ?, 'running')
                """,
                (page_url, mode, started),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not begin run for '{page_url}': {exc}.") from exc
        run_id = cursor.lastrowid
        if run_id is None:
            raise StoreError("SQLite did not return run id for inserted run.")
        return int(run_id)

    def finish_run(
        self,
        run_id: int,
        *,
        status: str,
        accepted_count: int = 0,
        stop_reason: str | None = None,
        finished_at: datetime | None = None,
    ) -> None:
        finished = _dt_to_db(_normalize_datetime(finished_at or _utcnow()))
        try:
            cursor = self._conn.execute(
                """
                UPDATE harvest_runs
                SET finished_at = ?,
                    status = ?,
                    accepted_count = ?,
                    stop_reason = ?
                WHERE run_id = ?
                """,
                (finished, status, accepted_count, stop_reason, int(run_id)),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not finish run '{run_id}': {exc}.") from exc
        if cursor.rowcount == 0:
            raise StoreError(f"Run id '{run_id}' was not found.")

    def recent_runs(self, limit: int = 20) -> tuple[HarvestRunRecord, ...]:
        try:
            rows = self._conn.execute(
                """
                SELECT run_id, page_url, mode, started_at, finished_at, status,
                       accepted_count, stop_reason
                FROM harvest_runs
                ORDER BY run_id DESC
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not load recent runs: {exc}.") from exc

        records: list[HarvestRunRecord] = []
        for row in rows:
            started_at = _db_to_dt(row["started_at"])
            if started_at is None:
                raise StoreError(
                    f"Run row has invalid 'started_at' for run '{row['run_id']}': {row['started_at']!r}."
                )
            records.append(
                HarvestRunRecord(
                    run_id=int(row["run_id"]),
                    page_url=str(row["page_url"]),
                    mode=str(row["mode"]),
                    started_at=started_at,
                    finished_at=_db_to_dt(row["finished_at"]),
                    status=str(row["status"]),
                    accepted_count=int(row["accepted_count"]),
                    stop_reason=str(row["stop_reason"]) if row["stop_reason"] is not None else None,
                )
            )
        return tuple(records)

    def migration_versions(self) -> tuple[str, ...]:
        return self._migration_runner.applied_versions(self._conn)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dt_to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _normalize_datetime(value).isoformat()


def _db_to_dt(raw: object) -> datetime | None:
    if raw is None:
        return None
    value = str(raw).strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = f"{value[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return _normalize_datetime(parsed)
