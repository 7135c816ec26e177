"""SQLite-backed store for tracked file records.

This module implements the batch data gateway on top of a single SQLite
database. Every public operation works on collections so callers never issue
one query per file.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path

from ..errors import GatewayError
from ..models import FileFilter, FileRecord
from ..utils import chunked
from .gateway import BatchDataGateway

LOGGER = logging.getLogger(__name__)

# SQLite builds commonly cap bound parameters at 999
_MAX_PARAMS = 500


def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return dt.isoformat()


def _convert_datetime(data: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(data.decode("utf-8"))


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("TIMESTAMP", _convert_datetime)


_FILTER_CLAUSES = {
    FileFilter.ALL: "active = 1",
    FileFilter.CATEGORIZED: "active = 1 AND needs_categorization = 0",
    FileFilter.TO_CATEGORIZE: "active = 1 AND needs_categorization = 1",
    FileFilter.NEW: "active = 1 AND is_new = 1",
}


def _check_invariant(record: FileRecord) -> None:
    if not record.needs_categorization and not record.category:
        raise GatewayError(f"Record {record.name!r} is marked categorized but has no category")


class FileRecordStore(BatchDataGateway):
    """SQLite-backed store for file records.

    The database uses WAL mode and one connection per thread so job workers
    can read and write concurrently.

    Example:
        store = FileRecordStore(Path("/data/filecatalog.db"))
        store.batch_insert([FileRecord(name="movie.mp4", path="/incoming")])
        store.get_existing_names(["movie.mp4"])  # {"movie.mp4"}
    """

    name = "sqlite"
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection for the current thread."""
        if getattr(self._local, "connection", None) is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = sqlite3.connect(
                self._db_path,
                detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            )
            connection.execute("PRAGMA journal_mode=WAL")
            connection.row_factory = sqlite3.Row
            self._local.connection = connection
        return self._local.connection

    def _init_db(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)
        row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
        current_version = row["version"] if row else 0
        if current_version < self.SCHEMA_VERSION:
            self._migrate_schema(current_version)

    def _migrate_schema(self, from_version: int) -> None:
        conn = self._get_connection()

        if from_version < 1:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS files (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    path TEXT NOT NULL,
                    size INTEGER NOT NULL DEFAULT 0,
                    modified_at TIMESTAMP,
                    category TEXT,
                    needs_categorization INTEGER NOT NULL DEFAULT 1,
                    is_new INTEGER NOT NULL DEFAULT 1,
                    excluded_from_move INTEGER NOT NULL DEFAULT 0,
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_files_name ON files(name)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_files_category ON files(category)")
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_files_pending
                ON files(active, needs_categorization)
            """)

        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,))
        conn.commit()

    def close(self) -> None:
        """Close the database connection for the current thread."""
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            self._local.connection = None

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> FileRecord:
        return FileRecord(
            id=row["id"],
            name=row["name"],
            path=row["path"],
            size=row["size"],
            modified_at=row["modified_at"],
            category=row["category"],
            needs_categorization=bool(row["needs_categorization"]),
            is_new=bool(row["is_new"]),
            excluded_from_move=bool(row["excluded_from_move"]),
            active=bool(row["active"]),
        )

    def get_by_ids(self, ids: Iterable[int]) -> dict[int, FileRecord]:
        unique_ids = list(dict.fromkeys(ids))
        if not unique_ids:
            return {}

        conn = self._get_connection()
        found: dict[int, FileRecord] = {}
        try:
            for chunk in chunked(unique_ids, _MAX_PARAMS):
                placeholders = ", ".join("?" for _ in chunk)
                cursor = conn.execute(f"SELECT * FROM files WHERE id IN ({placeholders})", tuple(chunk))
                for row in cursor:
                    record = self._row_to_record(row)
                    found[record.id] = record  # type: ignore[index]
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to load {len(unique_ids)} file records: {exc}") from exc

        LOGGER.debug("Retrieved %d/%d file records", len(found), len(unique_ids))
        return found

    def batch_update(self, records: Sequence[FileRecord]) -> int:
        if not records:
            return 0
        for record in records:
            if record.id is None:
                raise GatewayError(f"Cannot update record {record.name!r} without an id")
            _check_invariant(record)

        now = datetime.now()
        conn = self._get_connection()
        updated = 0
        try:
            with conn:
                for record in records:
                    cursor = conn.execute(
                        """
                        UPDATE files SET
                            name = ?, path = ?, size = ?, modified_at = ?, category = ?,
                            needs_categorization = ?, is_new = ?, excluded_from_move = ?,
                            active = ?, updated_at = ?
                        WHERE id = ?
                        """,
                        (
                            record.name,
                            record.path,
                            record.size,
                            record.modified_at,
                            record.category,
                            int(record.needs_categorization),
                            int(record.is_new),
                            int(record.excluded_from_move),
                            int(record.active),
                            now,
                            record.id,
                        ),
                    )
                    updated += cursor.rowcount
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to batch update {len(records)} file records: {exc}") from exc

        LOGGER.debug("Batch updated %d file records", updated)
        return updated

    def batch_insert(self, records: Sequence[FileRecord]) -> int:
        if not records:
            return 0
        for record in records:
            _check_invariant(record)

        now = datetime.now()
        conn = self._get_connection()
        try:
            with conn:
                for record in records:
                    cursor = conn.execute(
                        """
                        INSERT INTO files (
                            name, path, size, modified_at, category, needs_categorization,
                            is_new, excluded_from_move, active, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                        """,
                        (
                            record.name,
                            record.path,
                            record.size,
                            record.modified_at,
                            record.category,
                            int(record.needs_categorization),
                            int(record.is_new),
                            int(record.excluded_from_move),
                            now,
                            now,
                        ),
                    )
                    record.id = cursor.lastrowid
                    record.active = True
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to batch insert {len(records)} file records: {exc}") from exc

        LOGGER.debug("Batch inserted %d file records", len(records))
        return len(records)

    def get_existing_names(self, names: Iterable[str]) -> set[str]:
        unique_names = list(dict.fromkeys(names))
        if not unique_names:
            return set()

        conn = self._get_connection()
        existing: set[str] = set()
        try:
            for chunk in chunked(unique_names, _MAX_PARAMS):
                placeholders = ", ".join("?" for _ in chunk)
                cursor = conn.execute(f"SELECT name FROM files WHERE name IN ({placeholders})", tuple(chunk))
                existing.update(row["name"] for row in cursor)
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to check {len(unique_names)} file names: {exc}") from exc
        return existing

    def get_uncategorized(self) -> list[FileRecord]:
        return self.list_files(FileFilter.TO_CATEGORIZE)

    def list_files(self, file_filter: FileFilter = FileFilter.ALL) -> list[FileRecord]:
        clause = _FILTER_CLAUSES[FileFilter(file_filter)]
        conn = self._get_connection()
        try:
            cursor = conn.execute(f"SELECT * FROM files WHERE {clause} ORDER BY name, id")
            return [self._row_to_record(row) for row in cursor]
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to list files ({file_filter}): {exc}") from exc

    def get_categories(self) -> list[str]:
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "SELECT DISTINCT category FROM files WHERE category IS NOT NULL AND active = 1 ORDER BY category"
            )
            return [row["category"] for row in cursor]
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to list categories: {exc}") from exc

    def get_stats(self) -> dict[str, object]:
        """Counts of tracked files, overall and per category."""
        conn = self._get_connection()
        try:
            total = conn.execute("SELECT COUNT(*) AS count FROM files WHERE active = 1").fetchone()["count"]
            pending = conn.execute(
                "SELECT COUNT(*) AS count FROM files WHERE active = 1 AND needs_categorization = 1"
            ).fetchone()["count"]
            cursor = conn.execute(
                "SELECT category, COUNT(*) AS count FROM files WHERE active = 1 AND category IS NOT NULL "
                "GROUP BY category ORDER BY category"
            )
            by_category = {row["category"]: row["count"] for row in cursor}
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to compute file statistics: {exc}") from exc
        return {"total": total, "to_categorize": pending, "by_category": by_category}
