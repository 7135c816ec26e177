from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from ..errors import GatewayError

LOGGER = logging.getLogger(__name__)


class ConfigStore:
    """Key/value configuration pairs kept next to the file records.

    Values stored here take precedence over the YAML settings when wrapped in a
    ``LayeredConfigProvider``.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        if getattr(self._local, "connection", None) is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = sqlite3.connect(self._db_path)
            connection.execute("PRAGMA journal_mode=WAL")
            connection.row_factory = sqlite3.Row
            self._local.connection = connection
        return self._local.connection

    def _init_db(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS configs (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()

    def close(self) -> None:
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            self._local.connection = None

    def get_value(self, key: str) -> str | None:
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT value FROM configs WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to read configuration key {key!r}: {exc}") from exc
        if row is None:
            return None
        value = row["value"]
        return value if value.strip() else None

    def set_value(self, key: str, value: str) -> None:
        if not key or not key.strip():
            raise ValueError("Configuration key must not be empty")
        conn = self._get_connection()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO configs (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key.strip(), value, datetime.now().isoformat()),
                )
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to store configuration key {key!r}: {exc}") from exc
        LOGGER.debug("Stored configuration key %s", key)

    def delete_value(self, key: str) -> bool:
        conn = self._get_connection()
        try:
            with conn:
                cursor = conn.execute("DELETE FROM configs WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to delete configuration key {key!r}: {exc}") from exc
        return cursor.rowcount > 0

    def items(self) -> dict[str, str]:
        conn = self._get_connection()
        try:
            cursor = conn.execute("SELECT key, value FROM configs ORDER BY key")
            return {row["key"]: row["value"] for row in cursor}
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to list configuration keys: {exc}") from exc
