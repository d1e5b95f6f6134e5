"""SQLite-backed key-value store for the Letterboxd bot."""

import json
import sqlite3
import threading
from collections.abc import Iterator
from datetime import datetime, timezone

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);
"""


class StorePersistError(Exception):
    """Raised when a record cannot be written to the store."""


class Database:
    """Namespaced key-value store over a single SQLite file.

    Values are JSON-serializable dicts. The connection is shared between the
    event loop and worker threads, so every statement runs under a lock.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    def get(self, namespace: str, key: str) -> dict | None:
        """Return the record stored under ``key``, or None."""
        with self._lock:
            row = self.conn.execute(
                "SELECT value FROM kv WHERE namespace = ? AND key = ?",
                (namespace, key),
            ).fetchone()
        return json.loads(row["value"]) if row else None

    def set(self, namespace: str, key: str, record: dict) -> None:
        """Insert or replace a record.

        Raises:
            StorePersistError: If the write fails.
        """
        value = json.dumps(record)
        with self._lock:
            try:
                self.conn.execute(
                    """INSERT INTO kv (namespace, key, value, updated_at)
                       VALUES (?, ?, ?, ?)
                       ON CONFLICT(namespace, key)
                       DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
                    (namespace, key, value, _now_str()),
                )
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorePersistError(f"Could not write {namespace}/{key}: {e}") from e

    def replace(self, namespace: str, key: str, record: dict) -> bool:
        """Overwrite an existing record. Returns False if ``key`` is absent.

        Raises:
            StorePersistError: If the write fails.
        """
        value = json.dumps(record)
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "UPDATE kv SET value = ?, updated_at = ? WHERE namespace = ? AND key = ?",
                    (value, _now_str(), namespace, key),
                )
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorePersistError(f"Could not write {namespace}/{key}: {e}") from e
        return cursor.rowcount > 0

    def delete(self, namespace: str, key: str) -> bool:
        """Delete a record. Returns True if one was deleted."""
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "DELETE FROM kv WHERE namespace = ? AND key = ?", (namespace, key)
                )
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorePersistError(f"Could not delete {namespace}/{key}: {e}") from e
        return cursor.rowcount > 0

    def scan_keys(self, namespace: str, prefix: str = "") -> Iterator[str]:
        """Yield every key in ``namespace`` starting with ``prefix``."""
        # substr() instead of LIKE so '_' and '%' in keys match literally
        with self._lock:
            rows = self.conn.execute(
                """SELECT key FROM kv
                   WHERE namespace = ? AND substr(key, 1, ?) = ?
                   ORDER BY key""",
                (namespace, len(prefix), prefix),
            ).fetchall()
        for row in rows:
            yield row["key"]

    def clear(self, namespace: str, prefix: str = "") -> int:
        """Delete every key in ``namespace`` starting with ``prefix``."""
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "DELETE FROM kv WHERE namespace = ? AND substr(key, 1, ?) = ?",
                    (namespace, len(prefix), prefix),
                )
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorePersistError(f"Could not clear {namespace}/{prefix}*: {e}") from e
        return cursor.rowcount


def _now_str() -> str:
    return datetime.now(timezone.utc).isoformat()
