"""
Durable key-value store.

Records are JSON documents stored under string keys. Scans walk keys in
order and use the last key of a page as the token for the next one.
"""

import json
import threading
from typing import Any, Dict, List, Optional, Tuple

from .db import DEFAULT_DB_PATH, get_connection
from ..core.interfaces import RecordFilter

_SCAN_BATCH = 200


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the kv_record table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_record (
                key TEXT PRIMARY KEY,
                record TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()
    finally:
        conn.close()


class SqliteKeyValueStore:
    """KeyValueStore backed by a single SQLite table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store and make sure its table exists.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        initialize_schema(db_path)

    def put(self, key: str, record: Dict[str, Any]) -> None:
        """Insert or replace the record stored under `key`."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO kv_record (key, record, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    record = excluded.record,
                    updated_at = excluded.updated_at
                """,
                (key, json.dumps(record, sort_keys=True)),
            )
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the record under `key`, or None."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT record FROM kv_record WHERE key = ?", (key,)).fetchone()
            return json.loads(row[0]) if row else None
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        """Remove the record under `key`; missing keys are ignored."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM kv_record WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def scan(
        self,
        filter: Optional[RecordFilter] = None,
        limit: int = 100,
        page_token: Optional[str] = None,
        prefix: str = "",
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Return up to `limit` matching records in key order.

        Args:
            filter: Predicate applied to each record
            limit: Maximum number of records to return
            page_token: Key after which to resume
            prefix: Only keys starting with this prefix are considered

        Returns:
            Tuple of (records, next page token or None when exhausted)
        """
        if limit <= 0:
            raise ValueError("limit must be > 0")

        results: List[Dict[str, Any]] = []
        cursor_key = page_token or ""
        conn = get_connection(self.db_path)
        try:
            while True:
                rows = conn.execute(
                    """
                    SELECT key, record FROM kv_record
                    WHERE key > ? AND key LIKE ? ESCAPE '\\'
                    ORDER BY key
                    LIMIT ?
                    """,
                    (cursor_key, _like_prefix(prefix), _SCAN_BATCH),
                ).fetchall()
                if not rows:
                    return results, None

                for key, raw in rows:
                    cursor_key = key
                    record = json.loads(raw)
                    if filter is None or filter(record):
                        results.append(record)
                        if len(results) == limit:
                            return results, key

                if len(rows) < _SCAN_BATCH:
                    return results, None
        finally:
            conn.close()


class InMemoryKeyValueStore:
    """KeyValueStore kept in a dict; for tests and dry runs."""

    def __init__(self):
        self._records: Dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, key: str, record: Dict[str, Any]) -> None:
        with self._lock:
            self._records[key] = json.dumps(record, sort_keys=True)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            raw = self._records.get(key)
        return json.loads(raw) if raw is not None else None

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def scan(
        self,
        filter: Optional[RecordFilter] = None,
        limit: int = 100,
        page_token: Optional[str] = None,
        prefix: str = "",
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        with self._lock:
            items = sorted(self._records.items())

        results: List[Dict[str, Any]] = []
        for key, raw in items:
            if page_token is not None and key <= page_token:
                continue
            if not key.startswith(prefix):
                continue
            record = json.loads(raw)
            if filter is None or filter(record):
                results.append(record)
                if len(results) == limit:
                    return results, key
        return results, None


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}%"
