"""
Database connection management.

Provides the SQLite connection behind the durable key-value store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = ".spend-monitor.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection.

    Connections are opened per operation and may be used from worker threads,
    so the same-thread check is off; callers never share one across threads.

    Args:
        db_path: Path to SQLite database file (":memory:" is not shared between calls)

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    if str(path) != ":memory:":
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=10.0, check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
