"""Shared SQLite connection setup for the mirror database."""

import sqlite3
from pathlib import Path

BUSY_TIMEOUT_SECONDS = 30.0


def connect(db_path: Path, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open the mirror database with the settings every store relies on.

    Several stores share one database file, so WAL mode and a busy timeout
    keep them from tripping over each other's write locks.

    Args:
        db_path: Path to SQLite database file. Parent directories
                 will be created if they don't exist.
        check_same_thread: Passed through to sqlite3.connect

    Returns:
        Connection with ``sqlite3.Row`` rows
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SECONDS, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn
