"""Identity cache with SQLite persistence.

Maps opaque remote user ids to display identities. Entries are
best-effort: writes are commutative upserts, so duplicated or reordered
writes from the background writer cannot corrupt an entry.
"""

import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Self

from chat_mirror.models import IdentityCacheEntry, format_timestamp, parse_timestamp, utc_now
from chat_mirror.store.db import connect

# Tie-breaker between entries of equal confidence; higher wins.
PROVENANCE_PRIORITY = {
    "admin_directory_api": 9,
    "admin_directory_enhanced": 8,
    "admin_directory_alt": 7,
    "admin_directory": 6,
    "sync_account": 5,
    "email_direct": 4,
    "manual": 3,
    "chat_members": 2,
    "sync_account_fallback": 1,
}


def provenance_priority(resolved_by: str | None) -> int:
    """Rank a provenance tag (unknown tags rank lowest)."""
    return PROVENANCE_PRIORITY.get(resolved_by or "", 0)


def _rank(entry: IdentityCacheEntry) -> tuple[int, int, float]:
    return (
        entry.confidence,
        provenance_priority(entry.resolved_by),
        entry.last_seen.timestamp() if entry.last_seen else 0.0,
    )


class IdentityCache:
    """Identity cache shared between the sweep thread and the background writer."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the cache.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.
        """
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn = connect(db_path, check_same_thread=False)
        self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create the identity_cache table if it doesn't exist."""
        with self._lock:
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS identity_cache (
                    remote_user_id TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    display_name TEXT NOT NULL,
                    domain TEXT NOT NULL DEFAULT '',
                    resolved_by TEXT NOT NULL,
                    confidence INTEGER NOT NULL DEFAULT 50,
                    seen_count INTEGER NOT NULL DEFAULT 1,
                    first_seen TEXT NOT NULL,
                    last_seen TEXT NOT NULL,
                    discovered_by_account TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_identity_cache_email
                    ON identity_cache (email);
            """)
            self._conn.commit()

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> IdentityCacheEntry:
        return IdentityCacheEntry(
            remote_user_id=row["remote_user_id"],
            email=row["email"],
            display_name=row["display_name"],
            domain=row["domain"],
            resolved_by=row["resolved_by"],
            confidence=row["confidence"],
            seen_count=row["seen_count"],
            first_seen=parse_timestamp(row["first_seen"]),
            last_seen=parse_timestamp(row["last_seen"]),
            discovered_by_account=row["discovered_by_account"],
        )

    def upsert(self, entry: IdentityCacheEntry) -> None:
        """Insert an entry or fold it into the existing one.

        On conflict ``seen_count`` is incremented and ``last_seen`` advanced;
        identity fields are replaced only when the incoming confidence is
        strictly higher than the stored one.

        Args:
            entry: Incoming observation
        """
        seen = format_timestamp(entry.last_seen or utc_now())
        first = format_timestamp(entry.first_seen) or seen
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO identity_cache (
                    remote_user_id, email, display_name, domain, resolved_by,
                    confidence, seen_count, first_seen, last_seen, discovered_by_account
                )
                VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT (remote_user_id) DO UPDATE SET
                    email = CASE WHEN excluded.confidence > identity_cache.confidence
                        THEN excluded.email ELSE identity_cache.email END,
                    display_name = CASE WHEN excluded.confidence > identity_cache.confidence
                        THEN excluded.display_name ELSE identity_cache.display_name END,
                    domain = CASE WHEN excluded.confidence > identity_cache.confidence
                        THEN excluded.domain ELSE identity_cache.domain END,
                    resolved_by = CASE WHEN excluded.confidence > identity_cache.confidence
                        THEN excluded.resolved_by ELSE identity_cache.resolved_by END,
                    discovered_by_account = CASE WHEN excluded.confidence > identity_cache.confidence
                        THEN excluded.discovered_by_account ELSE identity_cache.discovered_by_account END,
                    confidence = MAX(identity_cache.confidence, excluded.confidence),
                    seen_count = identity_cache.seen_count + 1,
                    first_seen = MIN(identity_cache.first_seen, excluded.first_seen),
                    last_seen = MAX(identity_cache.last_seen, excluded.last_seen)
                """,
                (
                    entry.remote_user_id,
                    entry.email,
                    entry.display_name,
                    entry.domain,
                    entry.resolved_by,
                    entry.confidence,
                    first,
                    seen,
                    entry.discovered_by_account,
                ),
            )

    def touch(self, remote_user_id: str, seen_at: datetime | None = None) -> bool:
        """Record another sighting of a cached user.

        Args:
            remote_user_id: Cached user id
            seen_at: Sighting time (defaults to now)

        Returns:
            True if an entry was updated
        """
        seen = format_timestamp(seen_at or utc_now())
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                UPDATE identity_cache
                SET seen_count = seen_count + 1,
                    last_seen = MAX(last_seen, ?)
                WHERE remote_user_id = ?
                """,
                (seen, remote_user_id),
            )
        return cursor.rowcount > 0

    def get(self, remote_user_id: str) -> IdentityCacheEntry | None:
        """Get the entry stored under exactly this id."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM identity_cache WHERE remote_user_id = ?",
                (remote_user_id,),
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def lookup(self, raw_id: str) -> IdentityCacheEntry | None:
        """Find the best entry for a raw user id.

        Matches the id itself, its ``users/<id>`` form, or an entry whose
        email equals the raw id. Candidates are ranked by confidence, then
        provenance priority, then recency.

        Args:
            raw_id: Bare user id (or email)

        Returns:
            Best matching entry, or None
        """
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM identity_cache
                WHERE remote_user_id IN (?, ?) OR email = ?
                """,
                (raw_id, f"users/{raw_id}", raw_id),
            ).fetchall()

        if not rows:
            return None

        return max((self._row_to_entry(row) for row in rows), key=_rank)

    def find_user_id(self, email: str) -> str | None:
        """Find the bare remote user id cached for an email address.

        Entries keyed by the email itself are ignored; only ids the chat
        service uses as sender names qualify.

        Args:
            email: Email address (case-insensitive)

        Returns:
            Best matching user id without the ``users/`` prefix, or None
        """
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM identity_cache
                WHERE lower(email) = lower(?) AND remote_user_id NOT LIKE '%@%'
                """,
                (email,),
            ).fetchall()

        if not rows:
            return None

        best = max((self._row_to_entry(row) for row in rows), key=_rank)
        return best.remote_user_id.removeprefix("users/")

    def list_entries(self) -> list[IdentityCacheEntry]:
        """List all entries, most frequently seen first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM identity_cache ORDER BY seen_count DESC, remote_user_id"
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()
