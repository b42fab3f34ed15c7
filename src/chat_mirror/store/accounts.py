"""Registered sync accounts with SQLite persistence."""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Self

from chat_mirror.models import Account, format_timestamp, parse_timestamp, utc_now
from chat_mirror.store.db import connect


class AccountStore:
    """Manages the accounts swept by the sync daemon.

    Removal is a soft delete: the row keeps its history but drops out of
    ``list_accounts``.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.
        """
        self._db_path = db_path
        self._conn = connect(db_path)
        self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create the accounts table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                email TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                last_synced TEXT,
                deleted_at TEXT
            )
        """)
        self._conn.commit()

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            email=row["email"],
            created_at=parse_timestamp(row["created_at"]),
            last_synced=parse_timestamp(row["last_synced"]),
            deleted_at=parse_timestamp(row["deleted_at"]),
        )

    def ensure_account(self, email: str) -> Account:
        """Register an account, reactivating it if it was removed.

        Args:
            email: Account email

        Returns:
            The stored account
        """
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO accounts (email, created_at)
                VALUES (?, ?)
                ON CONFLICT (email) DO UPDATE SET deleted_at = NULL
                """,
                (email, format_timestamp(utc_now())),
            )
        return self.get_account(email)

    def get_account(self, email: str) -> Account | None:
        """Get an account by email, including removed ones."""
        row = self._conn.execute(
            "SELECT * FROM accounts WHERE email = ?",
            (email,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def list_accounts(self, include_deleted: bool = False) -> list[Account]:
        """List accounts in registration order.

        Args:
            include_deleted: Also return soft-deleted accounts

        Returns:
            List of Account objects
        """
        sql = "SELECT * FROM accounts"
        if not include_deleted:
            sql += " WHERE deleted_at IS NULL"
        sql += " ORDER BY created_at, email"
        return [self._row_to_account(row) for row in self._conn.execute(sql)]

    def mark_synced(self, email: str, synced_at: datetime | None = None) -> None:
        """Record a completed sweep for an account."""
        with self._conn:
            self._conn.execute(
                "UPDATE accounts SET last_synced = ? WHERE email = ?",
                (format_timestamp(synced_at or utc_now()), email),
            )

    def remove_account(self, email: str) -> bool:
        """Soft-delete an account.

        Returns:
            True if an active account was removed
        """
        with self._conn:
            cursor = self._conn.execute(
                "UPDATE accounts SET deleted_at = ? WHERE email = ? AND deleted_at IS NULL",
                (format_timestamp(utc_now()), email),
            )
        return cursor.rowcount > 0

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()
