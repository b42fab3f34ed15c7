"""Conversation documents with SQLite persistence."""

import json
import sqlite3
from pathlib import Path
from typing import Self

from chat_mirror.models import (
    Conversation,
    ConversationKind,
    Message,
    Participant,
    format_timestamp,
    utc_now,
)
from chat_mirror.store.db import connect


class ConversationStore:
    """Stores one document per (account, space).

    Messages and participants are embedded as JSON in the conversation row.
    A side table maps embedded message ids back to their conversation so a
    message can be located without scanning every document.
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
        """Create the conversation tables and indexes if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS conversations (
                account TEXT NOT NULL,
                remote_id TEXT NOT NULL,
                display_name TEXT NOT NULL,
                kind TEXT NOT NULL,
                participants TEXT NOT NULL DEFAULT '[]',
                messages TEXT NOT NULL DEFAULT '[]',
                message_count INTEGER NOT NULL DEFAULT 0,
                last_message_time TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (account, remote_id)
            );
            CREATE INDEX IF NOT EXISTS idx_conversations_remote_id
                ON conversations (remote_id);
            CREATE INDEX IF NOT EXISTS idx_conversations_account_last
                ON conversations (account, last_message_time);

            CREATE TABLE IF NOT EXISTS conversation_messages (
                account TEXT NOT NULL,
                conversation_id TEXT NOT NULL,
                message_id TEXT NOT NULL,
                PRIMARY KEY (account, conversation_id, message_id)
            );
            CREATE INDEX IF NOT EXISTS idx_conversation_messages_message_id
                ON conversation_messages (message_id);
        """)
        self._conn.commit()

    def _row_to_conversation(self, row: sqlite3.Row) -> Conversation:
        return Conversation(
            account=row["account"],
            remote_id=row["remote_id"],
            display_name=row["display_name"],
            kind=ConversationKind(row["kind"]),
            participants=[Participant(**p) for p in json.loads(row["participants"])],
            messages=[Message.from_record(m) for m in json.loads(row["messages"])],
        )

    def get(self, account: str, remote_id: str) -> Conversation | None:
        """Get the conversation for an account and space.

        Args:
            account: Owning account email
            remote_id: Space resource name

        Returns:
            Conversation if found, None otherwise
        """
        row = self._conn.execute(
            "SELECT * FROM conversations WHERE account = ? AND remote_id = ?",
            (account, remote_id),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_conversation(row)

    def find_by_remote_id(self, remote_id: str) -> list[Conversation]:
        """Every account's copy of a space."""
        cursor = self._conn.execute(
            "SELECT * FROM conversations WHERE remote_id = ? ORDER BY account",
            (remote_id,),
        )
        return [self._row_to_conversation(row) for row in cursor]

    def find_by_message_id(self, message_id: str) -> list[Conversation]:
        """Conversations that embed the given message."""
        cursor = self._conn.execute(
            """
            SELECT c.* FROM conversations c
            JOIN conversation_messages cm
              ON cm.account = c.account AND cm.conversation_id = c.remote_id
            WHERE cm.message_id = ?
            ORDER BY c.account
            """,
            (message_id,),
        )
        return [self._row_to_conversation(row) for row in cursor]

    def save(self, conversation: Conversation) -> bool:
        """Insert or replace a conversation document.

        Runs in a single transaction together with the message index update.

        Args:
            conversation: Conversation to persist

        Returns:
            True if the conversation was newly created
        """
        now = format_timestamp(utc_now())
        participants = json.dumps([p.to_record() for p in conversation.participants])
        messages = json.dumps([m.to_record() for m in conversation.messages])

        with self._conn:
            existed = self._conn.execute(
                "SELECT 1 FROM conversations WHERE account = ? AND remote_id = ?",
                (conversation.account, conversation.remote_id),
            ).fetchone() is not None

            self._conn.execute(
                """
                INSERT INTO conversations (
                    account, remote_id, display_name, kind, participants, messages,
                    message_count, last_message_time, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (account, remote_id) DO UPDATE SET
                    display_name = excluded.display_name,
                    kind = excluded.kind,
                    participants = excluded.participants,
                    messages = excluded.messages,
                    message_count = excluded.message_count,
                    last_message_time = excluded.last_message_time,
                    updated_at = excluded.updated_at
                """,
                (
                    conversation.account,
                    conversation.remote_id,
                    conversation.display_name,
                    str(conversation.kind),
                    participants,
                    messages,
                    conversation.message_count,
                    format_timestamp(conversation.last_message_time),
                    now,
                    now,
                ),
            )

            self._conn.executemany(
                """
                INSERT OR IGNORE INTO conversation_messages (account, conversation_id, message_id)
                VALUES (?, ?, ?)
                """,
                [
                    (conversation.account, conversation.remote_id, m.remote_id)
                    for m in conversation.messages
                ],
            )

        return not existed

    def list_conversations(self, account: str | None = None) -> list[Conversation]:
        """List conversations, most recently active first.

        Args:
            account: Only this account's conversations (all if None)

        Returns:
            List of Conversation objects
        """
        if account is None:
            cursor = self._conn.execute(
                "SELECT * FROM conversations ORDER BY last_message_time DESC, account, remote_id"
            )
        else:
            cursor = self._conn.execute(
                """
                SELECT * FROM conversations
                WHERE account = ?
                ORDER BY last_message_time DESC, remote_id
                """,
                (account,),
            )
        return [self._row_to_conversation(row) for row in cursor]

    def search(self, text: str, account: str | None = None) -> list[Conversation]:
        """Find conversations whose name or any message text contains ``text``.

        Args:
            text: Case-insensitive substring
            account: Restrict to one account

        Returns:
            Matching conversations, most recently active first
        """
        pattern = f"%{text}%"
        sql = """
            SELECT c.* FROM conversations c
            WHERE (
                c.display_name LIKE ?
                OR EXISTS (
                    SELECT 1 FROM json_each(c.messages) m
                    WHERE json_extract(m.value, '$.text') LIKE ?
                )
            )
        """
        params: list[str] = [pattern, pattern]
        if account is not None:
            sql += " AND c.account = ?"
            params.append(account)
        sql += " ORDER BY c.last_message_time DESC"
        return [self._row_to_conversation(row) for row in self._conn.execute(sql, params)]

    def referenced_paths(self) -> set[str]:
        """Every media and thumbnail path referenced by a stored attachment."""
        paths: set[str] = set()
        for row in self._conn.execute("SELECT messages FROM conversations"):
            for message in json.loads(row["messages"]):
                for attachment in message.get("attachments", []):
                    for key in ("local_storage_path", "thumbnail_path"):
                        if attachment.get(key):
                            paths.add(attachment[key])
        return paths

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()
