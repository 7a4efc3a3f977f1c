"""
sqlite persistence for conversations, their messages and rolling summaries.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Union

from .exceptions import ConversationNotFoundError, StorageError
from .models import Conversation, Message, Role, sort_conversations, utc_now

logger = logging.getLogger("foundation_chat.store")


class SQLiteConversationStore:
    """Local sqlite store implementing :class:`~foundation_chat.protocols.ConversationStore`.

    Pass ``":memory:"`` for a throwaway in-process database.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = path if path == ":memory:" else Path(path)
        try:
            if isinstance(self.path, Path):
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.path)
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Could not open conversation store at {path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row
        self._tune_pragmas()
        self._init_schema()

    def _tune_pragmas(self) -> None:
        """Tune sqlite for local low-latency usage."""
        self.conn.execute("PRAGMA foreign_keys = ON")
        if self.path != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.execute("PRAGMA synchronous = NORMAL")

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                summary TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation_position
            ON messages(conversation_id, position);
            """
        )
        self.conn.commit()

    def close(self) -> None:
        """Close sqlite connection."""
        self.conn.close()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            with self.conn:
                yield self.conn
        except sqlite3.Error as exc:
            logger.error("[FoundationChat Store] Failed to %s: %s", action, exc)
            raise StorageError(f"Failed to {action}: {exc}") from exc

    def insert(self, conversation: Conversation) -> None:
        """Add a new conversation (and any messages it already holds)."""
        with self._transaction(f"insert conversation {conversation.id}") as conn:
            conn.execute(
                """
                INSERT INTO conversations (id, summary, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    conversation.id,
                    conversation.summary,
                    conversation.created_at.isoformat(),
                    utc_now().isoformat(),
                ),
            )
            self._write_messages(conn, conversation)

    def save(self, conversation: Conversation) -> None:
        """Upsert the conversation row and every message it holds."""
        with self._transaction(f"save conversation {conversation.id}") as conn:
            conn.execute(
                """
                INSERT INTO conversations (id, summary, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    summary = excluded.summary,
                    updated_at = excluded.updated_at
                """,
                (
                    conversation.id,
                    conversation.summary,
                    conversation.created_at.isoformat(),
                    utc_now().isoformat(),
                ),
            )
            self._write_messages(conn, conversation)

    @staticmethod
    def _write_messages(conn: sqlite3.Connection, conversation: Conversation) -> None:
        conn.executemany(
            """
            INSERT INTO messages (id, conversation_id, position, role, content, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET content = excluded.content
            """,
            [
                (
                    message.id,
                    conversation.id,
                    position,
                    message.role.value,
                    message.content,
                    message.timestamp.isoformat(),
                )
                for position, message in enumerate(conversation.messages)
            ],
        )

    def delete(self, conversation: Conversation) -> None:
        """Delete a conversation and, by cascade, its messages."""
        with self._transaction(f"delete conversation {conversation.id}") as conn:
            conn.execute("DELETE FROM conversations WHERE id = ?", (conversation.id,))

    def query(self) -> list[Conversation]:
        """Load every conversation, most recent first."""
        try:
            rows = self.conn.execute(
                "SELECT id, summary, created_at FROM conversations"
            ).fetchall()
            conversations = [self._load(row) for row in rows]
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to query conversations: {exc}") from exc
        return sort_conversations(conversations)

    def get(self, conversation_id: str) -> Conversation:
        """Load one conversation by exact id."""
        try:
            row = self.conn.execute(
                "SELECT id, summary, created_at FROM conversations WHERE id = ?",
                (conversation_id,),
            ).fetchone()
            if row is None:
                raise ConversationNotFoundError(f"No conversation with id {conversation_id!r}.")
            return self._load(row)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load conversation {conversation_id}: {exc}") from exc

    def _load(self, row: sqlite3.Row) -> Conversation:
        message_rows = self.conn.execute(
            """
            SELECT id, role, content, created_at
            FROM messages
            WHERE conversation_id = ?
            ORDER BY position ASC
            """,
            (row["id"],),
        ).fetchall()
        messages = [
            Message(
                role=Role(message_row["role"]),
                content=str(message_row["content"]),
                timestamp=datetime.fromisoformat(message_row["created_at"]),
                id=str(message_row["id"]),
                final=True,
            )
            for message_row in message_rows
        ]
        return Conversation(
            messages=messages,
            summary=str(row["summary"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            id=str(row["id"]),
        )

    def export_jsonl(self, conversation: Conversation, target: Path) -> None:
        """Export a conversation as JSON Lines: one metadata record, then one per message."""
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as handle:
            handle.write(
                json.dumps(
                    {
                        "type": "conversation_metadata",
                        "conversation_id": conversation.id,
                        "summary": conversation.summary,
                        "created_at": conversation.created_at.isoformat(),
                        "exported_at": utc_now().isoformat(),
                    },
                    ensure_ascii=False,
                )
                + "\n"
            )
            for message in conversation.sorted_messages:
                record = {"type": "message", **message.to_dict()}
                handle.write(json.dumps(record, ensure_ascii=False) + "\n")

    def export_markdown(self, conversation: Conversation, target: Path) -> None:
        """Export a conversation as a Markdown transcript."""
        target.parent.mkdir(parents=True, exist_ok=True)
        lines = [
            f"# {conversation.summary or 'Conversation'}",
            "",
            f"Exported: {utc_now().isoformat()}",
            "",
        ]
        for message in conversation.sorted_messages:
            role = "User" if message.role is Role.USER else "Assistant"
            lines.append(f"## {role} ({message.timestamp.isoformat()})")
            lines.append("")
            lines.append(message.content)
            lines.append("")
        target.write_text("\n".join(lines), encoding="utf-8")
