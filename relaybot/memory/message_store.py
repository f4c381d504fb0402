"""Persistent message log for inbound chat messages and assistant replies."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

ASSISTANT_USER_ID = 0
SQLITE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class MessageKind(str, Enum):
    TEXT = "text"
    RESPONSE = "response"


@dataclass(frozen=True)
class StoredMessage:
    id: int
    user_id: int
    display_name: str
    text: str
    kind: str
    created_at: datetime
    is_command: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> StoredMessage:
        created_at = datetime.strptime(str(row["created_at"]), SQLITE_TIMESTAMP_FORMAT)
        return cls(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            display_name=str(row["display_name"]),
            text=str(row["text"]),
            kind=str(row["kind"]),
            created_at=created_at.replace(tzinfo=timezone.utc),
            is_command=bool(row["is_command"]),
        )


@dataclass(frozen=True)
class MessageStats:
    total: int
    commands: int
    last_hour: int
    last_day: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "commands": self.commands,
            "last_hour": self.last_hour,
            "last_day": self.last_day,
        }


class MessageStore:
    """Insert-only message log; timestamps are assigned by SQLite, never by callers."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def append(
        self,
        user_id: int,
        display_name: str,
        text: str,
        kind: MessageKind | str = MessageKind.TEXT,
        is_command: bool = False,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO messages (user_id, display_name, text, kind, is_command)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                int(user_id),
                display_name or "Unknown",
                text,
                MessageKind(kind).value,
                1 if is_command else 0,
            ),
        )
        self._conn.commit()
        return int(cursor.lastrowid)

    def query_recent(self, window_minutes: int, limit: int) -> list[StoredMessage]:
        """Rows newer than the trailing window, oldest first, at most ``limit``."""
        rows = self._conn.execute(
            """
            SELECT id, user_id, display_name, text, kind, created_at, is_command
            FROM messages
            WHERE created_at > datetime('now', ?)
            ORDER BY created_at ASC, id ASC
            LIMIT ?
            """,
            (f"-{int(window_minutes)} minutes", int(limit)),
        ).fetchall()
        return [StoredMessage.from_row(row) for row in rows]

    def clear_all(self) -> int:
        cursor = self._conn.execute("DELETE FROM messages")
        self._conn.commit()
        return cursor.rowcount

    def stats(self) -> MessageStats:
        row = self._conn.execute(
            """
            SELECT
                COUNT(*) AS total,
                COUNT(CASE WHEN is_command = 1 THEN 1 END) AS commands,
                COUNT(CASE WHEN created_at > datetime('now', '-1 hour') THEN 1 END) AS last_hour,
                COUNT(CASE WHEN created_at > datetime('now', '-1 day') THEN 1 END) AS last_day
            FROM messages
            """
        ).fetchone()
        if row is None:
            return MessageStats(total=0, commands=0, last_hour=0, last_day=0)
        return MessageStats(
            total=int(row["total"]),
            commands=int(row["commands"]),
            last_hour=int(row["last_hour"]),
            last_day=int(row["last_day"]),
        )
