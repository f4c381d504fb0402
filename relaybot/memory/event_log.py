"""Event log store for bot activity (denials, commands, LLM failures)."""

from __future__ import annotations

import json
import sqlite3
from typing import Any


class EventLogStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def record(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        decision: str | None = None,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO events (event_type, decision, payload)
            VALUES (?, ?, ?)
            """,
            (event_type, decision, json.dumps(payload, ensure_ascii=True)),
        )
        self._conn.commit()
        return int(cursor.lastrowid)

    def latest(self, limit: int = 50, *, event_type: str | None = None) -> list[dict[str, Any]]:
        if event_type is None:
            rows = self._conn.execute(
                """
                SELECT id, event_type, decision, payload, created_at
                FROM events
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                """
                SELECT id, event_type, decision, payload, created_at
                FROM events
                WHERE event_type = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (event_type, limit),
            ).fetchall()
        out: list[dict[str, Any]] = []
        for row in rows:
            item = dict(row)
            item["payload"] = json.loads(item["payload"])
            out.append(item)
        return out

    def counts_by_type(self) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT event_type, COUNT(*) AS n FROM events GROUP BY event_type ORDER BY event_type ASC"
        ).fetchall()
        return {str(row["event_type"]): int(row["n"]) for row in rows}
