"""Attention tracker backed by SQLite.

Keeps an append-only log of retrieval queries and what they returned, for
later analysis.  One row per query, never per result.  Nothing here feeds
back into ranking.  Pure stdlib — no external dependencies.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Iterable

from stackmemory.sqlite_store import SQLiteStore

log = logging.getLogger("stackmemory.attention")


class AttentionTracker(SQLiteStore):
    """Record retrieval queries and aggregate recent query patterns."""

    _TABLE_NAME = "attention_log"
    _SCHEMA = (
        """\
CREATE TABLE IF NOT EXISTS attention_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    query       TEXT    NOT NULL,
    context_ids TEXT    NOT NULL DEFAULT '[]',
    response    TEXT    NOT NULL DEFAULT '[]',
    timestamp   REAL    NOT NULL
)
""",
        "CREATE INDEX IF NOT EXISTS idx_attention_ts ON attention_log(timestamp)",
    )

    def __init__(self, db_path, prefix_len: int = 50, **kwargs) -> None:
        self.prefix_len = prefix_len
        super().__init__(db_path, **kwargs)

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict:
        d = dict(row)
        for key in ("context_ids", "response"):
            if isinstance(d.get(key), str):
                try:
                    d[key] = json.loads(d[key])
                except (json.JSONDecodeError, TypeError):
                    d[key] = []
        return d

    def record_query(self, query: str, results: Iterable) -> int:
        """Append one log row for *query* and return its rowid.

        *results* are Context tuples (or dicts with id/type/content).
        """
        snapshot = []
        for item in results:
            if isinstance(item, dict):
                snapshot.append({k: item.get(k) for k in ("id", "type", "content")})
            else:
                snapshot.append({"id": item.id, "type": item.type, "content": item.content})
        ids = [s["id"] for s in snapshot]
        now = self.clock()

        def insert(con: sqlite3.Connection) -> int:
            cur = con.execute(
                "INSERT INTO attention_log (query, context_ids, response, timestamp) "
                "VALUES (?, ?, ?, ?)",
                (query, json.dumps(ids), json.dumps(snapshot), now),
            )
            return cur.lastrowid  # type: ignore[return-value]

        rid = self._write(insert, label="record_query")
        log.debug("Recorded query %r with %d result(s)", query[:self.prefix_len], len(ids))
        return rid

    def recent_patterns(
        self, window_seconds: float = 86400, limit: int = 3,
    ) -> list[tuple[str, int]]:
        """Return (query prefix, count) pairs for queries inside the window."""
        since = self.clock() - window_seconds
        with self._read() as con:
            rows = con.execute(
                "SELECT substr(query, 1, ?) AS prefix, COUNT(*) AS cnt "
                "FROM attention_log WHERE timestamp > ? "
                "GROUP BY prefix ORDER BY cnt DESC, prefix ASC LIMIT ?",
                (self.prefix_len, since, limit),
            ).fetchall()
            return [(r["prefix"], r["cnt"]) for r in rows]

    def get_recent(self, limit: int = 10) -> list[dict]:
        """Return the most recent log rows, newest first."""
        with self._read() as con:
            rows = con.execute(
                "SELECT * FROM attention_log ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [self._row_to_dict(r) for r in rows]
