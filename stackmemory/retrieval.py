"""Context retrieval backed by SQLite.

Contexts are the retrievable unit: a materialized projection of frame
digests and anchors (plus directly added notes), each with an importance
score in [0, 1] and access statistics.

Query order of business:
  1. keyword signature of the intent (lower-case, split on non-word
     characters, tokens of length >= 3, first 5, joined by one space);
  2. direct match — contexts whose content contains the signature;
  3. no direct match — global top-importance, most recently accessed first;
  4. bump access_count / last_accessed of every returned context;
  5. log the query through the attention tracker (best effort).

Contexts whose source anchor was superseded are skipped by both passes.
Queries never write ``content`` or ``importance``.
Pure stdlib — no external dependencies.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import uuid
from typing import NamedTuple

from stackmemory.attention import AttentionTracker
from stackmemory.sqlite_store import SQLiteStore

log = logging.getLogger("stackmemory.retrieval")

CONTEXTS_SCHEMA: tuple[str, ...] = (
    """\
CREATE TABLE IF NOT EXISTS contexts (
    id            TEXT    PRIMARY KEY,
    type          TEXT    NOT NULL,
    content       TEXT    NOT NULL,
    importance    REAL    NOT NULL DEFAULT 0.5,
    source_id     TEXT,
    project_id    TEXT    NOT NULL DEFAULT '',
    created_at    REAL    NOT NULL,
    last_accessed REAL    NOT NULL,
    access_count  INTEGER NOT NULL DEFAULT 0,
    superseded    INTEGER NOT NULL DEFAULT 0
)
""",
    "CREATE INDEX IF NOT EXISTS idx_contexts_rank ON contexts(importance DESC, last_accessed DESC)",
    "CREATE INDEX IF NOT EXISTS idx_contexts_source ON contexts(source_id)",
)

_SPLIT_RE = re.compile(r"\W+")
_MIN_TOKEN_LEN = 3
_MAX_TOKENS = 5


class Context(NamedTuple):
    id: str
    type: str
    content: str
    importance: float
    access_count: int
    last_accessed: float


def keyword_signature(text: str) -> str:
    """Normalize free text into the direct-match signature.

    Empty or all-short-token input gives "" (which always falls through to
    the top-importance pass).
    """
    tokens = [t for t in _SPLIT_RE.split((text or "").lower()) if len(t) >= _MIN_TOKEN_LEN]
    return " ".join(tokens[:_MAX_TOKENS])


def clamp_importance(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def anchor_importance(priority: float) -> float:
    """Anchor priority (0-10 scale) to context importance."""
    return round(clamp_importance(priority / 10.0), 4)


def digest_importance(priorities: list[float]) -> float:
    """Digest importance: 0.5 base, +0.05 per point of the top anchor priority."""
    top = max(priorities) if priorities else 0
    return round(clamp_importance(0.5 + 0.05 * top), 4)


def insert_context(
    con: sqlite3.Connection,
    context_type: str,
    content: str,
    importance: float,
    now: float,
    source_id: str | None = None,
    project_id: str = "",
) -> str:
    """Insert one context row on an open transaction and return its id."""
    context_id = f"{context_type}_{uuid.uuid4().hex}"
    con.execute(
        "INSERT INTO contexts "
        "(id, type, content, importance, source_id, project_id, created_at, last_accessed) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (context_id, context_type, content, clamp_importance(importance),
         source_id, project_id, now, now),
    )
    return context_id


def mark_superseded(con: sqlite3.Connection, source_id: str) -> int:
    """Hide the contexts projected from *source_id* from retrieval.

    Only the flag changes; content and importance stay as written.
    """
    cur = con.execute(
        "UPDATE contexts SET superseded = 1 WHERE source_id = ?", (source_id,),
    )
    return cur.rowcount


def _row_to_context(row: sqlite3.Row) -> Context:
    return Context(
        id=row["id"],
        type=row["type"],
        content=row["content"],
        importance=row["importance"],
        access_count=row["access_count"],
        last_accessed=row["last_accessed"],
    )


class ContextStore(SQLiteStore):
    """Store of retrievable contexts."""

    _TABLE_NAME = "contexts"
    _SCHEMA = CONTEXTS_SCHEMA

    def add_context(
        self,
        context_type: str,
        content: str,
        importance: float = 0.5,
        source_id: str | None = None,
        project_id: str = "",
    ) -> str:
        """Insert a context directly (decisions, constraints, learnings)."""
        now = self.clock()
        return self._write(
            lambda con: insert_context(
                con, context_type, content, importance, now,
                source_id=source_id, project_id=project_id,
            ),
            label="add_context",
        )

    def get(self, context_id: str) -> Context | None:
        with self._read() as con:
            row = con.execute(
                "SELECT * FROM contexts WHERE id = ?", (context_id,),
            ).fetchone()
            return _row_to_context(row) if row else None

    def get_by_source(self, source_id: str) -> list[Context]:
        with self._read() as con:
            rows = con.execute(
                "SELECT * FROM contexts WHERE source_id = ? ORDER BY created_at ASC, id ASC",
                (source_id,),
            ).fetchall()
            return [_row_to_context(r) for r in rows]

    def count_stale(self, days: float = 7) -> int:
        """Count contexts not accessed within the last *days* days."""
        cutoff = self.clock() - days * 86400
        with self._read() as con:
            row = con.execute(
                "SELECT COUNT(*) AS cnt FROM contexts WHERE last_accessed < ?",
                (cutoff,),
            ).fetchone()
            return row["cnt"]


class Retriever(ContextStore):
    """Rank contexts for an intent and record the access."""

    def __init__(
        self,
        db_path,
        tracker: AttentionTracker | None = None,
        default_limit: int = 10,
        **kwargs,
    ) -> None:
        super().__init__(db_path, **kwargs)
        self.tracker = tracker
        self.default_limit = default_limit

    def query(
        self,
        intent_text: str,
        limit: int | None = None,
        project_id: str | None = None,
    ) -> list[Context]:
        """Return up to *limit* contexts relevant to *intent_text*.

        Direct substring matches on the keyword signature win; with none,
        the globally most important contexts are returned.  Returned
        contexts carry their post-access counters.
        """
        if limit is None:
            limit = self.default_limit
        if limit <= 0:
            return []
        signature = keyword_signature(intent_text)
        scope_sql = "" if project_id is None else " AND project_id = ?"
        scope_args: tuple = () if project_id is None else (project_id,)

        def run(con: sqlite3.Connection) -> tuple[list[Context], str]:
            rows: list[sqlite3.Row] = []
            mode = "direct"
            if signature:
                con.create_function("lower_text", 1, str.lower, deterministic=True)
                rows = con.execute(
                    "SELECT * FROM contexts WHERE superseded = 0 "
                    "AND instr(lower_text(content), ?) > 0"
                    + scope_sql
                    + " ORDER BY importance DESC, id ASC LIMIT ?",
                    (signature, *scope_args, limit),
                ).fetchall()
            if not rows:
                mode = "top_importance"
                rows = con.execute(
                    "SELECT * FROM contexts WHERE superseded = 0"
                    + scope_sql
                    + " ORDER BY importance DESC, last_accessed DESC, id ASC LIMIT ?",
                    (*scope_args, limit),
                ).fetchall()
            if not rows:
                return [], mode
            now = self.clock()
            con.executemany(
                "UPDATE contexts SET access_count = access_count + 1, "
                "last_accessed = ? WHERE id = ?",
                [(now, r["id"]) for r in rows],
            )
            accessed = [
                _row_to_context(r)._replace(
                    access_count=r["access_count"] + 1, last_accessed=now,
                )
                for r in rows
            ]
            return accessed, mode

        results, mode = self._write(run, label="query")
        log.debug(
            "Query %r -> %d context(s) via %s (signature=%r)",
            intent_text, len(results), mode, signature,
        )
        self._track(intent_text, results)
        return results

    def _track(self, intent_text: str, results: list[Context]) -> None:
        if self.tracker is None:
            return
        try:
            self.tracker.record_query(intent_text, results)
        except Exception as exc:
            log.warning("Attention tracking failed (non-fatal): %s", exc)
