"""Anchor & event log backed by SQLite.

Anchors are typed, prioritized facts scoped to one frame; events are the
strictly ordered record of a run.  Both are append-only and may only be
written while the owning frame is active.  Every anchor is also projected
into the retrievable ``contexts`` table.  Pure stdlib — no external
dependencies.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from typing import Iterator

from stackmemory.errors import FrameClosed, NotFound, ValidationError
from stackmemory.retrieval import (
    CONTEXTS_SCHEMA,
    anchor_importance,
    insert_context,
    mark_superseded,
)
from stackmemory.schema import CORE_SCHEMA
from stackmemory.sqlite_store import SQLiteStore

log = logging.getLogger("stackmemory.event_log")

# Declaration order is also digest section order.
ANCHOR_TYPES: tuple[str, ...] = (
    "DECISION",
    "CONSTRAINT",
    "INTERFACE_CONTRACT",
    "FACT",
    "RISK",
    "TODO",
)

EVENT_TYPES: tuple[str, ...] = (
    "user_message",
    "assistant_message",
    "tool_call",
    "tool_result",
    "decision",
    "constraint",
    "artifact",
    "observation",
)

_PAGE_SIZE = 100


def _loads(value, default):
    if not isinstance(value, str):
        return value if value is not None else default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


def anchor_row_to_dict(row: sqlite3.Row) -> dict:
    d = dict(row)
    d["metadata"] = _loads(d.get("metadata"), {})
    return d


def event_row_to_dict(row: sqlite3.Row) -> dict:
    d = dict(row)
    d["payload"] = _loads(d.get("payload"), {})
    return d


def fetch_anchors(
    con: sqlite3.Connection, frame_id: str, include_superseded: bool = False,
) -> list[dict]:
    """Anchors of a frame in creation order."""
    sql = "SELECT * FROM anchors WHERE frame_id = ?"
    if not include_superseded:
        sql += (
            " AND anchor_id NOT IN "
            "(SELECT supersedes FROM anchors WHERE supersedes IS NOT NULL)"
        )
    rows = con.execute(sql + " ORDER BY id ASC", (frame_id,)).fetchall()
    return [anchor_row_to_dict(r) for r in rows]


def fetch_events(con: sqlite3.Connection, frame_id: str) -> list[dict]:
    """Events of a frame in seq order."""
    rows = con.execute(
        "SELECT * FROM events WHERE frame_id = ? ORDER BY seq ASC", (frame_id,),
    ).fetchall()
    return [event_row_to_dict(r) for r in rows]


def _require_active(con: sqlite3.Connection, frame_id: str) -> sqlite3.Row:
    row = con.execute(
        "SELECT frame_id, project_id, state FROM frames WHERE frame_id = ?",
        (frame_id,),
    ).fetchone()
    if row is None:
        raise NotFound("Frame", frame_id)
    if row["state"] != "active":
        raise FrameClosed(frame_id)
    return row


class EventIterable:
    """Lazy, restartable view over a frame's events.

    Each iteration runs a fresh keyset-paginated query, so it sees rows
    committed up to that point and always terminates.
    """

    def __init__(
        self, log_store: "EventLog", frame_id: str, limit: int | None, order: str,
    ) -> None:
        if order not in ("asc", "desc"):
            raise ValidationError(f"order must be 'asc' or 'desc', got {order!r}")
        self._store = log_store
        self.frame_id = frame_id
        self.limit = limit
        self.order = order

    def __iter__(self) -> Iterator[dict]:
        remaining = self.limit
        cmp, direction = (">", "ASC") if self.order == "asc" else ("<", "DESC")
        cursor_seq: int | None = None
        while remaining is None or remaining > 0:
            page = _PAGE_SIZE if remaining is None else min(_PAGE_SIZE, remaining)
            sql = "SELECT * FROM events WHERE frame_id = ?"
            args: list = [self.frame_id]
            if cursor_seq is not None:
                sql += f" AND seq {cmp} ?"
                args.append(cursor_seq)
            sql += f" ORDER BY seq {direction} LIMIT ?"
            args.append(page)
            with self._store._read() as con:
                rows = con.execute(sql, args).fetchall()
            if not rows:
                return
            for row in rows:
                yield event_row_to_dict(row)
            cursor_seq = rows[-1]["seq"]
            if remaining is not None:
                remaining -= len(rows)
            if len(rows) < page:
                return


class EventLog(SQLiteStore):
    """Append anchors and events to active frames."""

    _TABLE_NAME = "events"
    _SCHEMA = CORE_SCHEMA + CONTEXTS_SCHEMA

    # -- anchors ----------------------------------------------------------

    def add_anchor(
        self,
        frame_id: str,
        anchor_type: str,
        text: str,
        priority: float = 5,
        metadata: dict | None = None,
        supersedes: str | None = None,
    ) -> str:
        """Attach an anchor to an active frame and return its anchor_id.

        Duplicate texts are allowed; the digest deduplicates them.  With
        *supersedes*, the named anchor (which must belong to the same
        frame) is hidden from get_anchors(), digests and retrieval, but its
        row is left untouched.
        """
        if anchor_type not in ANCHOR_TYPES:
            raise ValidationError(f"Unknown anchor type: {anchor_type!r}")
        anchor_id = uuid.uuid4().hex
        meta_json = json.dumps(metadata or {}, sort_keys=True)
        now = self.clock()

        def insert(con: sqlite3.Connection) -> str:
            frame = _require_active(con, frame_id)
            if supersedes is not None:
                found = con.execute(
                    "SELECT frame_id FROM anchors WHERE anchor_id = ?", (supersedes,),
                ).fetchone()
                if found is None:
                    raise NotFound("Anchor", supersedes)
                if found["frame_id"] != frame_id:
                    raise ValidationError(
                        f"Anchor {supersedes} belongs to frame {found['frame_id']}, "
                        f"not {frame_id}"
                    )
                mark_superseded(con, supersedes)
            con.execute(
                "INSERT INTO anchors "
                "(anchor_id, frame_id, type, text, priority, metadata, supersedes, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (anchor_id, frame_id, anchor_type, text, priority, meta_json, supersedes, now),
            )
            insert_context(
                con, anchor_type.lower(), text, anchor_importance(priority), now,
                source_id=anchor_id, project_id=frame["project_id"],
            )
            return anchor_id

        self._write(insert, label="add_anchor")
        log.debug("Anchor %s (%s, p%s) added to frame %s", anchor_id, anchor_type, priority, frame_id)
        return anchor_id

    def get_anchors(self, frame_id: str, include_superseded: bool = False) -> list[dict]:
        """Anchors of a frame, highest priority first, then creation order."""
        with self._read() as con:
            anchors = fetch_anchors(con, frame_id, include_superseded)
        return sorted(anchors, key=lambda a: -a["priority"])

    def get_anchor(self, anchor_id: str) -> dict | None:
        with self._read() as con:
            row = con.execute(
                "SELECT * FROM anchors WHERE anchor_id = ?", (anchor_id,),
            ).fetchone()
            return anchor_row_to_dict(row) if row else None

    # -- events -----------------------------------------------------------

    def append_event(
        self,
        run_id: str,
        frame_id: str,
        event_type: str,
        payload: dict | None = None,
    ) -> str:
        """Append an event to *run_id* and return its event_id.

        The next seq is read and the row inserted under one IMMEDIATE
        transaction, so concurrent appenders to a run never share a seq.
        """
        if event_type not in EVENT_TYPES:
            raise ValidationError(f"Unknown event type: {event_type!r}")
        if payload is not None and not isinstance(payload, dict):
            raise ValidationError(
                f"Event payload must be a mapping, got {type(payload).__name__}"
            )
        event_id = uuid.uuid4().hex
        payload_json = json.dumps(payload or {}, sort_keys=True)

        def insert(con: sqlite3.Connection) -> int:
            _require_active(con, frame_id)
            row = con.execute(
                "SELECT COALESCE(MAX(seq), 0) + 1 AS next_seq FROM events WHERE run_id = ?",
                (run_id,),
            ).fetchone()
            seq = row["next_seq"]
            con.execute(
                "INSERT INTO events (event_id, frame_id, run_id, seq, event_type, payload, ts) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (event_id, frame_id, run_id, seq, event_type, payload_json, self.clock()),
            )
            return seq

        seq = self._write(insert, label="append_event")
        log.debug("Event %s seq=%d (%s) in run %s", event_id, seq, event_type, run_id)
        return event_id

    def list_events(
        self, frame_id: str, limit: int | None = None, order: str = "desc",
    ) -> EventIterable:
        """Lazy sequence of a frame's events ordered by seq."""
        return EventIterable(self, frame_id, limit, order)

    def get_run_events(self, run_id: str) -> list[dict]:
        """All events of a run in seq order."""
        with self._read() as con:
            rows = con.execute(
                "SELECT * FROM events WHERE run_id = ? ORDER BY seq ASC", (run_id,),
            ).fetchall()
            return [event_row_to_dict(r) for r in rows]
