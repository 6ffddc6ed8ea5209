"""Frame stack backed by SQLite.

Frames are nested units of work forming one tree per run, stored as a
flat (frame_id, parent_frame_id) table.  The "current" frame is never
stored: it is the deepest active frame of a run, recovered by walking
parent pointers (see get_active_path).

Lifecycle rules:
  - a child may only be opened under an existing, active parent of the
    same run and project;
  - depth = parent.depth + 1 (root = 0), bounded by max_depth;
  - a frame may only close once all of its children have closed;
  - closing computes the digest once and freezes the frame.

Pure stdlib — no external dependencies.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid

from stackmemory.digest import DigestResult, generate_digest
from stackmemory.errors import (
    AlreadyClosed,
    DepthExceeded,
    FrameClosed,
    InvalidParent,
    NotFound,
    OpenChildren,
    ValidationError,
)
from stackmemory.event_log import fetch_anchors, fetch_events
from stackmemory.retrieval import CONTEXTS_SCHEMA, digest_importance, insert_context
from stackmemory.schema import CORE_SCHEMA
from stackmemory.sqlite_store import SQLiteStore

log = logging.getLogger("stackmemory.frame_stack")

FRAME_TYPES = frozenset({"task", "subtask", "tool_scope", "review", "write", "debug"})
FRAME_STATES = frozenset({"active", "closed"})


class FrameStack(SQLiteStore):
    """Open, close and walk frames in a local SQLite database."""

    _TABLE_NAME = "frames"
    _SCHEMA = CORE_SCHEMA + CONTEXTS_SCHEMA

    def __init__(
        self,
        db_path,
        max_depth: int = 20,
        digest_max_length: int = 2000,
        **kwargs,
    ) -> None:
        self.max_depth = max_depth
        self.digest_max_length = digest_max_length
        super().__init__(db_path, **kwargs)

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict:
        d = dict(row)
        for key in ("inputs", "outputs", "digest_json"):
            value = d.get(key)
            if isinstance(value, str):
                try:
                    d[key] = json.loads(value)
                except (json.JSONDecodeError, TypeError):
                    d[key] = {}
        return d

    def _fetch(self, con: sqlite3.Connection, frame_id: str) -> dict | None:
        row = con.execute(
            "SELECT * FROM frames WHERE frame_id = ?", (frame_id,),
        ).fetchone()
        return self._row_to_dict(row) if row else None

    # -- lifecycle --------------------------------------------------------

    def open_frame(
        self,
        run_id: str,
        project_id: str,
        frame_type: str,
        name: str,
        inputs: dict | None = None,
        parent_frame_id: str | None = None,
    ) -> str:
        """Persist a new active frame and return its frame_id."""
        if frame_type not in FRAME_TYPES:
            raise ValidationError(f"Unknown frame type: {frame_type!r}")
        frame_id = uuid.uuid4().hex
        inputs_json = json.dumps(inputs or {}, sort_keys=True)
        now = self.clock()

        def insert(con: sqlite3.Connection) -> int:
            depth = 0
            if parent_frame_id is not None:
                parent = con.execute(
                    "SELECT run_id, project_id, depth, state FROM frames WHERE frame_id = ?",
                    (parent_frame_id,),
                ).fetchone()
                if parent is None:
                    raise InvalidParent(parent_frame_id, "does not exist")
                if parent["state"] != "active":
                    raise InvalidParent(parent_frame_id, "is closed")
                if parent["run_id"] != run_id:
                    raise InvalidParent(parent_frame_id, "belongs to another run")
                if parent["project_id"] != project_id:
                    raise InvalidParent(parent_frame_id, "belongs to another project")
                depth = parent["depth"] + 1
            if depth > self.max_depth:
                raise DepthExceeded(depth, self.max_depth)
            con.execute(
                "INSERT INTO frames "
                "(frame_id, run_id, project_id, parent_frame_id, depth, type, name, "
                "state, inputs, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, 'active', ?, ?)",
                (frame_id, run_id, project_id, parent_frame_id, depth,
                 frame_type, name, inputs_json, now),
            )
            return depth

        depth = self._write(insert, label="open_frame")
        log.info(
            "Opened frame %s  type=%s depth=%d name=%r", frame_id, frame_type, depth, name,
        )
        return frame_id

    def close_frame(self, frame_id: str, outputs: dict | None = None) -> DigestResult:
        """Close an active frame, computing and storing its digest.

        The existence, state and open-children checks run in the same
        transaction as the close write, so no child can slip in between.
        """

        def close(con: sqlite3.Connection) -> tuple[DigestResult, dict]:
            frame = self._fetch(con, frame_id)
            if frame is None:
                raise NotFound("Frame", frame_id)
            if frame["state"] == "closed":
                raise AlreadyClosed(frame_id)
            children = con.execute(
                "SELECT frame_id FROM frames WHERE parent_frame_id = ? AND state = 'active' "
                "ORDER BY created_at ASC, rowid ASC",
                (frame_id,),
            ).fetchall()
            if children:
                raise OpenChildren(frame_id, [c["frame_id"] for c in children])

            frame["outputs"] = {**frame["outputs"], **(outputs or {})}
            anchors = fetch_anchors(con, frame_id)
            events = fetch_events(con, frame_id)
            digest = generate_digest(frame, anchors, events, self.digest_max_length)
            closed_at = max(self.clock(), frame["created_at"])

            con.execute(
                "UPDATE frames SET state = 'closed', outputs = ?, digest_text = ?, "
                "digest_json = ?, closed_at = ? WHERE frame_id = ?",
                (
                    json.dumps(frame["outputs"], sort_keys=True, default=str),
                    digest.text,
                    json.dumps(digest.structured, sort_keys=True, default=str),
                    closed_at,
                    frame_id,
                ),
            )
            insert_context(
                con, "digest", digest.text,
                digest_importance([a["priority"] for a in anchors]), closed_at,
                source_id=frame_id, project_id=frame["project_id"],
            )
            return digest, frame

        digest, frame = self._write(close, label="close_frame")
        log.info(
            "Closed frame %s  name=%r digest=%d chars",
            frame_id, frame["name"], len(digest.text),
        )
        return digest

    def update_outputs(self, frame_id: str, outputs: dict) -> dict:
        """Merge *outputs* into an active frame's outputs; return the result."""

        def update(con: sqlite3.Connection) -> dict:
            frame = self._fetch(con, frame_id)
            if frame is None:
                raise NotFound("Frame", frame_id)
            if frame["state"] != "active":
                raise FrameClosed(frame_id)
            merged = {**frame["outputs"], **outputs}
            con.execute(
                "UPDATE frames SET outputs = ? WHERE frame_id = ?",
                (json.dumps(merged, sort_keys=True, default=str), frame_id),
            )
            return merged

        return self._write(update, label="update_outputs")

    # -- queries ----------------------------------------------------------

    def get_frame(self, frame_id: str) -> dict | None:
        with self._read() as con:
            return self._fetch(con, frame_id)

    def get_children(self, frame_id: str, state: str | None = None) -> list[dict]:
        """Direct children of a frame, oldest first, optionally by state."""
        if state is not None and state not in FRAME_STATES:
            raise ValidationError(f"Unknown frame state: {state!r}")
        sql = "SELECT * FROM frames WHERE parent_frame_id = ?"
        args: list = [frame_id]
        if state is not None:
            sql += " AND state = ?"
            args.append(state)
        with self._read() as con:
            rows = con.execute(sql + " ORDER BY created_at ASC, rowid ASC", args).fetchall()
            return [self._row_to_dict(r) for r in rows]

    def get_active_path(self, run_id: str) -> list[dict]:
        """Frames from the run's root down to its deepest active frame.

        Empty when the run has no active frame.  Parents are walked with a
        loop; a visited set guards against a corrupted (cyclic) chain.
        """
        with self._read() as con:
            row = con.execute(
                "SELECT * FROM frames WHERE run_id = ? AND state = 'active' "
                "ORDER BY depth DESC, created_at DESC, rowid DESC LIMIT 1",
                (run_id,),
            ).fetchone()
            if row is None:
                return []
            path = [self._row_to_dict(row)]
            seen = {path[0]["frame_id"]}
            parent_id = path[0]["parent_frame_id"]
            while parent_id is not None and parent_id not in seen:
                parent = self._fetch(con, parent_id)
                if parent is None:
                    break
                path.append(parent)
                seen.add(parent_id)
                parent_id = parent["parent_frame_id"]
        path.reverse()
        return path

    def list_active_frames(self, project_id: str, limit: int = 50) -> list[dict]:
        """Active frames of a project, most recently created first."""
        with self._read() as con:
            rows = con.execute(
                "SELECT * FROM frames WHERE project_id = ? AND state = 'active' "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (project_id, limit),
            ).fetchall()
            return [self._row_to_dict(r) for r in rows]

    def get_stats(self) -> dict:
        """Row counts across frames, anchors and events."""
        with self._read() as con:
            row = con.execute(
                "SELECT "
                "(SELECT COUNT(*) FROM frames) AS total_frames, "
                "(SELECT COUNT(*) FROM frames WHERE state = 'active') AS active_frames, "
                "(SELECT COUNT(*) FROM anchors) AS total_anchors, "
                "(SELECT COUNT(*) FROM events) AS total_events"
            ).fetchone()
            return dict(row)
