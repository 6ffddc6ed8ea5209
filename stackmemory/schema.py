"""Table definitions shared by the frame stack and the anchor/event log.

Both stores read each other's tables inside their transactions, so either
one can create the full set.
"""

from __future__ import annotations

FRAMES_TABLE = """\
CREATE TABLE IF NOT EXISTS frames (
    frame_id        TEXT    PRIMARY KEY,
    run_id          TEXT    NOT NULL,
    project_id      TEXT    NOT NULL,
    parent_frame_id TEXT    REFERENCES frames(frame_id),
    depth           INTEGER NOT NULL DEFAULT 0,
    type            TEXT    NOT NULL,
    name            TEXT    NOT NULL,
    state           TEXT    NOT NULL DEFAULT 'active',
    inputs          TEXT    NOT NULL DEFAULT '{}',
    outputs         TEXT    NOT NULL DEFAULT '{}',
    digest_text     TEXT,
    digest_json     TEXT,
    created_at      REAL    NOT NULL,
    closed_at       REAL
)
"""

ANCHORS_TABLE = """\
CREATE TABLE IF NOT EXISTS anchors (
    id         INTEGER PRIMARY KEY,
    anchor_id  TEXT    NOT NULL UNIQUE,
    frame_id   TEXT    NOT NULL REFERENCES frames(frame_id),
    type       TEXT    NOT NULL,
    text       TEXT    NOT NULL,
    priority   NUMERIC NOT NULL DEFAULT 5,
    metadata   TEXT    NOT NULL DEFAULT '{}',
    supersedes TEXT,
    created_at REAL    NOT NULL
)
"""

EVENTS_TABLE = """\
CREATE TABLE IF NOT EXISTS events (
    id         INTEGER PRIMARY KEY,
    event_id   TEXT    NOT NULL UNIQUE,
    frame_id   TEXT    NOT NULL REFERENCES frames(frame_id),
    run_id     TEXT    NOT NULL,
    seq        INTEGER NOT NULL,
    event_type TEXT    NOT NULL,
    payload    TEXT    NOT NULL DEFAULT '{}',
    ts         REAL    NOT NULL,
    UNIQUE (run_id, seq)
)
"""

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_frames_parent ON frames(parent_frame_id)",
    "CREATE INDEX IF NOT EXISTS idx_frames_run_state ON frames(run_id, state)",
    "CREATE INDEX IF NOT EXISTS idx_frames_project_state ON frames(project_id, state, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_anchors_frame ON anchors(frame_id, priority DESC)",
    "CREATE INDEX IF NOT EXISTS idx_events_frame_seq ON events(frame_id, seq)",
)

CORE_SCHEMA: tuple[str, ...] = (FRAMES_TABLE, ANCHORS_TABLE, EVENTS_TABLE) + INDEXES
