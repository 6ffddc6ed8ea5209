"""Tests for stackmemory.sqlite_store — SQLiteStore and RetryPolicy."""

from __future__ import annotations

import sqlite3

import pytest

from stackmemory.errors import StorageUnavailable
from stackmemory.sqlite_store import RetryPolicy, SQLiteStore, is_busy_error


class NoteStore(SQLiteStore):
    _TABLE_NAME = "notes"
    _SCHEMA = ("CREATE TABLE IF NOT EXISTS notes (id INTEGER PRIMARY KEY, body TEXT)",)

    def add(self, body: str) -> int:
        return self._write(
            lambda con: con.execute("INSERT INTO notes (body) VALUES (?)", (body,)).lastrowid,
            label="add_note",
        )


def _busy() -> sqlite3.OperationalError:
    return sqlite3.OperationalError("database is locked")


class TestIsBusyError:
    def test_locked_is_busy(self):
        assert is_busy_error(_busy()) is True

    def test_other_operational_error_is_not_busy(self):
        assert is_busy_error(sqlite3.OperationalError("no such table: x")) is False

    def test_non_sqlite_error_is_not_busy(self):
        assert is_busy_error(ValueError("database is locked")) is False


class TestRetryPolicy:
    """run() retries busy errors only, within a fixed bound."""

    def test_delays_grow_geometrically(self):
        policy = RetryPolicy(attempts=4, base_delay=0.1, factor=2.0)
        assert policy.delays() == pytest.approx([0.1, 0.2, 0.4])

    def test_single_attempt_has_no_delays(self):
        assert RetryPolicy(attempts=1).delays() == []

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0)

    def test_returns_first_success(self):
        slept = []
        policy = RetryPolicy(attempts=3, sleep=slept.append)
        assert policy.run(lambda: 42) == 42
        assert slept == []

    def test_retries_busy_then_succeeds(self):
        slept = []
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise _busy()
            return "ok"

        policy = RetryPolicy(attempts=3, base_delay=0.01, sleep=slept.append)
        assert policy.run(flaky) == "ok"
        assert calls["n"] == 3
        assert slept == pytest.approx([0.01, 0.02])

    def test_exhausted_raises_storage_unavailable(self):
        calls = {"n": 0}

        def always_busy():
            calls["n"] += 1
            raise _busy()

        policy = RetryPolicy(attempts=3, sleep=lambda _: None)
        with pytest.raises(StorageUnavailable) as exc_info:
            policy.run(always_busy)
        assert calls["n"] == 3
        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)

    def test_non_busy_error_propagates_without_retry(self):
        calls = {"n": 0}

        def broken():
            calls["n"] += 1
            raise sqlite3.OperationalError("no such column: nope")

        policy = RetryPolicy(attempts=3, sleep=lambda _: None)
        with pytest.raises(sqlite3.OperationalError):
            policy.run(broken)
        assert calls["n"] == 1


class TestSQLiteStore:
    def test_creates_parent_directory(self, tmp_path):
        store = NoteStore(tmp_path / "nested" / "dir" / "notes.db")
        assert store.db_path.exists()

    def test_count_and_clear(self, tmp_path):
        store = NoteStore(tmp_path / "notes.db")
        store.add("a")
        store.add("b")
        assert store.count() == 2
        store.clear()
        assert store.count() == 0

    def test_uses_wal_journal(self, tmp_path):
        store = NoteStore(tmp_path / "notes.db")
        with store._read() as con:
            mode = con.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"

    def test_failed_transaction_rolls_back(self, tmp_path):
        store = NoteStore(tmp_path / "notes.db")

        def insert_then_fail(con):
            con.execute("INSERT INTO notes (body) VALUES ('x')")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store._write(insert_then_fail, label="fail")
        assert store.count() == 0

    def test_held_write_lock_surfaces_storage_unavailable(self, tmp_path):
        store = NoteStore(
            tmp_path / "notes.db",
            timeout=0.05,
            retry=RetryPolicy(attempts=2, sleep=lambda _: None),
        )
        blocker = sqlite3.connect(str(store.db_path), isolation_level=None)
        try:
            blocker.execute("BEGIN IMMEDIATE")
            with pytest.raises(StorageUnavailable):
                store.add("blocked")
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()
        assert store.add("after") == 1
