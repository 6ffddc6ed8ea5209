"""SQLite store base class — shared boilerplate for all stackmemory stores.

Provides connection management, schema creation, an optional migration
hook, the write-transaction helper with bounded busy retries, and common
count/clear methods.  Pure stdlib — no external dependencies.
"""

from __future__ import annotations

import contextlib
import logging
import pathlib
import sqlite3
import time
from typing import Callable, Iterator, TypeVar

from stackmemory.errors import StorageUnavailable

log = logging.getLogger("stackmemory.sqlite_store")

T = TypeVar("T")

_BUSY_MARKERS = ("database is locked", "database is busy", "database table is locked")


def is_busy_error(exc: BaseException) -> bool:
    """Return True if *exc* is SQLite's retryable locked/busy signal."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    msg = str(exc).lower()
    return any(marker in msg for marker in _BUSY_MARKERS)


class RetryPolicy:
    """Bounded retry-with-backoff around a busy store.

    ``attempts`` counts every try, including the first one.  The delay
    before retry *n* (0-based) is ``base_delay * factor ** n``.
    """

    def __init__(
        self,
        attempts: int = 3,
        base_delay: float = 0.05,
        factor: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = attempts
        self.base_delay = base_delay
        self.factor = factor
        self._sleep = sleep

    def delays(self) -> list[float]:
        """Return the backoff schedule (one entry per retry)."""
        return [self.base_delay * (self.factor ** n) for n in range(self.attempts - 1)]

    def run(self, fn: Callable[[], T], label: str = "write") -> T:
        """Call *fn*, retrying on busy errors.  Other errors propagate."""
        delays = self.delays()
        last_error: sqlite3.OperationalError | None = None
        for attempt in range(self.attempts):
            try:
                return fn()
            except sqlite3.OperationalError as exc:
                if not is_busy_error(exc):
                    raise
                last_error = exc
                if attempt < self.attempts - 1:
                    delay = delays[attempt]
                    log.warning(
                        "%s: database busy — retry %d/%d in %.2fs",
                        label, attempt + 1, self.attempts - 1, delay,
                    )
                    self._sleep(delay)
        raise StorageUnavailable(
            f"{label} failed after {self.attempts} attempts: {last_error}"
        ) from last_error


class SQLiteStore:
    """Base class for SQLite-backed stores.

    Subclasses must set:
        _SCHEMA: tuple[str, ...] — CREATE TABLE / CREATE INDEX statements
        _TABLE_NAME: str         — the primary table (used by count/clear)

    Subclasses may override:
        _migrate(con)     — run schema migrations after table creation
        _row_to_dict(row) — customize row-to-dict conversion
    """

    _SCHEMA: tuple[str, ...] = ()
    _TABLE_NAME: str

    def __init__(
        self,
        db_path: pathlib.Path,
        timeout: float = 5.0,
        retry: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = pathlib.Path(db_path)
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.clock = clock
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write(self._create_schema, label=f"schema {self._TABLE_NAME}")

    def _create_schema(self, con: sqlite3.Connection) -> None:
        for stmt in self._SCHEMA:
            con.execute(stmt)
        self._migrate(con)

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(
            str(self.db_path), timeout=self.timeout, isolation_level=None,
        )
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA journal_mode=WAL")
        con.execute("PRAGMA foreign_keys=ON")
        return con

    @contextlib.contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for reads; always closed on exit."""
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction holding the single-writer lock from the start.

        BEGIN IMMEDIATE takes the RESERVED lock up front, so every check
        made inside the block stays valid until COMMIT.
        """
        con = self._connect()
        try:
            con.execute("BEGIN IMMEDIATE")
            try:
                yield con
            except BaseException:
                if con.in_transaction:
                    con.execute("ROLLBACK")
                raise
            con.execute("COMMIT")
        finally:
            con.close()

    def _write(self, fn: Callable[[sqlite3.Connection], T], label: str) -> T:
        """Run *fn* inside a write transaction under the retry policy."""

        def attempt() -> T:
            with self._transaction() as con:
                return fn(con)

        return self.retry.run(attempt, label=label)

    def _migrate(self, con: sqlite3.Connection) -> None:
        """Override in subclasses for schema migrations."""

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict:
        return dict(row)

    def count(self) -> int:
        """Return total number of rows in the table."""
        with self._read() as con:
            row = con.execute(
                f"SELECT COUNT(*) AS cnt FROM {self._TABLE_NAME}"
            ).fetchone()
            return row["cnt"]

    def clear(self) -> None:
        """Delete all rows from the table."""
        self._write(
            lambda con: con.execute(f"DELETE FROM {self._TABLE_NAME}"),
            label=f"clear {self._TABLE_NAME}",
        )
