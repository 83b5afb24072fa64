"""SQLite implementation of the storage port.

This adapter backs the engine with the standard library's sqlite3 module.
It is the reference collaborator used by the default connection factory and
by the test suite.

SQLite accepts backtick-quoted identifiers, "?" placeholders, LIMIT/OFFSET,
multi-row VALUES and SAVEPOINT as emitted by the grammar. The remaining
MySQL clauses are translated before execution:

    ON DUPLICATE KEY UPDATE c = VALUES(c)  ->  ON CONFLICT DO UPDATE SET c = excluded.c
    FOR UPDATE / LOCK IN SHARE MODE        ->  dropped (SQLite locks the whole database)

The connection runs in autocommit mode (isolation_level=None); transactions
are opened explicitly with BEGIN.
"""

from __future__ import annotations

import re
import sqlite3
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterator, Sequence

_UPSERT_RE = re.compile(r"\s+ON DUPLICATE KEY UPDATE\s+(?P<assignments>.+)$", re.DOTALL)
_VALUES_RE = re.compile(r"VALUES\((`[^`]+`)\)")
_LOCK_RE = re.compile(r"\s+(FOR UPDATE|LOCK IN SHARE MODE)$")

# OperationalError messages for conditions that clear once the other writer finishes
_TRANSIENT_MARKERS = ("database is locked", "database table is locked", "busy")


@lru_cache(maxsize=1024)
def translate(sql: str) -> str:
    """Rewrite the MySQL-only clauses of a statement for SQLite."""
    match = _UPSERT_RE.search(sql)
    if match:
        assignments = _VALUES_RE.sub(r"excluded.\1", match.group("assignments"))
        sql = sql[: match.start()] + " ON CONFLICT DO UPDATE SET " + assignments
    return _LOCK_RE.sub("", sql)


def _regexp(pattern: str, value: Any) -> bool:
    if value is None:
        return False
    return re.search(pattern, str(value)) is not None


class SQLiteCursor:
    """Cursor wrapper yielding rows as plain dicts."""

    def __init__(self, cursor: sqlite3.Cursor) -> None:
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    @property
    def lastrowid(self) -> int | None:
        return self._cursor.lastrowid

    def fetchone(self) -> dict[str, Any] | None:
        row = self._cursor.fetchone()
        return dict(row) if row is not None else None

    def fetchall(self) -> list[dict[str, Any]]:
        return [dict(row) for row in self._cursor.fetchall()]

    def __iter__(self) -> Iterator[dict[str, Any]]:
        for row in self._cursor:
            yield dict(row)


class SQLiteConnection:
    """SQLite-backed implementation of the StorageConnection protocol.

    Attributes:
        path: Database file path, or ":memory:".
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        """Open the database.

        Args:
            path: Database file path. ":memory:" opens a private in-memory
                database that lives as long as the connection.
        """
        self.path = str(path)
        self._connection = sqlite3.connect(
            self.path,
            isolation_level=None,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._connection.create_function("REGEXP", 2, _regexp, deterministic=True)
        self._connection.execute("PRAGMA foreign_keys = ON")
        self._last_insert_id: int | None = None
        self._closed = False

    def execute(self, sql: str, params: Sequence[Any] = ()) -> SQLiteCursor:
        self._check_open()
        cursor = SQLiteCursor(self._connection.execute(translate(sql), tuple(params)))
        if cursor.lastrowid:
            self._last_insert_id = cursor.lastrowid
        return cursor

    def last_insert_id(self) -> int | None:
        return self._last_insert_id

    def begin_transaction(self) -> None:
        self._check_open()
        self._connection.execute("BEGIN")

    def commit(self) -> None:
        self._check_open()
        self._connection.execute("COMMIT")

    def roll_back(self) -> None:
        self._check_open()
        self._connection.execute("ROLLBACK")

    def exec(self, statement: str) -> None:
        self._check_open()
        self._connection.execute(statement)

    def execute_script(self, script: str) -> None:
        """Run several ;-separated statements (schema set-up).

        sqlite3 commits any open transaction before running a script.
        """
        self._check_open()
        self._connection.executescript(script)

    def is_transient_error(self, error: BaseException) -> bool:
        if not isinstance(error, sqlite3.OperationalError):
            return False
        message = str(error).lower()
        return any(marker in message for marker in _TRANSIENT_MARKERS)

    def close(self) -> None:
        if not self._closed:
            self._connection.close()
            self._closed = True

    @property
    def in_transaction(self) -> bool:
        return self._connection.in_transaction

    def _check_open(self) -> None:
        if self._closed:
            raise sqlite3.ProgrammingError("Cannot operate on a closed connection")
