"""
toolwarden Database Connection

Thin wrapper over sqlite3 returning rows as dicts. Connections run in
autocommit mode; multi-statement atomicity goes through ``transaction()``,
which takes the SQLite write lock up front with ``BEGIN IMMEDIATE`` so
that concurrent processes serialize their read-modify-write cycles.

Usage::

    from toolwarden.storage.db import connect

    conn = connect("state.db")
    with conn.transaction():
        row = conn.execute("SELECT value FROM t WHERE id = ?", ("a",)).fetchone()
        conn.execute("UPDATE t SET value = ? WHERE id = ?", (1, "a"))
    conn.close()
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any


class DbConnection:
    """sqlite3 connection wrapper."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._cursor: sqlite3.Cursor | None = None
        self._in_transaction = False

    def execute(self, sql: str, params: tuple = ()) -> DbConnection:
        """Execute a single SQL statement. Returns self for chaining."""
        self._cursor = self._conn.execute(sql, params)
        return self

    def executescript(self, sql: str) -> None:
        """Execute multiple SQL statements separated by semicolons."""
        self._conn.executescript(sql)

    def fetchone(self) -> dict[str, Any] | None:
        """Fetch one row as a dict."""
        if self._cursor is None:
            return None
        row = self._cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    def fetchall(self) -> list[dict[str, Any]]:
        """Fetch all rows as list of dicts."""
        if self._cursor is None:
            return []
        return [dict(r) for r in self._cursor.fetchall()]

    @contextmanager
    def transaction(self) -> Iterator[DbConnection]:
        """Run the enclosed statements as one write transaction.

        Nested calls join the outer transaction.
        """
        if self._in_transaction:
            yield self
            return
        self._conn.execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")
        finally:
            self._in_transaction = False

    def close(self) -> None:
        """Close the connection."""
        self._conn.close()

    def upsert(
        self,
        table: str,
        pk: tuple[str, ...],
        columns: list[str],
        values: tuple,
    ) -> None:
        """Insert or update a row keyed by a (possibly composite) primary key.

        Args:
            table: Table name.
            pk: Primary key column names.
            columns: All column names (including pk).
            values: Values tuple matching columns order.
        """
        placeholders = ", ".join(["?"] * len(columns))
        col_list = ", ".join(columns)
        non_pk = [c for c in columns if c not in pk]
        update_clause = ", ".join(f"{c} = excluded.{c}" for c in non_pk)
        sql = (
            f"INSERT INTO {table} ({col_list}) VALUES ({placeholders}) "
            f"ON CONFLICT ({', '.join(pk)}) DO UPDATE SET {update_clause}"
        )
        self._conn.execute(sql, values)


def connect(db_url: str, busy_timeout: float = 5.0) -> DbConnection:
    """Open a SQLite database.

    Args:
        db_url: File path or ``:memory:``. Parent directories are created.
        busy_timeout: Seconds to wait for a competing writer's lock.

    Returns:
        A DbConnection wrapper in autocommit mode.
    """
    if db_url != ":memory:":
        Path(db_url).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        db_url,
        timeout=busy_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return DbConnection(conn)
