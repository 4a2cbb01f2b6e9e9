"""
toolwarden Session Store

Session-scoped key-value persistence shared by the tool registry and the
trust scoring engine. Values are stored as JSON. ``update()`` performs an
atomic read-modify-write so counters never lose increments when several
mediation processes run against the same database.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from toolwarden.exceptions import StateStoreError
from toolwarden.storage.db import DbConnection, connect

logger = logging.getLogger(__name__)

_MISSING = object()


class SessionStore:
    """Key-value state for one mediation session.

    Args:
        db_url: SQLite path or ``:memory:``.
        session_id: Scope for every key read or written through this store.
        busy_timeout: Seconds to wait on a competing writer.
    """

    def __init__(self, db_url: str = ":memory:", session_id: str = "default", busy_timeout: float = 5.0):
        self.session_id = session_id
        self.db_url = db_url
        try:
            self._conn: DbConnection = connect(db_url, busy_timeout=busy_timeout)
            self._create_tables()
        except (sqlite3.Error, OSError) as e:
            raise StateStoreError("open", str(e), details={"db_url": db_url}) from e

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS session_state (
                session_id TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (session_id, key)
            );
        """)

    # ── Reads ───────────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        try:
            row = self._conn.execute(
                "SELECT value FROM session_state WHERE session_id = ? AND key = ?",
                (self.session_id, key),
            ).fetchone()
        except sqlite3.Error as e:
            raise StateStoreError("get", str(e), details={"key": key}) from e
        if row is None:
            return default
        return json.loads(row["value"])

    def keys(self, prefix: str = "") -> list[str]:
        """List keys in this session, optionally restricted to a prefix."""
        try:
            rows = self._conn.execute(
                "SELECT key FROM session_state WHERE session_id = ? ORDER BY key",
                (self.session_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StateStoreError("keys", str(e)) from e
        return [r["key"] for r in rows if r["key"].startswith(prefix)]

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    # ── Writes ──────────────────────────────────────────────

    def set(self, key: str, value: Any) -> None:
        try:
            self._write(key, value)
        except sqlite3.Error as e:
            raise StateStoreError("set", str(e), details={"key": key}) from e

    def delete(self, key: str) -> None:
        try:
            self._conn.execute(
                "DELETE FROM session_state WHERE session_id = ? AND key = ?",
                (self.session_id, key),
            )
        except sqlite3.Error as e:
            raise StateStoreError("delete", str(e), details={"key": key}) from e

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Atomically replace ``key`` with ``fn(current)``.

        ``current`` is ``default`` when the key does not exist yet.
        Returns the new value.
        """
        try:
            with self._conn.transaction():
                current = self.get(key, default)
                new_value = fn(current)
                self._write(key, new_value)
        except sqlite3.Error as e:
            raise StateStoreError("update", str(e), details={"key": key}) from e
        return new_value

    def clear(self) -> None:
        """Drop every key of this session."""
        try:
            self._conn.execute(
                "DELETE FROM session_state WHERE session_id = ?", (self.session_id,)
            )
        except sqlite3.Error as e:
            raise StateStoreError("clear", str(e)) from e
        logger.info("Session state cleared", extra={"session_id": self.session_id})

    def close(self) -> None:
        self._conn.close()

    def _write(self, key: str, value: Any) -> None:
        self._conn.upsert(
            "session_state",
            ("session_id", "key"),
            ["session_id", "key", "value", "updated_at"],
            (self.session_id, key, json.dumps(value), datetime.now(UTC).isoformat()),
        )
