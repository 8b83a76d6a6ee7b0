"""
SQLite snapshot store.

One table holds every room's snapshot document, keyed by the room key. The
compare-and-swap on put runs inside a single IMMEDIATE transaction so two
writers sharing the database file cannot both succeed with the same
expected revision.

Table schema:
    snapshots:
        - key TEXT PRIMARY KEY
        - version INTEGER
        - doc_json TEXT
        - expires_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path

from ..domain.state import Snapshot
from .base import StoreUnavailableError, VersionConflictError, decode_snapshot, encode_snapshot

logger = logging.getLogger(__name__)


class SqliteSnapshotStore:
    """SnapshotStore backed by a SQLite file."""

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        """Initialize the store.

        Args:
            db_path: SQLite database file (":memory:" is not supported since
                every call opens its own connection)
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open {self.db_path}: {e}")

        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(f"SQLite error: {e}")
        finally:
            conn.close()

    async def connect(self) -> None:
        """Create the database file and schema if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._lock:
            with self._connection() as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS snapshots (
                        key TEXT PRIMARY KEY,
                        version INTEGER NOT NULL,
                        doc_json TEXT NOT NULL,
                        expires_at INTEGER NOT NULL,
                        updated_at INTEGER NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_snapshots_expires ON snapshots(expires_at);
                """)
        self._connected = True
        logger.info(f"Snapshot store opened: {self.db_path}")

    async def close(self) -> None:
        self._connected = False

    async def get(self, key: str) -> Snapshot | None:
        if not self._connected:
            raise StoreUnavailableError("Not connected")

        now = int(time.time() * 1000)
        with self._connection() as conn:
            row = conn.execute(
                "SELECT version, doc_json FROM snapshots WHERE key = ? AND expires_at > ?",
                (key, now),
            ).fetchone()

        if row is None:
            return None
        snapshot = decode_snapshot(row["doc_json"])
        snapshot.v = row["version"]
        return snapshot

    async def put(
        self,
        key: str,
        snapshot: Snapshot,
        ttl_seconds: int,
        expected_version: int | None = None,
    ) -> int:
        if not self._connected:
            raise StoreUnavailableError("Not connected")

        now = int(time.time() * 1000)
        async with self._lock:
            with self._connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        "SELECT version FROM snapshots WHERE key = ? AND expires_at > ?",
                        (key, now),
                    ).fetchone()
                    current = row["version"] if row is not None else 0
                    if expected_version is not None and expected_version != current:
                        raise VersionConflictError(key, expected_version, current)

                    version = current + 1
                    conn.execute(
                        """
                        INSERT INTO snapshots (key, version, doc_json, expires_at, updated_at)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            version = excluded.version,
                            doc_json = excluded.doc_json,
                            expires_at = excluded.expires_at,
                            updated_at = excluded.updated_at
                        """,
                        (
                            key,
                            version,
                            encode_snapshot(replace(snapshot, v=version)),
                            now + ttl_seconds * 1000,
                            now,
                        ),
                    )
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise

        logger.debug("Snapshot stored", extra={"key": key, "v": version})
        return version

    async def purge_expired(self) -> int:
        """Delete expired rows. Returns the number removed."""
        now = int(time.time() * 1000)
        async with self._lock:
            with self._connection() as conn:
                cursor = conn.execute("DELETE FROM snapshots WHERE expires_at <= ?", (now,))
                return cursor.rowcount
