"""
In-memory snapshot store.

Used by tests and single-process development servers. Values are kept as
encoded JSON, like a real key-value service, so callers never share objects
with the store.

Invariants:
    - All data is lost on process exit
    - Same revision and expiry semantics as the persistent backends
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace

from ..domain.state import Snapshot
from .base import StoreUnavailableError, VersionConflictError, decode_snapshot, encode_snapshot

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: str
    version: int
    expires_at: float


class InMemorySnapshotStore:
    """In-memory implementation of SnapshotStore.

    Example:
        >>> store = InMemorySnapshotStore()
        >>> await store.connect()
        >>> await store.put("room:a|k", Snapshot.empty(), ttl_seconds=60)
        1
    """

    def __init__(self, clock=time.time) -> None:
        """Initialize the store.

        Args:
            clock: Seconds clock used for expiry (injectable for tests)
        """
        self._entries: dict[str, _Entry] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._clock = clock

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        logger.debug("InMemorySnapshotStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._entries.clear()
        logger.debug("InMemorySnapshotStore closed")

    def _live_entry(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> Snapshot | None:
        if not self._connected:
            raise StoreUnavailableError("Not connected")

        async with self._lock:
            entry = self._live_entry(key)
        if entry is None:
            return None

        snapshot = decode_snapshot(entry.value)
        snapshot.v = entry.version
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

        async with self._lock:
            entry = self._live_entry(key)
            current = entry.version if entry is not None else 0
            if expected_version is not None and expected_version != current:
                raise VersionConflictError(key, expected_version, current)

            version = current + 1
            snapshot_doc = replace(snapshot, v=version)
            self._entries[key] = _Entry(
                value=encode_snapshot(snapshot_doc),
                version=version,
                expires_at=self._clock() + ttl_seconds,
            )

        logger.debug("Snapshot stored", extra={"key": key, "v": version})
        return version

    async def purge_expired(self) -> int:
        """Delete expired entries. Returns the number removed."""
        now = self._clock()
        async with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def keys(self) -> list[str]:
        """Live keys (testing helper)."""
        return [k for k in list(self._entries) if self._live_entry(k) is not None]
