"""
Base protocol and types for the snapshot store abstraction.

The merge core only needs `get(key)` and `put(key, snapshot, ttl)` from a
key-value store. Backends additionally support an optional expected
revision on put, which turns the write into a compare-and-swap on the
snapshot's `v` counter.

Invariants:
    - Snapshots are stored whole, as JSON; a put never writes partially
    - put() assigns v = previous v + 1 and returns it
    - Expired entries behave as missing
    - Unreachable backends raise StoreUnavailableError, never a conflict

How to change safely:
    - New backends must implement the SnapshotStore protocol
    - Keep the JSON document format shared across backends so rooms can be
      moved with export/import
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..domain.state import Snapshot
from ..errors import InvalidDocumentError, MarketSyncError

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)


class StoreError(MarketSyncError):
    """Base exception for store operations."""

    def __init__(self, message: str, code: str = "STORE_ERROR") -> None:
        super().__init__(message, code=code)


class StoreUnavailableError(StoreError):
    """Backend unreachable, closed or timed out (transient)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="STORE_UNAVAILABLE")


class VersionConflictError(StoreError):
    """Expected revision did not match the stored one."""

    def __init__(self, key: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Revision mismatch for {key}: expected {expected}, found {actual}",
            code="VERSION_CONFLICT",
        )
        self.key = key
        self.expected = expected
        self.actual = actual


def room_key(room: str, key: str) -> str:
    """Store key for a room/key pair."""
    return f"room:{room}|{key}"


def encode_snapshot(snapshot: Snapshot) -> str:
    return json.dumps(snapshot.to_dict(), ensure_ascii=False, separators=(",", ":"))


def decode_snapshot(raw: str | bytes) -> Snapshot:
    """Parse a stored document.

    Raises:
        StoreError: If the stored value is not a valid snapshot document
    """
    try:
        data: Any = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise StoreError(f"Stored snapshot is not valid JSON: {e}")
    try:
        return Snapshot.from_dict(data)
    except InvalidDocumentError as e:
        raise StoreError(f"Stored snapshot is malformed: {e.message}")


@runtime_checkable
class SnapshotStore(Protocol):
    """Protocol for snapshot store backends.

    Example:
        >>> store = InMemorySnapshotStore()
        >>> await store.connect()
        >>> v = await store.put(room_key("r1", "k"), Snapshot.empty(), ttl_seconds=3600)
        >>> snapshot = await store.get(room_key("r1", "k"))
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the backend.

        Raises:
            StoreUnavailableError: If the backend cannot be opened
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def get(self, key: str) -> Snapshot | None:
        """Load the snapshot stored under key.

        Returns:
            The snapshot (with its stored revision in `v`), or None if
            missing or expired

        Raises:
            StoreUnavailableError: If the backend cannot be reached
        """
        ...

    @abstractmethod
    async def put(
        self,
        key: str,
        snapshot: Snapshot,
        ttl_seconds: int,
        expected_version: int | None = None,
    ) -> int:
        """Store a snapshot under key.

        Args:
            key: Store key
            snapshot: Snapshot to write (its own `v` is ignored)
            ttl_seconds: Expiry from now
            expected_version: If given, write only when the stored revision
                equals it (0 meaning "no entry")

        Returns:
            The new revision

        Raises:
            VersionConflictError: If expected_version does not match
            StoreUnavailableError: If the backend cannot be reached
        """
        ...

    @abstractmethod
    async def purge_expired(self) -> int:
        """Delete expired entries.

        Returns:
            Number of entries removed
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the backend is open."""
        ...


def create_snapshot_store(config: StoreConfig) -> SnapshotStore:
    """Factory function to create a snapshot store from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemorySnapshotStore
    from .sqlite import SqliteSnapshotStore

    if config.backend == StoreBackend.MEMORY:
        return InMemorySnapshotStore()
    elif config.backend == StoreBackend.SQLITE:
        return SqliteSnapshotStore(config.sqlite_path, busy_timeout_ms=config.busy_timeout_ms)
    else:
        raise ValueError(f"Unsupported store backend: {config.backend}")
