"""
Snapshot store abstraction for MarketSync.

This module provides a pluggable key-value backend for Snapshot documents:
- SQLite (single-node persistence)
- In-memory (tests and development)

The store is an external collaborator of the merge core; it knows nothing
about operations. Each put bumps the document's revision, which callers may
use for optimistic compare-and-swap.
"""

from .base import (
    SnapshotStore,
    StoreError,
    StoreUnavailableError,
    VersionConflictError,
    create_snapshot_store,
    decode_snapshot,
    encode_snapshot,
    room_key,
)
from .memory import InMemorySnapshotStore
from .sqlite import SqliteSnapshotStore

__all__ = [
    # Protocol and types
    "SnapshotStore",
    "StoreError",
    "StoreUnavailableError",
    "VersionConflictError",
    "room_key",
    "encode_snapshot",
    "decode_snapshot",
    # Factory
    "create_snapshot_store",
    # Implementations
    "InMemorySnapshotStore",
    "SqliteSnapshotStore",
]
