"""
Room service: the read-merge-write loop around the merge engine.

Each room/key pair maps to one Snapshot in the store. A submit loads the
snapshot, merges the batch and writes the result back with a
compare-and-swap on the stored revision. Inside one process a per-key lock
serialises writers; across processes the compare-and-swap detects a lost
race and the merge is retried on the fresh snapshot.

Invariants:
    - A batch is validated in full before any store access
    - A write never overwrites a revision it did not read
    - Re-merging after a lost race is safe because operation ids dedup
    - A per-key lock lives only while some writer holds or awaits it

How to change safely:
    - Keep the merge itself free of awaits; only store calls suspend
    - Anything added to the write path must tolerate being retried
"""

from __future__ import annotations

import asyncio
import logging
import re
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .config import ServerConfig
from .domain.operations import parse_operations
from .domain.state import Snapshot
from .errors import InvalidRequestError
from .merge import MergeDiff, MergeEngine, ReadResult, export_snapshot, import_snapshot, now_ms, read
from .store import SnapshotStore, StoreUnavailableError, VersionConflictError, room_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.:-]{1,128}$")


@dataclass
class SubmitResult:
    """Outcome of one accepted batch."""

    v: int
    v_tick: int
    diff: MergeDiff

    def to_dict(self) -> dict[str, Any]:
        diff = self.diff.to_dict()
        return {
            "ok": True,
            "v": self.v,
            "vTick": self.v_tick,
            "applied": diff["applied"],
            "skipped": diff["skipped"],
            "conflicts": diff["conflicts"],
            "diff": diff,
        }


@dataclass
class ImportResult:
    v: int
    v_tick: int

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "v": self.v, "vTick": self.v_tick}


def validate_name(value: str | None, field_name: str) -> str:
    """Check a room or key name.

    Raises:
        InvalidRequestError: If the value is missing or has unsupported characters
    """
    if not value:
        raise InvalidRequestError(f"{field_name} is required")
    if not _NAME_PATTERN.match(value):
        raise InvalidRequestError(
            f"{field_name} must be 1-128 characters of letters, digits, '_', '.', ':' or '-'"
        )
    return value


class RoomService:
    """Serves reads and writes for all rooms of one store.

    Attributes:
        store: Snapshot store backend
        engine: Merge engine
        config: Server configuration

    Example:
        >>> service = RoomService(InMemorySnapshotStore())
        >>> await service.start()
        >>> result = await service.submit("lobby", "main", [op.to_dict()])
        >>> view = await service.read("lobby", "main", client_version=0)
    """

    def __init__(
        self,
        store: SnapshotStore,
        engine: MergeEngine | None = None,
        config: ServerConfig | None = None,
    ) -> None:
        self.config = config or ServerConfig()
        self.store = store
        self.engine = engine or MergeEngine(
            config=self.config.engine,
            retention=self.config.retention,
        )
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._purge_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if not self.store.is_connected:
            await self.store.connect()
        await self.purge_expired()

        interval = self.config.store.purge_interval_seconds
        if interval > 0 and self._purge_task is None:
            self._purge_task = asyncio.create_task(self._purge_loop(interval))
        logger.info("Room service started", extra={"purge_interval_seconds": interval})

    async def stop(self) -> None:
        if self._purge_task is not None:
            self._purge_task.cancel()
            await asyncio.gather(self._purge_task, return_exceptions=True)
            self._purge_task = None
        await self.store.close()
        logger.info("Room service stopped")

    async def purge_expired(self) -> int:
        """Delete expired snapshots from the store. Returns the number removed."""
        removed = await self.store.purge_expired()
        if removed:
            logger.info("Purged expired snapshots", extra={"removed": removed})
        return removed

    async def _purge_loop(self, interval_seconds: int) -> None:
        try:
            while True:
                await asyncio.sleep(interval_seconds)
                try:
                    await self.purge_expired()
                except StoreUnavailableError as e:
                    logger.warning(f"Snapshot purge skipped: {e.message}")
        except asyncio.CancelledError:
            logger.debug("Snapshot purge loop cancelled")

    async def read(self, room: str, key: str, client_version: int = 0) -> ReadResult | None:
        """Current view of a room, or None if the client is up to date."""
        store_key = room_key(validate_name(room, "room"), validate_name(key, "key"))
        snapshot = await self.store.get(store_key)
        return read(snapshot, client_version)

    async def submit(self, room: str, key: str, raw_operations: Any) -> SubmitResult:
        """Validate a batch and merge it into the room.

        Raises:
            InvalidRequestError: If room or key is invalid
            InvalidBatchError: If the batch is malformed (nothing is written)
            StoreUnavailableError: If the store fails or retries run out
        """
        store_key = room_key(validate_name(room, "room"), validate_name(key, "key"))
        operations = parse_operations(raw_operations)

        def build(existing: Snapshot) -> tuple[Snapshot, MergeDiff]:
            result = self.engine.merge(existing, operations)
            return result.snapshot, result.diff

        version, snapshot, diff = await self._write(store_key, build)
        return SubmitResult(v=version, v_tick=snapshot.state.v_tick, diff=diff)

    async def export(self, room: str, key: str) -> dict[str, Any] | None:
        """Export document for a room, or None if the room does not exist."""
        store_key = room_key(validate_name(room, "room"), validate_name(key, "key"))
        snapshot = await self.store.get(store_key)
        if snapshot is None:
            return None
        return export_snapshot(snapshot, now_ms())

    async def import_state(
        self,
        room: str,
        key: str,
        document: Any,
        overwrite: bool = False,
    ) -> ImportResult:
        """Replace a room's state with an exported document.

        Raises:
            InvalidDocumentError: If the document is malformed
            ImportRejectedError: If the room has data and overwrite is false
            StoreUnavailableError: If the store fails or retries run out
        """
        store_key = room_key(validate_name(room, "room"), validate_name(key, "key"))

        def build(existing: Snapshot) -> tuple[Snapshot, None]:
            current = existing if existing.v > 0 else None
            return import_snapshot(current, document, now_ms(), overwrite=overwrite), None

        version, snapshot, _ = await self._write(store_key, build)
        return ImportResult(v=version, v_tick=snapshot.state.v_tick)

    def _lock_for(self, store_key: str) -> asyncio.Lock:
        lock = self._locks.get(store_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[store_key] = lock
        return lock

    async def _write(
        self,
        store_key: str,
        build: Callable[[Snapshot], tuple[Snapshot, T]],
    ) -> tuple[int, Snapshot, T]:
        """Read, build and compare-and-swap, retrying on a lost race."""
        writer = self.config.writer
        attempts = writer.max_retries + 1

        lock = self._lock_for(store_key)
        async with lock:
            for attempt in range(1, attempts + 1):
                existing = await self.store.get(store_key) or Snapshot.empty()
                snapshot, extra = build(existing)
                try:
                    version = await self.store.put(
                        store_key,
                        snapshot,
                        ttl_seconds=self.config.store.ttl_seconds,
                        expected_version=existing.v,
                    )
                except VersionConflictError as e:
                    logger.warning(
                        "Snapshot revision changed during write",
                        extra={
                            "key": store_key,
                            "attempt": attempt,
                            "expected": e.expected,
                            "actual": e.actual,
                        },
                    )
                    if attempt < attempts:
                        await asyncio.sleep(writer.retry_delay_ms / 1000.0)
                    continue
                return version, snapshot, extra

        raise StoreUnavailableError(
            f"Could not write {store_key} after {attempts} attempts (concurrent writers)"
        )
