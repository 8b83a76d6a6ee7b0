"""
Integration tests for RoomService (read-merge-write over a real store).

Tests cover:
- Submit/read/export/import through the store
- Batch and name validation before any write
- Compare-and-swap retry on concurrent writers
- Concurrent submits inside one process
- Lock bookkeeping and expired-snapshot purging
"""

import asyncio
import gc
import tempfile
from pathlib import Path

import pytest

from service.marketsync_server.config import ServerConfig, StoreConfig, WriterConfig
from service.marketsync_server.domain import Snapshot
from service.marketsync_server.errors import (
    ImportRejectedError,
    InvalidBatchError,
    InvalidRequestError,
)
from service.marketsync_server.service import RoomService
from service.marketsync_server.store import (
    InMemorySnapshotStore,
    SqliteSnapshotStore,
    StoreUnavailableError,
    room_key,
)


def wire(op_id, op_type, user_id, ts, **data):
    return {"id": op_id, "type": op_type, "userId": user_id, "timestamp": ts, "data": data}


REGISTER = [
    wire("r1", "register_user", "alice", 1, name="Alice"),
    wire("r2", "register_user", "bob", 2, name="Bob"),
]


class RacingStore(InMemorySnapshotStore):
    """Simulates another process writing just before each of our first puts."""

    def __init__(self, races: int) -> None:
        super().__init__()
        self.races = races
        self.puts = 0

    async def put(self, key, snapshot, ttl_seconds, expected_version=None):
        self.puts += 1
        if self.races > 0:
            self.races -= 1
            current = await self.get(key) or Snapshot.empty()
            await super().put(key, current, ttl_seconds)
        return await super().put(key, snapshot, ttl_seconds, expected_version)


def make_service(store=None, max_retries=3):
    config = ServerConfig(writer=WriterConfig(max_retries=max_retries, retry_delay_ms=1))
    return RoomService(store or InMemorySnapshotStore(), config=config)


@pytest.fixture
async def service():
    service = make_service()
    await service.start()
    yield service
    await service.stop()


class TestSubmitAndRead:
    """Basic read-merge-write."""

    @pytest.mark.asyncio
    async def test_first_submit_creates_room(self, service):
        result = await service.submit("lobby", "main", REGISTER)

        assert result.v == 1
        assert result.v_tick == 2
        assert result.diff.applied == ["r1", "r2"]

        doc = result.to_dict()
        assert doc["ok"] is True
        assert doc["vTick"] == 2
        assert doc["applied"] == ["r1", "r2"]
        assert doc["diff"]["newUsers"][0]["id"] == "alice"

    @pytest.mark.asyncio
    async def test_read_respects_client_tick(self, service):
        assert await service.read("lobby", "main") is None

        await service.submit("lobby", "main", REGISTER)

        view = await service.read("lobby", "main", client_version=0)
        assert view.v == 1
        assert set(view.state.users) == {"house", "alice", "bob"}
        assert await service.read("lobby", "main", client_version=2) is None

    @pytest.mark.asyncio
    async def test_resubmit_is_idempotent(self, service):
        await service.submit("lobby", "main", REGISTER)

        result = await service.submit("lobby", "main", REGISTER)

        assert result.diff.applied == []
        assert result.diff.skipped == ["r1", "r2"]
        assert result.v_tick == 2
        assert result.v == 2

    @pytest.mark.asyncio
    async def test_rooms_are_isolated(self, service):
        await service.submit("a", "main", REGISTER)

        assert await service.read("b", "main") is None
        assert await service.read("a", "other") is None

    @pytest.mark.asyncio
    async def test_invalid_batch_writes_nothing(self, service):
        with pytest.raises(InvalidBatchError):
            await service.submit("lobby", "main", [REGISTER[0], {"id": "x"}])

        assert service.store.keys() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("room", [None, "", "has space", "pipe|room", "x" * 129])
    async def test_invalid_room_name(self, service, room):
        with pytest.raises(InvalidRequestError):
            await service.submit(room, "main", REGISTER)

    @pytest.mark.asyncio
    async def test_missing_key(self, service):
        with pytest.raises(InvalidRequestError, match="key"):
            await service.read("lobby", None)


class TestExportImport:
    """Export and import through the store."""

    @pytest.mark.asyncio
    async def test_export_missing_room(self, service):
        assert await service.export("lobby", "main") is None

    @pytest.mark.asyncio
    async def test_copy_room(self, service):
        await service.submit("source", "main", REGISTER)
        document = await service.export("source", "main")

        result = await service.import_state("target", "main", document)

        assert result.v == 1
        assert result.v_tick == 3
        view = await service.read("target", "main")
        assert set(view.state.users) == {"house", "alice", "bob"}
        assert view.processed_ops == []

    @pytest.mark.asyncio
    async def test_import_guard(self, service):
        await service.submit("lobby", "main", REGISTER)
        document = {"state": {"vTick": 0}}

        with pytest.raises(ImportRejectedError):
            await service.import_state("lobby", "main", document)

        result = await service.import_state("lobby", "main", document, overwrite=True)
        assert result.v == 2
        assert result.v_tick == 3

    @pytest.mark.asyncio
    async def test_import_resets_dedup_log(self, service):
        await service.submit("lobby", "main", REGISTER)
        document = await service.export("lobby", "main")
        await service.import_state("lobby", "main", document, overwrite=True)

        result = await service.submit("lobby", "main", REGISTER)

        assert result.diff.skipped == []
        assert [c.kind for c in result.diff.conflicts] == ["name_taken", "name_taken"]


class TestConcurrency:
    """Per-key lock and compare-and-swap retries."""

    @pytest.mark.asyncio
    async def test_lost_race_is_retried(self):
        store = RacingStore(races=2)
        service = make_service(store)
        await service.start()

        result = await service.submit("lobby", "main", REGISTER)

        assert store.puts == 3
        assert result.v == 3
        assert result.diff.applied == ["r1", "r2"]
        snapshot = await store.get(room_key("lobby", "main"))
        assert snapshot.state.v_tick == 2
        await service.stop()

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        store = RacingStore(races=10)
        service = make_service(store, max_retries=2)
        await service.start()

        with pytest.raises(StoreUnavailableError, match="3 attempts"):
            await service.submit("lobby", "main", REGISTER)

        assert store.puts == 3
        await service.stop()

    @pytest.mark.asyncio
    async def test_concurrent_submits_all_land(self, service):
        await service.submit("lobby", "main", REGISTER)
        batches = [
            [wire(f"t{i}", "transfer", "alice", 100 + i, toId="bob", amount=10)]
            for i in range(10)
        ]

        results = await asyncio.gather(*(service.submit("lobby", "main", b) for b in batches))

        assert sorted(r.v for r in results) == list(range(2, 12))
        view = await service.read("lobby", "main")
        assert view.state.users["alice"].balance == 9900
        assert view.state.users["bob"].balance == 10100
        assert view.state.v_tick == 12

    @pytest.mark.asyncio
    async def test_two_services_share_sqlite_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = str(Path(tmpdir) / "snapshots.db")
            first = make_service(SqliteSnapshotStore(path))
            second = make_service(SqliteSnapshotStore(path))
            await first.start()
            await second.start()

            await first.submit("lobby", "main", REGISTER)
            result = await second.submit(
                "lobby", "main", [wire("t1", "transfer", "bob", 10, toId="alice", amount=5)]
            )

            assert result.v == 2
            view = await first.read("lobby", "main")
            assert view.state.users["alice"].balance == 10005

            await first.stop()
            await second.stop()


class TestHousekeeping:
    """Per-key lock lifetime and expired-snapshot purging."""

    @pytest.mark.asyncio
    async def test_locks_released_after_writes(self, service):
        for i in range(5):
            await service.submit(f"room-{i}", "main", REGISTER)
        gc.collect()

        assert len(service._locks) == 0

    @pytest.mark.asyncio
    async def test_lock_shared_while_referenced(self, service):
        lock = service._lock_for("room:lobby|main")

        assert service._lock_for("room:lobby|main") is lock

        del lock
        gc.collect()
        assert "room:lobby|main" not in service._locks

    @pytest.mark.asyncio
    async def test_start_purges_expired_snapshots(self):
        now = [1000.0]
        store = InMemorySnapshotStore(clock=lambda: now[0])
        await store.connect()
        await store.put(room_key("old", "main"), Snapshot.empty(), ttl_seconds=10)
        await store.put(room_key("new", "main"), Snapshot.empty(), ttl_seconds=3600)
        now[0] += 60

        service = make_service(store)
        await service.start()

        assert list(store._entries) == [room_key("new", "main")]
        await service.stop()

    @pytest.mark.asyncio
    async def test_purge_task_lifecycle(self):
        service = make_service()
        await service.start()
        task = service._purge_task

        assert task is not None and not task.done()

        await service.stop()
        assert task.done()
        assert service._purge_task is None

    @pytest.mark.asyncio
    async def test_purge_task_disabled(self):
        config = ServerConfig(store=StoreConfig(purge_interval_seconds=0))
        service = RoomService(InMemorySnapshotStore(), config=config)
        await service.start()

        assert service._purge_task is None
        await service.stop()
