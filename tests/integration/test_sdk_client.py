"""
Integration tests for the SDK SyncClient against the ASGI app.

Tests cover:
- Operation construction
- submit/poll cycle with vTick tracking
- export/import
- Error translation (RequestError, ServerUnavailableError, ConnectionError)
"""

import httpx
import pytest

from sdk.marketsync_sdk import (
    ConnectionError,
    RequestError,
    ServerUnavailableError,
    SyncClient,
    SyncError,
)
from service.marketsync_server.api import create_app
from service.marketsync_server.config import HttpSettings
from service.marketsync_server.service import RoomService
from service.marketsync_server.store import InMemorySnapshotStore, StoreUnavailableError

BASE_URL = "http://marketsync.test"


class DownStore(InMemorySnapshotStore):
    async def get(self, key):
        raise StoreUnavailableError("connection refused")


@pytest.fixture
async def app():
    service = RoomService(InMemorySnapshotStore())
    await service.start()
    app = create_app(service=service, settings=HttpSettings())
    app.state.service = service
    yield app
    await service.stop()


def make_client(app, room="lobby", key="main"):
    return SyncClient(BASE_URL, room=room, key=key, transport=httpx.ASGITransport(app=app))


class TestNewOperation:
    """Tests for SyncClient.new_operation."""

    def test_wire_form(self):
        client = SyncClient(BASE_URL, room="lobby", key="main")

        op = client.new_operation("transfer", {"toId": "bob", "amount": 5}, user_id="alice", timestamp=123)

        assert op["type"] == "transfer"
        assert op["userId"] == "alice"
        assert op["timestamp"] == 123
        assert op["data"] == {"toId": "bob", "amount": 5}
        assert op["id"].startswith("op-")
        assert "meta" not in op

    def test_ids_are_unique(self):
        client = SyncClient(BASE_URL, room="lobby", key="main")
        ids = {client.new_operation("roulette", None, user_id="alice")["id"] for _ in range(100)}
        assert len(ids) == 100

    def test_silent_flag(self):
        client = SyncClient(BASE_URL, room="lobby", key="main")
        op = client.new_operation("transfer", {}, user_id="alice", silent=True)
        assert op["meta"] == {"silent": True}


class TestSyncCycle:
    """submit + poll against a live app."""

    @pytest.mark.asyncio
    async def test_submit_and_poll(self, app):
        async with make_client(app) as client:
            assert await client.poll() is None

            register = client.new_operation("register_user", {"name": "Alice"}, user_id="alice")
            result = await client.submit([register])
            assert result["applied"] == [register["id"]]

            view = await client.poll()
            assert view["state"]["vTick"] == 1
            assert client.last_vtick == 1
            assert await client.poll() is None

    @pytest.mark.asyncio
    async def test_resubmit_after_lost_response(self, app):
        async with make_client(app) as client:
            op = client.new_operation("register_user", {"name": "Alice"}, user_id="alice")
            await client.submit([op])

            result = await client.submit([op])

            assert result["skipped"] == [op["id"]]
            assert result["conflicts"] == []

    @pytest.mark.asyncio
    async def test_two_clients_see_each_other(self, app):
        async with make_client(app) as alice, make_client(app) as bob:
            await alice.submit([alice.new_operation("register_user", {"name": "Alice"}, user_id="alice")])
            await bob.submit([bob.new_operation("register_user", {"name": "Bob"}, user_id="bob")])
            await alice.submit(
                [alice.new_operation("transfer", {"toId": "bob", "amount": 250}, user_id="alice")]
            )

            view = await bob.poll()

            balances = {u["id"]: u["balance"] for u in view["state"]["users"]}
            assert balances["bob"] == 10250
            assert [n["to"] for n in view["notifications"]] == ["bob"]


class TestExportImport:
    """export/import_state."""

    @pytest.mark.asyncio
    async def test_export_missing(self, app):
        async with make_client(app) as client:
            assert await client.export() is None

    @pytest.mark.asyncio
    async def test_move_room(self, app):
        async with make_client(app) as source, make_client(app, room="copy") as target:
            await source.submit([source.new_operation("register_user", {"name": "Alice"}, user_id="alice")])
            document = await source.export()

            result = await target.import_state(document)
            assert result == {"ok": True, "v": 1, "vTick": 2}

            with pytest.raises(RequestError) as exc_info:
                await target.import_state(document)
            assert exc_info.value.status_code == 409
            assert exc_info.value.code == "IMPORT_REJECTED"

            result = await target.import_state(document, overwrite=True)
            assert result["vTick"] == 3


class TestErrors:
    """Server and transport errors."""

    @pytest.mark.asyncio
    async def test_bad_batch(self, app):
        async with make_client(app) as client:
            with pytest.raises(RequestError) as exc_info:
                await client.submit([{"id": "x"}])

        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "INVALID_BATCH"
        assert exc_info.value.details == {"index": 0}

    @pytest.mark.asyncio
    async def test_invalid_room(self, app):
        async with make_client(app, room="bad room") as client:
            with pytest.raises(RequestError) as exc_info:
                await client.poll()
        assert exc_info.value.code == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_server_unavailable(self):
        service = RoomService(DownStore())
        await service.start()
        app = create_app(service=service, settings=HttpSettings())
        app.state.service = service

        async with make_client(app) as client:
            with pytest.raises(ServerUnavailableError) as exc_info:
                await client.poll()

        assert exc_info.value.status_code == 503
        assert exc_info.value.code == "STORE_UNAVAILABLE"
        await service.stop()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = SyncClient(BASE_URL, room="lobby", key="main", transport=httpx.MockTransport(refuse))
        async with client:
            with pytest.raises(ConnectionError) as exc_info:
                await client.poll()

        assert exc_info.value.address == BASE_URL
        assert isinstance(exc_info.value, SyncError)
