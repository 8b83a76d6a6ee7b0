"""
MarketSync client for the Python SDK.

This module provides the polling client used by game front ends:
- SyncClient: submit operations, poll for newer state, export/import

Example:
    >>> async with SyncClient("http://localhost:8787", room="lobby", key="main") as client:
    ...     op = client.new_operation("register_user", {"name": "alice"}, user_id="u-alice")
    ...     result = await client.submit([op])
    ...     view = await client.poll()

Invariants:
    - Operation ids are generated client-side and are unique per operation;
      resubmitting the same operation is safe
    - poll() only returns state newer than the last vTick it returned
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

import httpx

from .errors import ConnectionError, RequestError, ServerUnavailableError

logger = logging.getLogger(__name__)


def new_operation_id() -> str:
    return f"op-{uuid.uuid4().hex}"


class SyncClient:
    """HTTP client for one room/key of a MarketSync server.

    Attributes:
        base_url: Server base URL
        room: Room name
        key: State key within the room
        last_vtick: Highest vTick returned by poll()
    """

    def __init__(
        self,
        base_url: str,
        room: str,
        key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Server base URL (e.g. http://localhost:8787)
            room: Room name
            key: State key within the room
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use ASGITransport)
        """
        self.base_url = base_url.rstrip("/")
        self.room = room
        self.key = key
        self.last_vtick = 0
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> SyncClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def new_operation(
        self,
        op_type: str,
        data: dict[str, Any] | None,
        user_id: str,
        *,
        silent: bool = False,
        timestamp: int | None = None,
    ) -> dict[str, Any]:
        """Build an operation in wire form with a fresh id.

        Args:
            op_type: Operation type (e.g. "transfer")
            data: Type-specific payload
            user_id: Acting user
            silent: Suppress transaction log entries and notifications
            timestamp: Client time in Unix ms (defaults to now)
        """
        op: dict[str, Any] = {
            "id": new_operation_id(),
            "type": op_type,
            "data": dict(data or {}),
            "timestamp": timestamp if timestamp is not None else int(time.time() * 1000),
            "userId": user_id,
        }
        if silent:
            op["meta"] = {"silent": True}
        return op

    async def submit(self, operations: list[dict[str, Any]]) -> dict[str, Any]:
        """Send a batch for merging.

        Returns:
            {ok, v, vTick, applied, skipped, conflicts, diff}
        """
        response = await self._request("PUT", "/state", json={"operations": operations})
        result = response.json()
        logger.debug(
            "Batch submitted",
            extra={
                "room": self.room,
                "applied": len(result.get("applied", [])),
                "conflicts": len(result.get("conflicts", [])),
            },
        )
        return result

    async def poll(self) -> dict[str, Any] | None:
        """Fetch the room view if it is newer than the last one seen.

        Returns:
            The view ({v, state, lastUpdate, processedOps, conflicts,
            notifications}), or None if nothing changed
        """
        response = await self._request("GET", "/state", params={"vt": self.last_vtick})
        if response.status_code == 204:
            return None
        view = response.json()
        self.last_vtick = view["state"]["vTick"]
        return view

    async def export(self) -> dict[str, Any] | None:
        """Export document for the room, or None if it has no state."""
        try:
            response = await self._request("GET", "/export")
        except RequestError as e:
            if e.status_code == 404:
                return None
            raise
        return response.json()

    async def import_state(self, document: dict[str, Any], overwrite: bool = False) -> dict[str, Any]:
        """Replace the room's state with an export document.

        Raises:
            RequestError: code IMPORT_REJECTED if the room has data and
                overwrite is False
        """
        response = await self._request(
            "POST",
            "/import",
            params={"overwrite": "true" if overwrite else "false"},
            json=document,
        )
        return response.json()

    async def health(self) -> dict[str, Any]:
        response = await self._http.get("/health")
        return response.json()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        query = {"room": self.room, "key": self.key, **(params or {})}
        try:
            response = await self._http.request(method, path, params=query, json=json)
        except httpx.TimeoutException as e:
            raise ConnectionError(f"Request timed out: {e}", address=self.base_url) from e
        except httpx.TransportError as e:
            raise ConnectionError(f"Failed to connect: {e}", address=self.base_url) from e

        if response.status_code < 400:
            return response

        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("error") or response.text or f"HTTP {response.status_code}"
        code = body.get("error_code")

        if response.status_code >= 500:
            raise ServerUnavailableError(message, status_code=response.status_code, code=code)
        raise RequestError(
            message,
            status_code=response.status_code,
            code=code,
            details=body.get("details"),
        )
