"""
MarketSync Python SDK - polling client for MarketSync rooms.

Example:
    >>> from marketsync_sdk import SyncClient
    >>>
    >>> async with SyncClient("http://localhost:8787", room="lobby", key="main") as client:
    ...     op = client.new_operation("transfer", {"toId": "u-bob", "amount": 50}, user_id="u-alice")
    ...     await client.submit([op])
    ...     view = await client.poll()

Invariants:
    - Operations are plain dicts in the server's wire format
    - Business conflicts come back in the submit result, not as exceptions
"""

__version__ = "0.4.0"

from .client import SyncClient, new_operation_id
from .errors import ConnectionError, RequestError, ServerUnavailableError, SyncError

__all__ = [
    "SyncClient",
    "new_operation_id",
    "SyncError",
    "ConnectionError",
    "RequestError",
    "ServerUnavailableError",
]
