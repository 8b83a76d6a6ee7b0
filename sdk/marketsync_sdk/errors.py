"""
Error types for the MarketSync SDK.

This module defines all exception types raised by the SDK:
- SyncError: Base exception
- ConnectionError: Server unreachable or request timed out
- RequestError: Server rejected the request (4xx)
- ServerUnavailableError: Server or its store is temporarily unavailable (5xx)

Invariants:
    - All errors inherit from SyncError
    - Server error codes are carried through unchanged in `code`
"""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base exception for all MarketSync SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SYNC_ERROR"
        self.details = details or {}


class ConnectionError(SyncError):
    """Failed to reach the MarketSync server."""

    def __init__(self, message: str, address: str | None = None) -> None:
        super().__init__(message, code="CONNECTION_ERROR", details={"address": address})
        self.address = address


class RequestError(SyncError):
    """Server rejected the request.

    Raised when:
    - Room or key is missing or invalid
    - The operation batch or import document is malformed
    - An import would overwrite existing data without overwrite=True
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code or "REQUEST_ERROR", details=details)
        self.status_code = status_code


class ServerUnavailableError(SyncError):
    """Server answered with a 5xx; the request may be retried."""

    def __init__(self, message: str, status_code: int, code: str | None = None) -> None:
        super().__init__(message, code=code or "SERVER_UNAVAILABLE")
        self.status_code = status_code
