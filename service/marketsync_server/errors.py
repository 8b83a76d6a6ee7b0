"""
Error types for the MarketSync server.

Two tiers of failure exist and they must never be mixed up:
- Request level (MarketSyncError and subclasses): the whole request is
  rejected before any state is touched, or the store could not be reached.
- Operation level (OperationConflict): one operation in a batch is refused
  and recorded as a Conflict; the rest of the batch continues.

Invariants:
    - OperationConflict is never raised out of a merge pass
    - Store failures are reported as StoreUnavailableError, distinct from
      business conflicts
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class MarketSyncError(Exception):
    """Base exception for request-level failures.

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
        self.code = code or "MARKETSYNC_ERROR"
        self.details = details or {}


class InvalidBatchError(MarketSyncError):
    """Operation batch is malformed and was rejected wholesale."""

    def __init__(self, message: str, index: int | None = None) -> None:
        super().__init__(message, code="INVALID_BATCH", details={"index": index})
        self.index = index


class InvalidDocumentError(MarketSyncError):
    """Snapshot or export document cannot be parsed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_DOCUMENT")


class ImportRejectedError(MarketSyncError):
    """Import refused because the room already holds data."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="IMPORT_REJECTED")


class ConflictKind(str, Enum):
    """Reason tags carried by Conflict records."""

    INVALID_PAYLOAD = "invalid_payload"
    UNKNOWN_USER = "unknown_user"
    NOT_FOUND = "not_found"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    FORBIDDEN = "forbidden"
    INVALID_STATE = "invalid_state"
    NAME_TAKEN = "name_taken"
    ALREADY_CLAIMED = "already_claimed"
    UNAVAILABLE = "unavailable"
    UNKNOWN_OPERATION = "unknown_operation"
    ERROR = "error"


class OperationConflict(Exception):
    """A business rule refused one operation.

    Raised by rule handlers and caught by the merge engine, which turns it
    into a Conflict record.
    """

    def __init__(self, kind: ConflictKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class InvalidRequestError(MarketSyncError):
    """Request addressing (room, key, query values) is invalid."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_REQUEST")
