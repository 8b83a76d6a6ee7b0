"""
Domain module for MarketSync - entities, state and operations.

This module has no framework dependency. It defines:
- Entity records (User, Listing, Right, Transaction, Notification)
- Log records (ProcessedOp, Conflict)
- DomainState and the persisted Snapshot document
- Operation and batch validation

Invariants:
    - Wire form is camelCase JSON, Python attributes are snake_case
    - The house account is referenced by HOUSE_USER_ID, never by name
"""

from .operations import Operation, OperationType, parse_operations
from .records import (
    HOUSE_USER_ID,
    HOUSE_USER_NAME,
    Conflict,
    Listing,
    Notification,
    ProcessedOp,
    Right,
    RightStatus,
    Transaction,
    User,
)
from .state import DomainState, Snapshot

__all__ = [
    "HOUSE_USER_ID",
    "HOUSE_USER_NAME",
    "Conflict",
    "DomainState",
    "Listing",
    "Notification",
    "Operation",
    "OperationType",
    "ProcessedOp",
    "Right",
    "RightStatus",
    "Snapshot",
    "Transaction",
    "User",
    "parse_operations",
]
