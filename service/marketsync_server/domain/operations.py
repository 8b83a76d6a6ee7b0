"""
Client-submitted operations and batch validation.

An operation is the unit of client input. Its id is chosen by the client and
doubles as the idempotency key.

Example:
    {
        "id": "op_3f2a9c...",
        "type": "transfer",
        "data": {"toId": "u_bob", "amount": 500, "memo": "rent"},
        "timestamp": 1730000000000,
        "userId": "u_alice",
        "meta": {"silent": false}
    }

Invariants:
    - parse_operations() either returns a fully valid batch or raises;
      a batch is never partially accepted
    - Unknown operation types pass validation here (they become conflicts
      during the merge)
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import InvalidBatchError


class OperationType(str, Enum):
    """Operation types understood by the rule engine."""

    TRANSFER = "transfer"
    BUY_LISTING = "buy_listing"
    CREATE_LISTING = "create_listing"
    TOGGLE_LISTING = "toggle_listing"
    DELETE_LISTING = "delete_listing"
    REGISTER_USER = "register_user"
    MORNING_CLAIM = "morning_claim"
    ROULETTE = "roulette"
    BUYER_REQUEST = "buyer_request"
    SELLER_RESPOND = "seller_respond"
    REPORT_EXECUTION = "report_execution"
    BUYER_CONFIRM = "buyer_confirm"
    BUYER_REJECT = "buyer_reject"
    SELLER_REFUND = "seller_refund"
    BUYER_FINALIZE = "buyer_finalize"
    SEND_MESSAGE = "send_message"


@dataclass(frozen=True)
class Operation:
    """A single client operation.

    Attributes:
        id: Client-chosen id, used as idempotency key
        type: Wire type tag (may be unknown to this server)
        data: Operation payload
        timestamp: Client clock (Unix ms), used for ordering
        user_id: Issuing user
        meta: Optional metadata (e.g. {"silent": true})
    """

    id: str
    type: str
    timestamp: int
    user_id: str
    data: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def silent(self) -> bool:
        return bool(self.meta.get("silent", False))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Operation:
        """Create from dictionary representation.

        Raises:
            ValueError: If required fields are missing or ill-typed
        """
        if not isinstance(data, dict):
            raise ValueError("operation must be an object")

        required = ["id", "type", "timestamp", "userId"]
        missing = [f for f in required if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")

        for name in ("id", "type", "userId"):
            if not isinstance(data[name], str) or not data[name]:
                raise ValueError(f"'{name}' must be a non-empty string")

        timestamp = data["timestamp"]
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("'timestamp' must be a number")
        if not math.isfinite(timestamp):
            raise ValueError("'timestamp' must be finite")

        payload = data.get("data")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValueError("'data' must be an object")

        meta = data.get("meta")
        if meta is None:
            meta = {}
        if not isinstance(meta, dict):
            raise ValueError("'meta' must be an object")

        return cls(
            id=data["id"],
            type=data["type"],
            timestamp=int(timestamp),
            user_id=data["userId"],
            data=payload,
            meta=meta,
        )


def parse_operations(raw: Any) -> list[Operation]:
    """Validate a raw batch and convert it to operations.

    Args:
        raw: Decoded JSON value of the "operations" field

    Returns:
        Operations in submission order

    Raises:
        InvalidBatchError: If raw is not a sequence or any entry is malformed
    """
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
        raise InvalidBatchError("operations must be a list")

    operations = []
    for index, item in enumerate(raw):
        try:
            operations.append(Operation.from_dict(item))
        except ValueError as e:
            raise InvalidBatchError(f"operations[{index}]: {e}", index=index) from e
    return operations
