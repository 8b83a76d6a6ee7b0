"""
Entity records of the shared economy.

Each record is a plain dataclass with a camelCase wire form
(to_dict/from_dict). Records are treated as values: rule handlers never
modify a record held by the state, they stage a copy made with
dataclasses.replace() and the merge engine swaps it in.

Invariants:
    - Balances and prices are integers in currency units
    - Listing.sold <= Listing.qty, and a sold-out listing is inactive
    - Transactions are immutable once appended

How to change safely:
    - New fields need a default so older snapshots still load
    - Never rename a wire key; add a new one and read both
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

HOUSE_USER_ID = "house"
HOUSE_USER_NAME = "House"


class RightStatus(str, Enum):
    """Escrow states of a Right."""

    OWNED = "owned"
    REQUEST = "request"
    SELLER_EXECUTED = "seller_executed"
    SELLER_CANCEL_REQUESTED = "seller_cancel_requested"
    SELLER_REPORTED = "seller_reported"
    BUYER_REJECTED = "buyer_rejected"
    FINALIZED = "finalized"


@dataclass
class User:
    """A player account.

    Attributes:
        id: Unique user identifier
        name: Unique display name
        pass_hash: Credential hash supplied by the client (opaque here)
        balance: Currency units held
        streak: Consecutive-day morning claim streak
        last_claim: ISO date of the last morning claim
    """

    id: str
    name: str
    pass_hash: str = ""
    balance: int = 0
    streak: int = 0
    last_claim: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "passHash": self.pass_hash,
            "balance": self.balance,
            "streak": self.streak,
            "lastClaim": self.last_claim,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        return cls(
            id=data["id"],
            name=data["name"],
            pass_hash=data.get("passHash", ""),
            balance=int(data.get("balance", 0)),
            streak=int(data.get("streak", 0)),
            last_claim=data.get("lastClaim"),
        )

    @property
    def is_house(self) -> bool:
        return self.id == HOUSE_USER_ID


@dataclass
class Listing:
    """A marketplace offer.

    Attributes:
        id: Unique listing identifier
        title: Listing title
        price: Price per unit
        seller_id: Owning user
        active: Whether the listing can be bought
        qty: Units on offer
        sold: Units currently sold (refunds give units back)
        desc: Free-text description
        created_at: Creation timestamp (Unix ms)
    """

    id: str
    title: str
    price: int
    seller_id: str
    active: bool = True
    qty: int = 1
    sold: int = 0
    desc: str = ""
    created_at: int = 0

    @property
    def in_stock(self) -> bool:
        return self.sold < self.qty

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "desc": self.desc,
            "price": self.price,
            "sellerId": self.seller_id,
            "active": self.active,
            "qty": self.qty,
            "sold": self.sold,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Listing:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            price=int(data["price"]),
            seller_id=data["sellerId"],
            active=bool(data.get("active", True)),
            qty=int(data.get("qty", 1)),
            sold=int(data.get("sold", 0)),
            desc=data.get("desc", ""),
            created_at=int(data.get("createdAt", 0)),
        )


@dataclass
class Right:
    """An escrow record created by a purchase.

    Attributes:
        id: Unique right identifier
        listing_id: Purchased listing
        buyer_id: Buyer (holder of the right)
        seller_id: Seller who must execute it
        price: Listing price at purchase time, basis for refunds
        status: Current escrow state
        executed: Whether the seller has declared execution
        reject_count: Number of buyer rejections in this right's life
        created_at: Purchase timestamp (Unix ms)
        updated_at: Last transition timestamp (Unix ms)
    """

    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    price: int
    status: RightStatus = RightStatus.OWNED
    executed: bool = False
    reject_count: int = 0
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "listingId": self.listing_id,
            "buyerId": self.buyer_id,
            "sellerId": self.seller_id,
            "price": self.price,
            "status": self.status.value,
            "executed": self.executed,
            "rejectCount": self.reject_count,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Right:
        return cls(
            id=data["id"],
            listing_id=data["listingId"],
            buyer_id=data["buyerId"],
            seller_id=data["sellerId"],
            price=int(data.get("price", 0)),
            status=RightStatus(data.get("status", RightStatus.OWNED.value)),
            executed=bool(data.get("executed", False)),
            reject_count=int(data.get("rejectCount", 0)),
            created_at=int(data.get("createdAt", 0)),
            updated_at=int(data.get("updatedAt", 0)),
        )


@dataclass(frozen=True)
class Transaction:
    """Immutable ledger entry."""

    id: str
    ts: int
    type: str
    from_id: str | None
    to_id: str | None
    amount: int
    listing_id: str | None = None
    memo: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.ts,
            "type": self.type,
            "from": self.from_id,
            "to": self.to_id,
            "amount": self.amount,
            "listingId": self.listing_id,
            "memo": self.memo,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        return cls(
            id=data["id"],
            ts=int(data.get("ts", 0)),
            type=data["type"],
            from_id=data.get("from"),
            to_id=data.get("to"),
            amount=int(data.get("amount", 0)),
            listing_id=data.get("listingId"),
            memo=data.get("memo") or "",
        )


@dataclass(frozen=True)
class Notification:
    """Ephemeral message addressed to one user; pruned after a short TTL."""

    id: str
    ts: int
    to: str
    content: str
    type: str
    is_html: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.ts,
            "to": self.to,
            "content": self.content,
            "type": self.type,
            "isHtml": self.is_html,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Notification:
        return cls(
            id=data["id"],
            ts=int(data.get("ts", 0)),
            to=data["to"],
            content=data.get("content", ""),
            type=data.get("type", "info"),
            is_html=bool(data.get("isHtml", False)),
        )


@dataclass(frozen=True)
class ProcessedOp:
    """Entry of the durable dedup log.

    timestamp is the client's operation timestamp; processed_at is the
    server time of the merge that consumed it and drives retention.
    """

    id: str
    timestamp: int
    type: str
    user: str
    processed_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type,
            "user": self.user,
            "processedAt": self.processed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProcessedOp:
        timestamp = int(data.get("timestamp", 0))
        return cls(
            id=data["id"],
            timestamp=timestamp,
            type=data.get("type", ""),
            user=data.get("user", ""),
            processed_at=int(data.get("processedAt", timestamp)),
        )


@dataclass(frozen=True)
class Conflict:
    """Audit entry for a rejected or failed operation."""

    op_id: str
    kind: str
    message: str
    timestamp: int
    user: str
    processed_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "opId": self.op_id,
            "kind": self.kind,
            "message": self.message,
            "timestamp": self.timestamp,
            "user": self.user,
            "processedAt": self.processed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conflict:
        timestamp = int(data.get("timestamp", 0))
        return cls(
            op_id=data["opId"],
            kind=data.get("kind", "error"),
            message=data.get("message", ""),
            timestamp=timestamp,
            user=data.get("user", ""),
            processed_at=int(data.get("processedAt", timestamp)),
        )
