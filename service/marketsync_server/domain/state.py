"""
Domain state and the Snapshot document.

DomainState holds the entities of one room (users, transactions, listings,
rights, notifications) and the vTick version counter. Snapshot wraps it with
the dedup and conflict logs and the store revision, and is the unit of
persistence.

Snapshot document:
    {
        "v": 12,
        "state": {"users": [...], "txs": [...], "listings": [...],
                  "rights": [...], "notifications": [...], "vTick": 57},
        "lastUpdate": 1730000000000,
        "processedOps": [...],
        "conflicts": [...]
    }

Invariants:
    - The house account (id "house") is present in every loaded state
    - Entity collections are keyed by id and keep insertion order
    - txs are newest first
    - copy() returns a state that shares no mutable structure with the source
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from ..errors import InvalidDocumentError
from .records import (
    HOUSE_USER_ID,
    HOUSE_USER_NAME,
    Conflict,
    Listing,
    Notification,
    ProcessedOp,
    Right,
    Transaction,
    User,
)


@dataclass
class DomainState:
    """Entities of one room plus the vTick counter."""

    users: dict[str, User] = field(default_factory=dict)
    txs: list[Transaction] = field(default_factory=list)
    listings: dict[str, Listing] = field(default_factory=dict)
    rights: dict[str, Right] = field(default_factory=dict)
    notifications: list[Notification] = field(default_factory=list)
    v_tick: int = 0

    @classmethod
    def initial(cls) -> DomainState:
        """Create an empty state holding only the house account."""
        state = cls()
        state.ensure_house()
        return state

    def ensure_house(self) -> User:
        """Return the house account, creating it if missing."""
        house = self.users.get(HOUSE_USER_ID)
        if house is None:
            house = User(id=HOUSE_USER_ID, name=HOUSE_USER_NAME)
            self.users[HOUSE_USER_ID] = house
        return house

    @property
    def house(self) -> User:
        return self.users[HOUSE_USER_ID]

    def user_by_name(self, name: str) -> User | None:
        for user in self.users.values():
            if user.name == name:
                return user
        return None

    def has_player_data(self) -> bool:
        """Whether anything beyond the bare house account exists."""
        players = [u for u in self.users if u != HOUSE_USER_ID]
        return bool(players or self.listings or self.txs or self.rights)

    def total_balance(self) -> int:
        return sum(u.balance for u in self.users.values())

    def copy(self) -> DomainState:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "users": [u.to_dict() for u in self.users.values()],
            "txs": [t.to_dict() for t in self.txs],
            "listings": [lst.to_dict() for lst in self.listings.values()],
            "rights": [r.to_dict() for r in self.rights.values()],
            "notifications": [n.to_dict() for n in self.notifications],
            "vTick": self.v_tick,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainState:
        """Parse a state document.

        Raises:
            InvalidDocumentError: If the document is not a well-formed state
        """
        if not isinstance(data, dict):
            raise InvalidDocumentError("state must be an object")
        try:
            users = [User.from_dict(u) for u in data.get("users") or []]
            listings = [Listing.from_dict(x) for x in data.get("listings") or []]
            rights = [Right.from_dict(r) for r in data.get("rights") or []]
            state = cls(
                users={u.id: u for u in users},
                txs=[Transaction.from_dict(t) for t in data.get("txs") or []],
                listings={x.id: x for x in listings},
                rights={r.id: r for r in rights},
                notifications=[
                    Notification.from_dict(n) for n in data.get("notifications") or []
                ],
                v_tick=int(data.get("vTick", 0)),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidDocumentError(f"Malformed state document: {e}") from e

        state.ensure_house()
        return state


@dataclass
class Snapshot:
    """Persisted document for one room/key pair.

    Attributes:
        state: Domain state
        last_update: Server time of the last merge (Unix ms)
        processed_ops: Dedup log, oldest first
        conflicts: Conflict audit log, oldest first
        v: Store revision, incremented by the store on every write
    """

    state: DomainState = field(default_factory=DomainState.initial)
    last_update: int = 0
    processed_ops: list[ProcessedOp] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    v: int = 0

    @classmethod
    def empty(cls) -> Snapshot:
        return cls()

    def processed_ids(self) -> set[str]:
        return {p.id for p in self.processed_ops}

    def to_dict(self) -> dict[str, Any]:
        return {
            "v": self.v,
            "state": self.state.to_dict(),
            "lastUpdate": self.last_update,
            "processedOps": [p.to_dict() for p in self.processed_ops],
            "conflicts": [c.to_dict() for c in self.conflicts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        """Parse a stored Snapshot document.

        Raises:
            InvalidDocumentError: If the document is malformed
        """
        if not isinstance(data, dict):
            raise InvalidDocumentError("snapshot must be an object")

        state = DomainState.from_dict(data.get("state") or {})
        try:
            return cls(
                state=state,
                last_update=int(data.get("lastUpdate", 0)),
                processed_ops=[ProcessedOp.from_dict(p) for p in data.get("processedOps") or []],
                conflicts=[Conflict.from_dict(c) for c in data.get("conflicts") or []],
                v=int(data.get("v", 0)),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidDocumentError(f"Malformed snapshot document: {e}") from e
