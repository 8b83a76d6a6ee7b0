"""
Staged changes produced by a rule handler.

A handler reads the working DomainState but never writes to it. Every
entity it touches is copied into a Changes object first, and all balance
moves, new records and deletions happen on those copies. The merge engine
commits the Changes with apply() only after the handler returned, so a
handler that raises (conflict or bug) leaves the state exactly as it was.

Invariants:
    - Staged entities are copies; the state's own objects are never mutated
    - Funds only move through debit()/credit() so balances can't go negative
    - Silent operations stage no transactions and no notifications
"""

from __future__ import annotations

import random
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from ..config import EngineConfig
from ..domain.operations import Operation
from ..domain.records import Listing, Notification, Right, Transaction, User
from ..domain.state import DomainState
from ..errors import ConflictKind, OperationConflict


def new_entity_id() -> str:
    """Random 128-bit identifier for server-created entities."""
    return uuid.uuid4().hex


@dataclass
class RuleContext:
    """Everything a handler may depend on besides state and operation.

    Attributes:
        config: Economy constants
        now_ms: Server time of the current merge (Unix ms)
        rng: Random source for roulette draws
        new_id: Id factory for created entities
    """

    config: EngineConfig = field(default_factory=EngineConfig)
    now_ms: int = 0
    rng: random.Random = field(default_factory=random.SystemRandom)
    new_id: Callable[[], str] = new_entity_id


class Changes:
    """Entities created, updated or deleted by one operation."""

    def __init__(self, state: DomainState, op: Operation, ctx: RuleContext) -> None:
        self.state = state
        self.op = op
        self.ctx = ctx

        self.users: dict[str, User] = {}
        self.new_user_ids: set[str] = set()
        self.listings: dict[str, Listing] = {}
        self.deleted_listing_ids: set[str] = set()
        self.rights: dict[str, Right] = {}
        self.new_right_ids: set[str] = set()
        self.deleted_right_ids: set[str] = set()
        self.txs: list[Transaction] = []
        self.notifications: list[Notification] = []

    # --- users ---

    def find_user(self, user_id: str) -> User | None:
        if user_id in self.users:
            return self.users[user_id]
        user = self.state.users.get(user_id)
        if user is None:
            return None
        staged = replace(user)
        self.users[user_id] = staged
        return staged

    def user(self, user_id: str) -> User:
        """Staged copy of a user.

        Raises:
            OperationConflict: UNKNOWN_USER if the user does not exist
        """
        user = self.find_user(user_id)
        if user is None:
            raise OperationConflict(ConflictKind.UNKNOWN_USER, f"User {user_id} does not exist")
        return user

    def add_user(self, user: User) -> None:
        self.users[user.id] = user
        self.new_user_ids.add(user.id)

    def house(self) -> User:
        return self.user(self.state.house.id)

    def debit(self, user: User, amount: int) -> None:
        """Take funds from a staged user.

        Raises:
            OperationConflict: INSUFFICIENT_FUNDS if the balance is too low
        """
        if user.balance < amount:
            raise OperationConflict(
                ConflictKind.INSUFFICIENT_FUNDS,
                f"{user.name} has {user.balance}, needs {amount}",
            )
        user.balance -= amount

    def credit(self, user: User, amount: int) -> None:
        user.balance += amount

    def move(self, payer: User, payee: User, amount: int) -> None:
        self.debit(payer, amount)
        self.credit(payee, amount)

    # --- listings ---

    def listing(self, listing_id: Any) -> Listing:
        """Staged copy of a listing.

        Raises:
            OperationConflict: NOT_FOUND if the listing does not exist
        """
        if listing_id in self.listings:
            return self.listings[listing_id]
        listing = self.state.listings.get(listing_id) if isinstance(listing_id, str) else None
        if listing is None:
            raise OperationConflict(ConflictKind.NOT_FOUND, f"Listing {listing_id} not found")
        staged = replace(listing)
        self.listings[listing.id] = staged
        return staged

    def add_listing(self, listing: Listing) -> None:
        self.listings[listing.id] = listing

    def delete_listing(self, listing_id: str) -> None:
        self.listings.pop(listing_id, None)
        self.deleted_listing_ids.add(listing_id)

    # --- rights ---

    def right(self, right_id: Any) -> Right:
        """Staged copy of a right.

        Raises:
            OperationConflict: NOT_FOUND if the right does not exist
        """
        if right_id in self.rights:
            return self.rights[right_id]
        right = self.state.rights.get(right_id) if isinstance(right_id, str) else None
        if right is None:
            raise OperationConflict(ConflictKind.NOT_FOUND, f"Right {right_id} not found")
        staged = replace(right)
        self.rights[right.id] = staged
        return staged

    def add_right(self, right: Right) -> None:
        self.rights[right.id] = right
        self.new_right_ids.add(right.id)

    def delete_right(self, right_id: str) -> None:
        self.rights.pop(right_id, None)
        self.deleted_right_ids.add(right_id)

    # --- log records ---

    def record_tx(
        self,
        tx_type: str,
        from_id: str | None,
        to_id: str | None,
        amount: int,
        listing_id: str | None = None,
        memo: str = "",
    ) -> None:
        if self.op.silent:
            return
        self.txs.append(
            Transaction(
                id=self.ctx.new_id(),
                ts=self.op.timestamp,
                type=tx_type,
                from_id=from_id,
                to_id=to_id,
                amount=amount,
                listing_id=listing_id,
                memo=memo,
            )
        )

    def notify(self, to: str, content: str, kind: str = "info", is_html: bool = False) -> None:
        if self.op.silent:
            return
        self.notifications.append(
            Notification(
                id=self.ctx.new_id(),
                ts=self.ctx.now_ms,
                to=to,
                content=content,
                type=kind,
                is_html=is_html,
            )
        )

    # --- commit ---

    def apply(self, state: DomainState) -> None:
        """Commit staged entities into the state."""
        state.users.update(self.users)
        for listing_id in self.deleted_listing_ids:
            state.listings.pop(listing_id, None)
        state.listings.update(self.listings)
        for right_id in self.deleted_right_ids:
            state.rights.pop(right_id, None)
        state.rights.update(self.rights)
        # Newest first: the last tx staged by this op ends up on top.
        state.txs[:0] = reversed(self.txs)
        state.notifications.extend(self.notifications)
