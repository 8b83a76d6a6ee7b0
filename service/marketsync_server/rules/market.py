"""
Marketplace rules: listings and purchases.

A purchase pays the seller the price minus the house fee, increments the
listing's sold count and opens a Right in the owned state for the buyer.

Invariants:
    - sold <= qty for every listing after every operation
    - A listing with sold == qty is inactive
    - A listing with sold > 0 cannot be deleted
"""

from __future__ import annotations

from ..domain.operations import Operation
from ..domain.records import Listing, Right, RightStatus
from ..domain.state import DomainState
from ..errors import ConflictKind, OperationConflict
from ._payload import optional_str, require_int, require_str
from .changes import Changes, RuleContext


def _owned_listing(changes: Changes, listing_id: str, user_id: str) -> Listing:
    listing = changes.listing(listing_id)
    if listing.seller_id != user_id:
        raise OperationConflict(ConflictKind.FORBIDDEN, f"Listing {listing.id} is not yours")
    return listing


def create_listing(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    title = require_str(op.data, "title").strip()
    price = require_int(op.data, "price", minimum=0)
    qty = require_int(op.data, "qty", minimum=1) if op.data.get("qty") is not None else 1
    seller = changes.user(op.user_id)

    changes.add_listing(
        Listing(
            id=ctx.new_id(),
            title=title,
            price=price,
            seller_id=seller.id,
            active=True,
            qty=qty,
            sold=0,
            desc=optional_str(op.data, "desc"),
            created_at=op.timestamp,
        )
    )
    return changes


def toggle_listing(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    listing = _owned_listing(changes, require_str(op.data, "listingId"), op.user_id)

    if not listing.active and not listing.in_stock:
        raise OperationConflict(ConflictKind.UNAVAILABLE, f"Listing {listing.id} is sold out")
    listing.active = not listing.active
    return changes


def delete_listing(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    listing = _owned_listing(changes, require_str(op.data, "listingId"), op.user_id)

    if listing.sold > 0:
        raise OperationConflict(
            ConflictKind.INVALID_STATE,
            f"Listing {listing.id} has {listing.sold} sold and cannot be deleted",
        )
    changes.delete_listing(listing.id)
    return changes


def buy_listing(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    listing = changes.listing(require_str(op.data, "listingId"))

    if not listing.active or not listing.in_stock:
        raise OperationConflict(ConflictKind.UNAVAILABLE, f"Listing {listing.id} is not available")
    if listing.seller_id == op.user_id:
        raise OperationConflict(ConflictKind.FORBIDDEN, "Cannot buy your own listing")

    buyer = changes.user(op.user_id)
    seller = changes.user(listing.seller_id)
    house = changes.house()
    fee = ctx.config.fee_for(listing.price)

    changes.debit(buyer, listing.price)
    changes.credit(seller, listing.price - fee)
    changes.credit(house, fee)

    listing.sold += 1
    if not listing.in_stock:
        listing.active = False

    right = Right(
        id=ctx.new_id(),
        listing_id=listing.id,
        buyer_id=buyer.id,
        seller_id=seller.id,
        price=listing.price,
        status=RightStatus.OWNED,
        created_at=op.timestamp,
        updated_at=op.timestamp,
    )
    changes.add_right(right)

    changes.record_tx("purchase", buyer.id, seller.id, listing.price - fee, listing_id=listing.id, memo=listing.title)
    if fee > 0:
        changes.record_tx("fee", buyer.id, house.id, fee, listing_id=listing.id)
    changes.notify(seller.id, f"{buyer.name} bought '{listing.title}'", kind="purchase")
    return changes
