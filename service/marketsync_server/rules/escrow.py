"""
Escrow rules: the Right state machine.

Transitions (actor in parentheses):

    owned                    --buyer_request (buyer)-->        request
    request                  --seller_respond exec (seller)--> seller_executed
    request                  --seller_respond cancel (seller)--> seller_cancel_requested
    request                  --report_execution (seller)-->    seller_reported
    seller_executed          --buyer_finalize (buyer)-->       finalized
    seller_cancel_requested  --buyer_finalize (buyer)-->       removed, refund
    seller_reported          --buyer_confirm (buyer)-->        finalized
    seller_reported          --buyer_reject (buyer, once)-->   buyer_rejected
    seller_reported,
    seller_cancel_requested,
    buyer_rejected           --seller_refund (seller)-->       removed, refund

Invariants:
    - No other edge exists; wrong actor is FORBIDDEN, wrong state INVALID_STATE
    - A removed right gives its unit back to the listing
    - finalized is terminal; the right stays in the state as a record

How to change safely:
    - Add a state by adding a RightStatus member and explicit edges here
    - Keep refund amounts within [0, right.price]
"""

from __future__ import annotations

from ..domain.operations import Operation
from ..domain.records import Right, RightStatus
from ..domain.state import DomainState
from ..errors import ConflictKind, OperationConflict
from ._payload import require_int, require_str
from .changes import Changes, RuleContext

BUYER = "buyer"
SELLER = "seller"


def _take(
    changes: Changes,
    op: Operation,
    role: str,
    allowed: tuple[RightStatus, ...],
) -> Right:
    """Stage the right named by the payload after role and state checks."""
    right = changes.right(require_str(op.data, "rightId"))

    owner_id = right.buyer_id if role == BUYER else right.seller_id
    if op.user_id != owner_id:
        raise OperationConflict(ConflictKind.FORBIDDEN, f"Only the {role} may do this on right {right.id}")
    if right.status not in allowed:
        raise OperationConflict(
            ConflictKind.INVALID_STATE,
            f"Right {right.id} is {right.status.value}, expected one of "
            f"{[s.value for s in allowed]}",
        )
    return right


def _advance(
    changes: Changes,
    op: Operation,
    right: Right,
    status: RightStatus,
    tag: str,
    notify_id: str,
    message: str,
) -> None:
    right.status = status
    right.updated_at = op.timestamp
    changes.record_tx(tag, op.user_id, notify_id, 0, listing_id=right.listing_id)
    changes.notify(notify_id, message, kind="right")


def _restock(changes: Changes, right: Right) -> None:
    if right.listing_id not in changes.state.listings and right.listing_id not in changes.listings:
        return
    listing = changes.listing(right.listing_id)
    listing.sold = max(0, listing.sold - 1)
    if listing.in_stock:
        listing.active = True


def _refund_and_remove(changes: Changes, op: Operation, right: Right, amount: int) -> None:
    seller = changes.user(right.seller_id)
    buyer = changes.user(right.buyer_id)
    changes.move(seller, buyer, amount)
    _restock(changes, right)
    changes.delete_right(right.id)
    changes.record_tx("refund", seller.id, buyer.id, amount, listing_id=right.listing_id)
    notify_id = buyer.id if op.user_id == seller.id else seller.id
    changes.notify(notify_id, f"Right {right.id} refunded ({amount})", kind="right")


def buyer_request(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    right = _take(changes, op, BUYER, (RightStatus.OWNED,))
    _advance(changes, op, right, RightStatus.REQUEST, "right_request", right.seller_id,
             f"Execution requested for right {right.id}")
    return changes


def seller_respond(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    action = op.data.get("action")
    if action not in ("exec", "cancel"):
        raise OperationConflict(ConflictKind.INVALID_PAYLOAD, "'action' must be 'exec' or 'cancel'")

    right = _take(changes, op, SELLER, (RightStatus.REQUEST,))
    if action == "exec":
        right.executed = True
        _advance(changes, op, right, RightStatus.SELLER_EXECUTED, "right_executed", right.buyer_id,
                 f"Right {right.id} executed by seller")
    else:
        _advance(changes, op, right, RightStatus.SELLER_CANCEL_REQUESTED, "right_cancel_requested",
                 right.buyer_id, f"Seller asks to cancel right {right.id}")
    return changes


def report_execution(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    right = _take(changes, op, SELLER, (RightStatus.REQUEST,))
    right.executed = True
    _advance(changes, op, right, RightStatus.SELLER_REPORTED, "right_reported", right.buyer_id,
             f"Seller reports right {right.id} as executed")
    return changes


def buyer_confirm(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    right = _take(changes, op, BUYER, (RightStatus.SELLER_REPORTED,))
    _advance(changes, op, right, RightStatus.FINALIZED, "right_confirmed", right.seller_id,
             f"Buyer confirmed right {right.id}")
    return changes


def buyer_reject(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    right = _take(changes, op, BUYER, (RightStatus.SELLER_REPORTED,))
    if right.reject_count >= 1:
        raise OperationConflict(ConflictKind.INVALID_STATE, f"Right {right.id} was already rejected")

    right.reject_count += 1
    right.executed = False
    _advance(changes, op, right, RightStatus.BUYER_REJECTED, "right_rejected", right.seller_id,
             f"Buyer rejected the execution report for right {right.id}")
    return changes


def seller_refund(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    """Seller refunds the buyer and closes the right.

    The amount defaults to the seller's net proceeds; an explicit amount may
    be partial and is capped at the full price.
    """
    changes = Changes(state, op, ctx)
    right = _take(
        changes,
        op,
        SELLER,
        (RightStatus.SELLER_REPORTED, RightStatus.SELLER_CANCEL_REQUESTED, RightStatus.BUYER_REJECTED),
    )

    if op.data.get("amount") is None:
        amount = right.price - ctx.config.fee_for(right.price)
    else:
        amount = min(require_int(op.data, "amount", minimum=0), right.price)

    _refund_and_remove(changes, op, right, amount)
    return changes


def buyer_finalize(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    right = _take(
        changes,
        op,
        BUYER,
        (RightStatus.SELLER_EXECUTED, RightStatus.SELLER_CANCEL_REQUESTED),
    )

    if right.status == RightStatus.SELLER_CANCEL_REQUESTED:
        amount = right.price - ctx.config.fee_for(right.price)
        _refund_and_remove(changes, op, right, amount)
    else:
        right.executed = True
        _advance(changes, op, right, RightStatus.FINALIZED, "right_finalized", right.seller_id,
                 f"Buyer finalized right {right.id}")
    return changes
