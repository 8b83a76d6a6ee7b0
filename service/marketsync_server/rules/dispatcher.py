"""
Operation dispatcher: maps an operation type to its rule handler.

Every OperationType member must have exactly one handler. The table is
checked when this module is imported, so a new member without a handler
fails fast instead of silently producing unknown_operation conflicts.
Genuinely unknown wire types still become UNKNOWN_OPERATION conflicts.
"""

from __future__ import annotations

from collections.abc import Callable

from ..domain.operations import Operation, OperationType
from ..domain.state import DomainState
from ..errors import ConflictKind, OperationConflict
from . import escrow, ledger, market, messaging
from .changes import Changes, RuleContext

Handler = Callable[[DomainState, Operation, RuleContext], Changes]

HANDLERS: dict[OperationType, Handler] = {
    OperationType.TRANSFER: ledger.transfer,
    OperationType.REGISTER_USER: ledger.register_user,
    OperationType.MORNING_CLAIM: ledger.morning_claim,
    OperationType.ROULETTE: ledger.roulette,
    OperationType.CREATE_LISTING: market.create_listing,
    OperationType.BUY_LISTING: market.buy_listing,
    OperationType.TOGGLE_LISTING: market.toggle_listing,
    OperationType.DELETE_LISTING: market.delete_listing,
    OperationType.BUYER_REQUEST: escrow.buyer_request,
    OperationType.SELLER_RESPOND: escrow.seller_respond,
    OperationType.REPORT_EXECUTION: escrow.report_execution,
    OperationType.BUYER_CONFIRM: escrow.buyer_confirm,
    OperationType.BUYER_REJECT: escrow.buyer_reject,
    OperationType.SELLER_REFUND: escrow.seller_refund,
    OperationType.BUYER_FINALIZE: escrow.buyer_finalize,
    OperationType.SEND_MESSAGE: messaging.send_message,
}

_missing = set(OperationType) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No handler for operation types: {sorted(m.value for m in _missing)}")


def resolve_handler(op_type: str) -> Handler:
    """Look up the handler for a wire type tag.

    Raises:
        OperationConflict: UNKNOWN_OPERATION for unrecognised tags
    """
    try:
        return HANDLERS[OperationType(op_type)]
    except ValueError:
        raise OperationConflict(ConflictKind.UNKNOWN_OPERATION, f"Unknown operation type: {op_type}")


def dispatch(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    """Run the handler for one operation against the state.

    Returns:
        Staged changes, not yet applied

    Raises:
        OperationConflict: If a business rule refuses the operation
    """
    handler = resolve_handler(op.type)
    return handler(state, op, ctx)
