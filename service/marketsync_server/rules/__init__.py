"""
Rule engine for MarketSync - one handler per operation type.

Handlers are functions of (state, operation, context) that return staged
Changes or raise OperationConflict. They are grouped by concern:
- ledger: register_user, transfer, morning_claim, roulette
- market: create/toggle/delete/buy listing
- escrow: the Right state machine
- messaging: send_message

Invariants:
    - Handlers never write to the state they are given
    - Every business-rule refusal is an OperationConflict with a ConflictKind
"""

from .changes import Changes, RuleContext, new_entity_id
from .dispatcher import HANDLERS, dispatch, resolve_handler

__all__ = [
    "Changes",
    "HANDLERS",
    "RuleContext",
    "dispatch",
    "new_entity_id",
    "resolve_handler",
]
