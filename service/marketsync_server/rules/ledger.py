"""
Ledger rules: accounts, transfers, daily bonus and roulette.

Money enters the economy only through register_user (starting balance) and
morning_claim (bonus). transfer and roulette move existing funds between
players and the house account, so they conserve the total balance.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from ..domain.operations import Operation
from ..domain.records import User
from ..domain.state import DomainState
from ..errors import ConflictKind, OperationConflict
from ._payload import optional_str, require_int, require_str
from .changes import Changes, RuleContext

logger = logging.getLogger(__name__)


def register_user(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    name = require_str(op.data, "name").strip()

    if state.user_by_name(name) is not None:
        raise OperationConflict(ConflictKind.NAME_TAKEN, f"Name '{name}' is already taken")
    if op.user_id in state.users:
        raise OperationConflict(ConflictKind.NAME_TAKEN, f"User id {op.user_id} is already registered")

    user = User(
        id=op.user_id,
        name=name,
        pass_hash=optional_str(op.data, "passHash"),
        balance=ctx.config.starting_balance,
    )
    changes.add_user(user)
    changes.record_tx("mint", None, user.id, user.balance, memo="registration")
    return changes


def transfer(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    to_id = require_str(op.data, "toId")
    amount = require_int(op.data, "amount", minimum=1)
    memo = optional_str(op.data, "memo")

    if to_id == op.user_id:
        raise OperationConflict(ConflictKind.INVALID_PAYLOAD, "Cannot transfer to yourself")

    sender = changes.user(op.user_id)
    recipient = changes.user(to_id)
    changes.move(sender, recipient, amount)
    changes.record_tx("transfer", sender.id, recipient.id, amount, memo=memo)
    changes.notify(recipient.id, f"{sender.name} sent you {amount}", kind="transfer")
    return changes


def _claim_date(timestamp_ms: int, zone: str) -> date:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=ZoneInfo(zone)).date()


def morning_claim(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    """Grant the daily bonus, scaled by a capped consecutive-day streak."""
    changes = Changes(state, op, ctx)
    user = changes.user(op.user_id)
    today = _claim_date(op.timestamp, ctx.config.claim_timezone)

    last = date.fromisoformat(user.last_claim) if user.last_claim else None
    if last is not None and last >= today:
        raise OperationConflict(ConflictKind.ALREADY_CLAIMED, f"Already claimed on {user.last_claim}")

    if last is not None and last == today - timedelta(days=1):
        user.streak += 1
    else:
        user.streak = 1
    user.last_claim = today.isoformat()

    bonus = ctx.config.claim_base_bonus * min(user.streak, ctx.config.claim_max_streak)
    changes.credit(user, bonus)
    changes.record_tx("claim", None, user.id, bonus, memo=f"streak {user.streak}")
    return changes


def roulette(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    """Spin the roulette.

    The entry fee goes to the house first. The draw is made server side
    (any client-supplied roll is ignored): below the jackpot chance the
    player takes the whole house balance, otherwise the cumulative payout
    table decides, capped at what the house holds.
    """
    changes = Changes(state, op, ctx)
    player = changes.user(op.user_id)
    house = changes.house()
    fee = ctx.config.roulette_entry_fee

    changes.move(player, house, fee)
    changes.record_tx("roulette_fee", player.id, house.id, fee)

    roll = ctx.rng.random()
    if roll < ctx.config.roulette_jackpot_chance:
        payout = house.balance
        changes.move(house, player, payout)
        changes.record_tx("jackpot", house.id, player.id, payout)
        changes.notify(player.id, f"JACKPOT! You won {payout}", kind="roulette")
        logger.info("Roulette jackpot", extra={"user_id": player.id, "payout": payout})
        return changes

    payout = 0
    for threshold, amount in ctx.config.roulette_table:
        if roll < threshold:
            payout = amount
            break
    payout = min(payout, house.balance)

    if payout > 0:
        changes.move(house, player, payout)
        changes.record_tx("roulette_payout", house.id, player.id, payout)
    return changes
