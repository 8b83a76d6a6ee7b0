"""
Merge engine for MarketSync.

The MergeEngine owns one merge pass: it takes the last known Snapshot and a
batch of operations and produces a new Snapshot plus a diff for clients.

    1. Copy the domain state (the input Snapshot is never mutated)
    2. Dedup & order the batch
    3. Dispatch each operation; commit its changes or record a conflict;
       log it as processed either way
    4. Advance lastUpdate to the merge time
    5. Prune expired logs and notifications
    6. Return the new Snapshot and the MergeDiff

Invariants:
    - A merge is synchronous and never suspends mid-batch
    - No operation aborts the batch: conflicts and internal errors become
      Conflict records
    - vTick grows by exactly the number of applied operations
    - Duplicates are dropped silently (no Conflict)

How to change safely:
    - Keep handlers free of side effects outside their Changes
    - Add diff fields additively; clients ignore unknown keys
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..config import EngineConfig, RetentionConfig
from ..domain.operations import Operation
from ..domain.records import Conflict, Listing, Notification, ProcessedOp, Right, Transaction, User
from ..domain.state import Snapshot
from ..errors import ConflictKind, OperationConflict
from ..rules.changes import Changes, RuleContext, new_entity_id
from ..rules.dispatcher import dispatch
from .ordering import dedup_and_order
from .retention import prune

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class MergeDiff:
    """What one merge pass changed, for relaying to clients.

    Attributes:
        new_users: Users registered in this pass
        updated_users: Pre-existing users whose record changed
        new_txs: Transactions appended, in application order
        rights: Created or updated rights
        deleted_rights: Ids of rights removed (cancel/refund)
        listings: Created or updated listings
        deleted_listings: Ids of deleted listings
        notifications: Notifications emitted
        conflicts: Conflicts recorded
        applied: Ids of operations applied successfully
        skipped: Ids of operations dropped as duplicates
    """

    new_users: dict[str, User] = field(default_factory=dict)
    updated_users: dict[str, User] = field(default_factory=dict)
    new_txs: list[Transaction] = field(default_factory=list)
    rights: dict[str, Right] = field(default_factory=dict)
    deleted_rights: set[str] = field(default_factory=set)
    listings: dict[str, Listing] = field(default_factory=dict)
    deleted_listings: set[str] = field(default_factory=set)
    notifications: list[Notification] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def fold(self, changes: Changes) -> None:
        """Accumulate the committed changes of one operation."""
        for user_id, user in changes.users.items():
            if user_id in changes.new_user_ids or user_id in self.new_users:
                self.new_users[user_id] = user
            else:
                self.updated_users[user_id] = user

        for listing_id in changes.deleted_listing_ids:
            self.listings.pop(listing_id, None)
            self.deleted_listings.add(listing_id)
        self.listings.update(changes.listings)

        for right_id in changes.deleted_right_ids:
            self.rights.pop(right_id, None)
            self.deleted_rights.add(right_id)
        self.rights.update(changes.rights)

        self.new_txs.extend(changes.txs)
        self.notifications.extend(changes.notifications)

    @property
    def is_empty(self) -> bool:
        return not (self.applied or self.conflicts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "newUsers": [u.to_dict() for u in self.new_users.values()],
            "updatedUsers": [u.to_dict() for u in self.updated_users.values()],
            "newTxs": [t.to_dict() for t in self.new_txs],
            "rights": [r.to_dict() for r in self.rights.values()],
            "deletedRights": sorted(self.deleted_rights),
            "listings": [x.to_dict() for x in self.listings.values()],
            "deletedListings": sorted(self.deleted_listings),
            "notifications": [n.to_dict() for n in self.notifications],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "applied": list(self.applied),
            "skipped": list(self.skipped),
        }


@dataclass
class MergeResult:
    """New snapshot plus the diff that produced it."""

    snapshot: Snapshot
    diff: MergeDiff


class MergeEngine:
    """Applies operation batches to snapshots.

    The engine holds configuration only; no state survives between calls.

    Example:
        >>> engine = MergeEngine()
        >>> result = engine.merge(Snapshot.empty(), parse_operations(raw_ops))
        >>> store_put(result.snapshot)
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        retention: RetentionConfig | None = None,
        rng: random.Random | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Economy constants
            retention: Retention windows for the pruner
            rng: Random source for roulette (defaults to SystemRandom)
            id_factory: Id generator for created entities
        """
        self.config = config or EngineConfig()
        self.retention = retention or RetentionConfig()
        self.rng = rng or random.SystemRandom()
        self.id_factory = id_factory or new_entity_id

    def merge(
        self,
        snapshot: Snapshot,
        operations: Iterable[Operation],
        now: int | None = None,
    ) -> MergeResult:
        """Run one merge pass.

        Args:
            snapshot: Last known snapshot (left untouched)
            operations: Validated batch, in submission order
            now: Merge time in Unix ms (defaults to the wall clock)

        Returns:
            MergeResult with the new snapshot and the diff
        """
        merge_time = now if now is not None else now_ms()
        state = snapshot.state.copy()
        state.ensure_house()

        ordered, skipped = dedup_and_order(operations, snapshot.processed_ids())
        ctx = RuleContext(config=self.config, now_ms=merge_time, rng=self.rng, new_id=self.id_factory)

        diff = MergeDiff(skipped=[op.id for op in skipped])
        processed: list[ProcessedOp] = []

        for op in ordered:
            processed.append(
                ProcessedOp(
                    id=op.id,
                    timestamp=op.timestamp,
                    type=op.type,
                    user=op.user_id,
                    processed_at=merge_time,
                )
            )

            try:
                changes = dispatch(state, op, ctx)
            except OperationConflict as e:
                diff.conflicts.append(self._conflict(op, e.kind, e.message, merge_time))
                logger.debug(
                    "Operation conflict",
                    extra={"op_id": op.id, "op_type": op.type, "kind": e.kind.value},
                )
                continue
            except Exception as e:
                diff.conflicts.append(self._conflict(op, ConflictKind.ERROR, str(e), merge_time))
                logger.error(
                    f"Error applying operation: {e}",
                    exc_info=True,
                    extra={"op_id": op.id, "op_type": op.type},
                )
                continue

            changes.apply(state)
            state.v_tick += 1
            diff.fold(changes)
            diff.applied.append(op.id)

        result = Snapshot(
            state=state,
            last_update=merge_time,
            processed_ops=[*snapshot.processed_ops, *processed],
            conflicts=[*snapshot.conflicts, *diff.conflicts],
            v=snapshot.v,
        )
        prune(result, merge_time, self.retention)

        logger.info(
            "Merged operation batch",
            extra={
                "applied": len(diff.applied),
                "conflicts": len(diff.conflicts),
                "skipped": len(diff.skipped),
                "v_tick": state.v_tick,
            },
        )
        return MergeResult(snapshot=result, diff=diff)

    @staticmethod
    def _conflict(op: Operation, kind: ConflictKind, message: str, merge_time: int) -> Conflict:
        return Conflict(
            op_id=op.id,
            kind=kind.value,
            message=message,
            timestamp=op.timestamp,
            user=op.user_id,
            processed_at=merge_time,
        )


def merge(
    snapshot: Snapshot,
    operations: Iterable[Operation],
    now: int | None = None,
    engine: MergeEngine | None = None,
) -> MergeResult:
    """Merge a batch with a default-configured engine."""
    return (engine or MergeEngine()).merge(snapshot, operations, now=now)
