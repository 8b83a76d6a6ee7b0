"""
Dedup & ordering stage.

Operations whose id is already in the processed log are dropped, as are
repeats of an id inside the same batch (the first occurrence is kept). The
rest are sorted by client timestamp. Python's sort is stable, so ties keep
their batch order.

Client timestamps are not validated against a trusted clock; the order is a
deterministic tie-break between concurrent clients, not a causal guarantee.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable

from ..domain.operations import Operation


def dedup_and_order(
    operations: Iterable[Operation],
    processed_ids: Collection[str],
) -> tuple[list[Operation], list[Operation]]:
    """Filter already-seen operations and order the remainder.

    Args:
        operations: Batch in submission order
        processed_ids: Ids from the durable processed-op log

    Returns:
        Tuple of (operations to apply in order, dropped duplicates)
    """
    seen = set(processed_ids)
    fresh: list[Operation] = []
    skipped: list[Operation] = []

    for op in operations:
        if op.id in seen:
            skipped.append(op)
            continue
        seen.add(op.id)
        fresh.append(op)

    fresh.sort(key=lambda op: op.timestamp)
    return fresh, skipped
