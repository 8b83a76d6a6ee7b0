"""
Retention pruner.

Bounds log growth with sliding windows measured back from the merge time:
processed-op and conflict entries older than the log window (1 hour by
default) and notifications older than the notification TTL (60 s) are
dropped.

An operation replayed after its processed-op entry has been pruned is no
longer recognised as a duplicate and will be applied again.
"""

from __future__ import annotations

import logging

from ..config import RetentionConfig
from ..domain.state import Snapshot

logger = logging.getLogger(__name__)


def prune(snapshot: Snapshot, now_ms: int, config: RetentionConfig | None = None) -> Snapshot:
    """Drop expired log entries and notifications in place.

    Returns:
        The same snapshot, for chaining
    """
    config = config or RetentionConfig()
    log_cutoff = now_ms - config.log_window_ms
    notification_cutoff = now_ms - config.notification_ttl_ms

    before = (
        len(snapshot.processed_ops),
        len(snapshot.conflicts),
        len(snapshot.state.notifications),
    )

    snapshot.processed_ops = [p for p in snapshot.processed_ops if p.processed_at >= log_cutoff]
    snapshot.conflicts = [c for c in snapshot.conflicts if c.processed_at >= log_cutoff]
    snapshot.state.notifications = [
        n for n in snapshot.state.notifications if n.ts >= notification_cutoff
    ]

    after = (
        len(snapshot.processed_ops),
        len(snapshot.conflicts),
        len(snapshot.state.notifications),
    )
    if before != after:
        logger.debug(
            "Pruned expired entries",
            extra={
                "processed_ops": before[0] - after[0],
                "conflicts": before[1] - after[1],
                "notifications": before[2] - after[2],
            },
        )
    return snapshot
