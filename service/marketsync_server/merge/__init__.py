"""
Merge module for MarketSync - the operation merge pipeline.

This module handles:
- Dedup & ordering of incoming batches
- The merge pass (dispatch, conflict capture, versioning)
- Retention pruning of logs and notifications
- Read / export / import views over a Snapshot

Invariants:
    - Merging is idempotent per operation id within the retention window
    - The same batch in any submission order yields the same state
      (up to generated ids and roulette draws)
"""

from .engine import MergeDiff, MergeEngine, MergeResult, merge, now_ms
from .ordering import dedup_and_order
from .retention import prune
from .views import ReadResult, export_snapshot, import_snapshot, read

__all__ = [
    "MergeDiff",
    "MergeEngine",
    "MergeResult",
    "ReadResult",
    "dedup_and_order",
    "export_snapshot",
    "import_snapshot",
    "merge",
    "now_ms",
    "prune",
    "read",
]
