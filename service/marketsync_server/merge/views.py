"""
Read, export and import contracts over a Snapshot.

- read(): what a polling client gets, or None when it is already current
- export_snapshot(): the state verbatim with format metadata
- import_snapshot(): replace the state wholesale and reset the logs

Export document:
    {
        "format": "marketsync-export",
        "formatVersion": 1,
        "exportedAt": 1730000000000,
        "lastUpdate": 1729999990000,
        "state": {...}
    }
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..domain.records import Conflict, Notification, ProcessedOp
from ..domain.state import DomainState, Snapshot
from ..errors import ImportRejectedError, InvalidDocumentError

logger = logging.getLogger(__name__)

EXPORT_FORMAT = "marketsync-export"
EXPORT_FORMAT_VERSION = 1


@dataclass
class ReadResult:
    """Current state plus the recent diff-like fields."""

    v: int
    state: DomainState
    last_update: int
    processed_ops: list[ProcessedOp]
    conflicts: list[Conflict]
    notifications: list[Notification]

    def to_dict(self) -> dict[str, Any]:
        return {
            "v": self.v,
            "state": self.state.to_dict(),
            "lastUpdate": self.last_update,
            "processedOps": [p.to_dict() for p in self.processed_ops],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "notifications": [n.to_dict() for n in self.notifications],
        }


def read(snapshot: Snapshot | None, client_version: int = 0) -> ReadResult | None:
    """Return the snapshot's view if it is newer than the client's vTick."""
    if snapshot is None or snapshot.state.v_tick <= client_version:
        return None
    return ReadResult(
        v=snapshot.v,
        state=snapshot.state,
        last_update=snapshot.last_update,
        processed_ops=list(snapshot.processed_ops),
        conflicts=list(snapshot.conflicts),
        notifications=list(snapshot.state.notifications),
    )


def export_snapshot(snapshot: Snapshot, now: int) -> dict[str, Any]:
    return {
        "format": EXPORT_FORMAT,
        "formatVersion": EXPORT_FORMAT_VERSION,
        "exportedAt": now,
        "lastUpdate": snapshot.last_update,
        "state": snapshot.state.to_dict(),
    }


def _check_stock(state: DomainState) -> None:
    """Reject oversold listings and deactivate sold-out ones."""
    for listing in state.listings.values():
        if listing.qty < 0 or listing.sold < 0 or listing.sold > listing.qty:
            raise InvalidDocumentError(
                f"Listing {listing.id} has sold={listing.sold} of qty={listing.qty}"
            )
        if listing.sold == listing.qty:
            listing.active = False


def import_snapshot(
    existing: Snapshot | None,
    document: Any,
    now: int,
    overwrite: bool = False,
) -> Snapshot:
    """Build the snapshot that replaces a room's state with an export.

    vTick becomes one more than the larger of the imported and existing
    counters so that polling clients see the new state.

    Args:
        existing: Current snapshot of the room, if any
        document: Export document (or a bare {"state": ...} object)
        now: Import time in Unix ms
        overwrite: Whether existing player data may be replaced

    Returns:
        New snapshot with empty processed-op and conflict logs

    Raises:
        InvalidDocumentError: If the document cannot be parsed or a listing
            has sold more units than it offers
        ImportRejectedError: If the room holds data and overwrite is false
    """
    if not isinstance(document, dict) or not isinstance(document.get("state"), dict):
        raise InvalidDocumentError("import document must contain a 'state' object")

    version = document.get("formatVersion", EXPORT_FORMAT_VERSION)
    if version != EXPORT_FORMAT_VERSION:
        raise InvalidDocumentError(f"Unsupported formatVersion: {version}")

    state = DomainState.from_dict(document["state"])
    _check_stock(state)

    if existing is not None and existing.state.has_player_data() and not overwrite:
        raise ImportRejectedError("Room already has data; pass overwrite to replace it")

    previous_tick = existing.state.v_tick if existing is not None else 0
    state.v_tick = max(state.v_tick, previous_tick) + 1

    logger.info(
        "Imported state",
        extra={
            "users": len(state.users),
            "listings": len(state.listings),
            "overwrite": overwrite,
            "v_tick": state.v_tick,
        },
    )
    return Snapshot(
        state=state,
        last_update=now,
        processed_ops=[],
        conflicts=[],
        v=existing.v if existing is not None else 0,
    )
