"""
MarketSync Server - shared economy state for polling clients.

Many independent clients (players) submit timestamped operations against
one shared, versioned economic state per room: balances, marketplace
listings, escrow rights and gambling payouts. The state lives in a single
Snapshot document behind a key-value store; clients poll for changes.

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│    HTTP     │────▶│   RoomService   │
    │   (SDK)     │◀────│  (FastAPI)  │◀────│ read/merge/put  │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                        ┌────────────────────────────┼──────────┐
                        │                            │          │
                        ▼                            ▼          ▼
                   ┌──────────┐   ┌─────────────┐  ┌───────┐  ┌────────┐
                   │  Dedup & │──▶│ Rule engine │─▶│ Prune │  │ Store  │
                   │  order   │   │ (16 ops)    │  │       │  │ (KV)   │
                   └──────────┘   └─────────────┘  └───────┘  └────────┘

Invariants:
    - A merge never mutates its input Snapshot
    - Operation ids are idempotency keys (applied at most once per window)
    - Business-rule failures become Conflict records, never batch failures
    - vTick increases by one for every successfully applied operation

How to change safely:
    - New operation types need an OperationType member and a handler;
      the dispatcher refuses to import with an uncovered member
    - Snapshot wire fields are camelCase and additive only
    - Test conservation of money for anything that moves balances

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
