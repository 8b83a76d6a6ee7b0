"""
Shared fixtures for the MarketSync test suite.

Operations are built with increasing client timestamps so that batch order
and merge order agree unless a test says otherwise. Engines use sequential
entity ids and a seeded random source so merges are reproducible.
"""

import itertools
import random

import pytest

from service.marketsync_server.domain import Operation, Snapshot
from service.marketsync_server.merge import MergeEngine

BASE_TS = 1_700_000_000_000
MERGE_NOW = BASE_TS + 10_000_000


class OpFactory:
    """Builds Operation objects with unique ids and rising timestamps."""

    def __init__(self, start: int = BASE_TS) -> None:
        self._ids = itertools.count(1)
        self._ts = itertools.count(start, 1000)

    def __call__(self, op_type, user_id, data=None, *, op_id=None, timestamp=None, silent=False):
        return Operation(
            id=op_id or f"op-{next(self._ids)}",
            type=op_type,
            timestamp=timestamp if timestamp is not None else next(self._ts),
            user_id=user_id,
            data=dict(data or {}),
            meta={"silent": True} if silent else {},
        )


class FixedRandom(random.Random):
    """Random source that returns queued values from random()."""

    def __init__(self, *values: float) -> None:
        super().__init__(0)
        self.values = list(values)

    def random(self) -> float:
        return self.values.pop(0)


def sequential_ids():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def make_op():
    """Operation factory."""
    return OpFactory()


@pytest.fixture
def engine():
    """Engine with deterministic ids and draws."""
    return MergeEngine(rng=random.Random(42), id_factory=sequential_ids())


@pytest.fixture
def players(engine, make_op):
    """Snapshot with alice and bob registered (10000 each)."""
    result = engine.merge(
        Snapshot.empty(),
        [
            make_op("register_user", "alice", {"name": "Alice", "passHash": "h1"}),
            make_op("register_user", "bob", {"name": "Bob", "passHash": "h2"}),
        ],
        now=MERGE_NOW,
    )
    assert result.diff.conflicts == []
    return result.snapshot
