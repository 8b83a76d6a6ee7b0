"""
Unit tests for marketplace rules.

Tests cover:
- create/toggle/delete listing
- buy_listing fee split, stock and Right creation
"""

import pytest

from service.marketsync_server.config import EngineConfig
from service.marketsync_server.domain import DomainState, RightStatus
from service.marketsync_server.errors import ConflictKind, OperationConflict
from service.marketsync_server.rules import RuleContext, dispatch
from tests.conftest import MERGE_NOW, sequential_ids


@pytest.fixture
def ctx():
    return RuleContext(config=EngineConfig(), now_ms=MERGE_NOW, new_id=sequential_ids())


@pytest.fixture
def state(ctx, make_op):
    state = DomainState.initial()
    for user_id, name in (("alice", "Alice"), ("bob", "Bob"), ("carol", "Carol")):
        dispatch(state, make_op("register_user", user_id, {"name": name}), ctx).apply(state)
    return state


def run(state, op, ctx):
    changes = dispatch(state, op, ctx)
    changes.apply(state)
    return changes


def expect_conflict(kind, state, op, ctx):
    before = state.to_dict()
    with pytest.raises(OperationConflict) as exc_info:
        dispatch(state, op, ctx)
    assert exc_info.value.kind == kind
    assert state.to_dict() == before


def create(state, ctx, make_op, seller="alice", **data):
    payload = {"title": "Sword", "price": 1000, **data}
    changes = run(state, make_op("create_listing", seller, payload), ctx)
    (listing_id,) = changes.listings
    return listing_id


class TestCreateListing:
    """Tests for create_listing."""

    def test_creates_active_listing(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op, qty=3, desc="sharp")

        listing = state.listings[listing_id]
        assert listing.seller_id == "alice"
        assert listing.title == "Sword"
        assert listing.desc == "sharp"
        assert (listing.price, listing.qty, listing.sold, listing.active) == (1000, 3, 0, True)

    def test_qty_defaults_to_one(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op)
        assert state.listings[listing_id].qty == 1

    def test_free_listing_allowed(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op, price=0)
        assert state.listings[listing_id].price == 0

    @pytest.mark.parametrize(
        "payload",
        [
            {"price": 10},
            {"title": "x", "price": -1},
            {"title": "x", "price": 10, "qty": 0},
            {"title": "x", "price": "10"},
        ],
    )
    def test_invalid_payload(self, state, ctx, make_op, payload):
        expect_conflict(ConflictKind.INVALID_PAYLOAD, state, make_op("create_listing", "alice", payload), ctx)

    def test_unknown_seller(self, state, ctx, make_op):
        expect_conflict(
            ConflictKind.UNKNOWN_USER, state, make_op("create_listing", "zed", {"title": "x", "price": 1}), ctx
        )


class TestToggleAndDelete:
    """Tests for toggle_listing and delete_listing."""

    def test_toggle_flips_active(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op)

        run(state, make_op("toggle_listing", "alice", {"listingId": listing_id}), ctx)
        assert state.listings[listing_id].active is False

        run(state, make_op("toggle_listing", "alice", {"listingId": listing_id}), ctx)
        assert state.listings[listing_id].active is True

    def test_toggle_by_other_user_forbidden(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op)
        expect_conflict(ConflictKind.FORBIDDEN, state, make_op("toggle_listing", "bob", {"listingId": listing_id}), ctx)

    def test_sold_out_listing_cannot_be_reactivated(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op)
        run(state, make_op("buy_listing", "bob", {"listingId": listing_id}), ctx)

        expect_conflict(
            ConflictKind.UNAVAILABLE, state, make_op("toggle_listing", "alice", {"listingId": listing_id}), ctx
        )

    def test_delete_unsold_listing(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op)

        changes = run(state, make_op("delete_listing", "alice", {"listingId": listing_id}), ctx)

        assert listing_id not in state.listings
        assert changes.deleted_listing_ids == {listing_id}

    def test_delete_with_sales_rejected(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op, qty=2)
        run(state, make_op("buy_listing", "bob", {"listingId": listing_id}), ctx)

        expect_conflict(
            ConflictKind.INVALID_STATE, state, make_op("delete_listing", "alice", {"listingId": listing_id}), ctx
        )

    def test_delete_missing_listing(self, state, ctx, make_op):
        expect_conflict(ConflictKind.NOT_FOUND, state, make_op("delete_listing", "alice", {"listingId": "nope"}), ctx)


class TestBuyListing:
    """Tests for buy_listing."""

    def test_purchase_splits_price(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op)

        changes = run(state, make_op("buy_listing", "bob", {"listingId": listing_id}), ctx)

        assert state.users["bob"].balance == 9000
        assert state.users["alice"].balance == 10900
        assert state.house.balance == 100

        listing = state.listings[listing_id]
        assert listing.sold == 1
        assert listing.active is False

        (right_id,) = changes.new_right_ids
        right = state.rights[right_id]
        assert (right.buyer_id, right.seller_id, right.price) == ("bob", "alice", 1000)
        assert right.status == RightStatus.OWNED
        assert right.executed is False

        assert [tx.type for tx in state.txs[:2]] == ["fee", "purchase"]
        assert state.notifications[-1].to == "alice"

    def test_fee_rounds_down(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op, price=15)

        run(state, make_op("buy_listing", "bob", {"listingId": listing_id}), ctx)

        assert state.users["alice"].balance == 10014
        assert state.house.balance == 1

    def test_multi_quantity_stays_active_until_sold_out(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op, qty=2)

        run(state, make_op("buy_listing", "bob", {"listingId": listing_id}), ctx)
        assert state.listings[listing_id].active is True

        run(state, make_op("buy_listing", "carol", {"listingId": listing_id}), ctx)
        assert state.listings[listing_id].active is False
        assert state.listings[listing_id].sold == 2

    def test_sold_out(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op)
        run(state, make_op("buy_listing", "bob", {"listingId": listing_id}), ctx)

        expect_conflict(ConflictKind.UNAVAILABLE, state, make_op("buy_listing", "carol", {"listingId": listing_id}), ctx)

    def test_inactive_listing(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op)
        run(state, make_op("toggle_listing", "alice", {"listingId": listing_id}), ctx)

        expect_conflict(ConflictKind.UNAVAILABLE, state, make_op("buy_listing", "bob", {"listingId": listing_id}), ctx)

    def test_own_listing(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op)
        expect_conflict(ConflictKind.FORBIDDEN, state, make_op("buy_listing", "alice", {"listingId": listing_id}), ctx)

    def test_buyer_cannot_afford(self, state, ctx, make_op):
        listing_id = create(state, ctx, make_op, price=20000)
        expect_conflict(
            ConflictKind.INSUFFICIENT_FUNDS, state, make_op("buy_listing", "bob", {"listingId": listing_id}), ctx
        )

    def test_missing_listing(self, state, ctx, make_op):
        expect_conflict(ConflictKind.NOT_FOUND, state, make_op("buy_listing", "bob", {"listingId": "nope"}), ctx)
