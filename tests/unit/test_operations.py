"""
Unit tests for operation parsing and batch validation.

Tests cover:
- Operation.from_dict field checks
- parse_operations batch-level rejection
- silent metadata
"""

import pytest

from service.marketsync_server.domain import Operation, OperationType, parse_operations
from service.marketsync_server.errors import InvalidBatchError


def wire_op(**overrides):
    op = {
        "id": "op-1",
        "type": "transfer",
        "data": {"toId": "bob", "amount": 500},
        "timestamp": 1_700_000_000_000,
        "userId": "alice",
    }
    op.update(overrides)
    return op


class TestOperationFromDict:
    """Tests for single operation parsing."""

    def test_parses_wire_form(self):
        op = Operation.from_dict(wire_op(meta={"silent": True}))

        assert op.id == "op-1"
        assert op.type == OperationType.TRANSFER
        assert op.user_id == "alice"
        assert op.data == {"toId": "bob", "amount": 500}
        assert op.silent is True

    def test_missing_data_and_meta_default_to_empty(self):
        raw = wire_op()
        del raw["data"]

        op = Operation.from_dict(raw)

        assert op.data == {}
        assert op.meta == {}
        assert op.silent is False

    def test_float_timestamp_is_truncated(self):
        op = Operation.from_dict(wire_op(timestamp=1_700_000_000_000.7))
        assert op.timestamp == 1_700_000_000_000

    @pytest.mark.parametrize("field_name", ["id", "type", "timestamp", "userId"])
    def test_missing_required_field(self, field_name):
        raw = wire_op()
        del raw[field_name]

        with pytest.raises(ValueError, match="Missing required fields"):
            Operation.from_dict(raw)

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError, match="'id'"):
            Operation.from_dict(wire_op(id=""))

    @pytest.mark.parametrize(
        "timestamp", ["1700000000000", True, None, float("inf"), float("-inf"), float("nan")]
    )
    def test_bad_timestamp_rejected(self, timestamp):
        with pytest.raises(ValueError, match="timestamp"):
            Operation.from_dict(wire_op(timestamp=timestamp))

    def test_non_object_data_rejected(self):
        with pytest.raises(ValueError, match="'data'"):
            Operation.from_dict(wire_op(data=[1, 2]))

    def test_unknown_type_passes_validation(self):
        """Unknown types are a merge-time conflict, not a batch error."""
        op = Operation.from_dict(wire_op(type="teleport"))
        assert op.type == "teleport"

    def test_to_dict_uses_wire_names(self):
        op = Operation.from_dict(wire_op())
        assert op.to_dict()["userId"] == "alice"


class TestParseOperations:
    """Tests for batch validation."""

    def test_valid_batch_keeps_submission_order(self):
        ops = parse_operations([wire_op(id="b", timestamp=2), wire_op(id="a", timestamp=1)])
        assert [op.id for op in ops] == ["b", "a"]

    def test_empty_batch(self):
        assert parse_operations([]) == []

    @pytest.mark.parametrize("raw", [None, "ops", {"id": "x"}, 42])
    def test_non_list_rejected(self, raw):
        with pytest.raises(InvalidBatchError) as exc_info:
            parse_operations(raw)
        assert exc_info.value.code == "INVALID_BATCH"

    def test_one_bad_entry_rejects_whole_batch(self):
        with pytest.raises(InvalidBatchError) as exc_info:
            parse_operations([wire_op(), wire_op(id="op-2", userId=7)])

        assert exc_info.value.index == 1
        assert "operations[1]" in exc_info.value.message

    def test_non_object_entry(self):
        with pytest.raises(InvalidBatchError, match="operations\\[0\\]"):
            parse_operations(["transfer"])

    def test_infinite_timestamp_rejects_batch(self):
        with pytest.raises(InvalidBatchError) as exc_info:
            parse_operations([wire_op(), wire_op(id="op-2", timestamp=float("inf"))])

        assert exc_info.value.index == 1
        assert "finite" in exc_info.value.message
