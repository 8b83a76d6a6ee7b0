"""Payload field readers that raise INVALID_PAYLOAD conflicts."""

from __future__ import annotations

from typing import Any

from ..errors import ConflictKind, OperationConflict


def require_str(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise OperationConflict(ConflictKind.INVALID_PAYLOAD, f"'{name}' must be a non-empty string")
    return value


def optional_str(data: dict[str, Any], name: str, default: str = "") -> str:
    value = data.get(name)
    if value is None:
        return default
    if not isinstance(value, str):
        raise OperationConflict(ConflictKind.INVALID_PAYLOAD, f"'{name}' must be a string")
    return value


def require_int(data: dict[str, Any], name: str, minimum: int = 0) -> int:
    """Read an integer field.

    Integral floats (e.g. 500.0 from a JS client) are accepted; booleans and
    fractional values are not.
    """
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise OperationConflict(ConflictKind.INVALID_PAYLOAD, f"'{name}' must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise OperationConflict(ConflictKind.INVALID_PAYLOAD, f"'{name}' must be an integer")
        value = int(value)
    if value < minimum:
        raise OperationConflict(ConflictKind.INVALID_PAYLOAD, f"'{name}' must be >= {minimum}")
    return value
