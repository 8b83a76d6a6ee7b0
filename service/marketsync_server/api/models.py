"""
Request/response models for the MarketSync HTTP API.

Response bodies for state, diff and export documents are produced by the
domain to_dict() methods (camelCase wire format) and passed through as-is;
the models here cover request bodies and the small fixed-shape responses.
"""

from typing import Any

from pydantic import BaseModel, Field


class SubmitRequest(BaseModel):
    """Batch of operations to merge."""

    operations: Any = Field(..., description="List of operation objects")


class SubmitResponse(BaseModel):
    """Merge outcome."""

    ok: bool = True
    v: int
    vTick: int
    applied: list[str]
    skipped: list[str]
    conflicts: list[dict[str, Any]]
    diff: dict[str, Any]


class ImportResponse(BaseModel):
    ok: bool = True
    v: int
    vTick: int


class ErrorResponse(BaseModel):
    """Error body for every non-2xx response."""

    error: str
    error_code: str
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
