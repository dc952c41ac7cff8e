"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Structured error body returned for every ledger failure."""

    reason: str = Field(..., description="Machine-readable error kind, e.g. ClaimLimitExceeded")
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    retry_after: int | None = Field(
        default=None, description="Seconds until the request may succeed, when known"
    )
