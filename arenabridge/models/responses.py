"""Response envelope shared by JSON responses, error handlers and SSE events.

{ success: bool, data: T | None, error: str | None, meta: dict | None }
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """JSON envelope for all API responses."""

    success: bool
    data: T | None = None
    error: str | None = None
    meta: dict | None = None

    @classmethod
    def ok(cls, data: Any = None, meta: dict | None = None) -> dict:
        return cls(success=True, data=data, meta=meta).model_dump()

    @classmethod
    def fail(cls, error: str, *, data: Any = None, meta: dict | None = None) -> dict:
        """Failure envelope. Empty ``meta`` is normalized to ``None``."""
        return cls(success=False, data=data, error=error, meta=meta or None).model_dump()
