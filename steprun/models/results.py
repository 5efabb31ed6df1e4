"""Result envelopes returned across the orchestrator boundary."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class ApiError(BaseModel):
    code: str
    message: str


class ApiResult(BaseModel):
    ok: bool
    data: Any = None
    error: Optional[ApiError] = None

    @classmethod
    def success(cls, data: Any = None) -> "ApiResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, code: str, message: str) -> "ApiResult":
        return cls(ok=False, error=ApiError(code=code, message=message))


class CancelOutcome(BaseModel):
    """``accepted`` is False for the no-op case (nothing running under that id)."""
    run_id: str
    accepted: bool
    message: str
