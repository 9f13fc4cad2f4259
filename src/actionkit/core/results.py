from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


Row = Dict[str, Any]


class ValidateResult(BaseModel):
    valid: bool = True


class ConnectionResult(BaseModel):
    success: bool = True


class MetaInfoResult(BaseModel):
    success: bool = True
    schema_: Optional[Dict[str, Any]] = Field(default=None, alias="schema")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def meta(self) -> Optional[Dict[str, Any]]:
        return self.schema_


class RuntimeResult(BaseModel):
    """Outcome of a single connector run.

    ``rows`` is an ordered list of mappings; ``extra`` carries connector
    specific metadata (affected rows, raw bodies, response headers).
    """

    success: bool = True
    rows: List[Row] = Field(default_factory=list)
    extra: Dict[str, Any] = Field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "rows": list(self.rows), "extra": dict(self.extra)}


def ok(rows: Optional[List[Row]] = None, **extra: Any) -> RuntimeResult:
    return RuntimeResult(success=True, rows=list(rows or []), extra=extra)


def failed() -> RuntimeResult:
    return RuntimeResult(success=False)


__all__ = [
    "Row",
    "ValidateResult",
    "ConnectionResult",
    "MetaInfoResult",
    "RuntimeResult",
    "ok",
    "failed",
]
