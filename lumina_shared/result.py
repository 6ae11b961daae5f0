"""
Result pattern for error handling without exceptions.
All service methods return Result[T] so storage exceptions never reach callers.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from .types import ErrorCode

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """
    Result pattern for safe error handling.

    Usage:
        async def get_file(path: str) -> Result[dict]:
            row = await lookup(path)
            if row is None:
                return Result.Err(ErrorCode.NOT_FOUND, f"File not catalogued: {path}")
            return Result.Ok(row)
    """
    ok: bool
    data: Optional[T] = None
    error: Optional[str] = None
    code: str = "OK"  # OK, NOT_FOUND, DB_ERROR, READ_ONLY, CONFLICT, etc.
    meta: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def Ok(data: T, **meta: Any) -> "Result[T]":
        """Create a successful result with data and optional metadata."""
        return Result(ok=True, data=data, code="OK", meta=meta)

    @staticmethod
    def Err(code: ErrorCode | str | Enum, error: str, **meta: Any) -> "Result[T]":
        """Create an error result with code, message, and optional metadata."""
        code_value = code.value if isinstance(code, Enum) else code
        return Result(ok=False, error=error, code=str(code_value), meta=meta)


