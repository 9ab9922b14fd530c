from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Dict, Any


T = TypeVar("T")


@dataclass(frozen=True)
class AppError:
    """Structured error information safe for UI and logs.

    `code` is a member of the error taxonomy in `core.errors`.
    `details` holds the (redacted) tool output the code was derived from.
    `meta` can hold non-sensitive context (process id, exit code, etc.).
    """

    code: Any
    message: str
    details: str = ""
    meta: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[AppError] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value, error=None)

    @staticmethod
    def failure(
        code: Any,
        message: str,
        details: str = "",
        meta: Optional[Dict[str, Any]] = None,
        value: Optional[T] = None,
    ) -> "Result[T]":
        return Result(
            ok=False,
            value=value,
            error=AppError(code=code, message=message, details=details, meta=meta),
        )

    @property
    def code(self) -> Any:
        """Taxonomy member of this result (SUCCESS when ok)."""
        if self.ok:
            from .errors import StatusError

            return StatusError.SUCCESS
        return self.error.code

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok and self.value is not None else default
