"""Simple result helpers shared across layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar


T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Result(Generic[T, E]):
    """Outcome of a lookup: a found value, an expected absence, or a failure.

    Absence is not an error; callers check :meth:`is_missing` instead of
    catching anything.
    """

    value: Optional[T] = None
    error: Optional[E] = None
    found: bool = True

    @classmethod
    def ok(cls, value: T) -> "Result[T, E]":
        return cls(value=value)

    @classmethod
    def missing(cls) -> "Result[T, E]":
        return cls(found=False)

    @classmethod
    def err(cls, error: E) -> "Result[T, E]":
        return cls(error=error, found=False)

    def is_ok(self) -> bool:
        return self.found and self.error is None

    def is_missing(self) -> bool:
        return not self.found and self.error is None

    def is_err(self) -> bool:
        return self.error is not None

    def unwrap(self) -> T:
        if self.error is not None:
            raise RuntimeError(f"Tried to unwrap error result: {self.error}")
        if not self.found:
            raise LookupError("Tried to unwrap a missing result")
        return self.value  # type: ignore[return-value]


__all__ = ["Result"]
