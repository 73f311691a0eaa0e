from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from ..errors import SyncError

T = TypeVar("T")


@dataclass(frozen=True)
class PhaseResult(Generic[T]):
    """Outcome of a sync phase: a value, a wrapped error, or a cancellation."""

    value: T | None = None
    error: SyncError | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled

    @classmethod
    def success(cls, value: T | None = None) -> "PhaseResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: SyncError) -> "PhaseResult[T]":
        return cls(error=error)

    @classmethod
    def stopped(cls) -> "PhaseResult[T]":
        return cls(cancelled=True)

    @property
    def message(self) -> str | None:
        return self.error.message if self.error is not None else None
