"""Typed results for calls into external collaborators.

Every market-data, safety and chain lookup returns a ``FeedResult`` instead of a
bare value or ``None``. Callers branch on ``status`` so fallback policy stays an
explicit decision at the call site.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")

OK = "ok"
UNAVAILABLE = "unavailable"
MALFORMED = "malformed"


@dataclass(frozen=True)
class FeedResult(Generic[T]):
    status: str
    value: T | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status == OK

    @classmethod
    def success(cls, value: T) -> "FeedResult[T]":
        return cls(status=OK, value=value)

    @classmethod
    def unavailable(cls, detail: str) -> "FeedResult[T]":
        return cls(status=UNAVAILABLE, detail=str(detail or "unavailable"))

    @classmethod
    def malformed(cls, detail: str) -> "FeedResult[T]":
        return cls(status=MALFORMED, detail=str(detail or "malformed"))

    def describe(self) -> str:
        if self.ok:
            return OK
        return f"{self.status}:{self.detail}"
