"""
Closed time intervals within one slotframe, used by the analytic model.

An interval is either ``EMPTY`` or a ``ClosedInterval(start, end)`` with
integer nanosecond bounds and ``0 <= start <= end``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class EmptyInterval:
    """The empty interval."""

    @property
    def is_empty(self) -> bool:
        return True

    @property
    def length(self) -> int:
        return 0

    def is_subset_of(self, other: "TimeInterval") -> bool:
        return False


@dataclass(frozen=True)
class ClosedInterval:
    """The interval ``[start, end]``; a zero-length interval is still non-empty."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"interval start must be non-negative (got {self.start})")
        if self.start > self.end:
            raise ValueError(f"interval start ({self.start}) must not be greater than its end ({self.end})")

    @property
    def is_empty(self) -> bool:
        return False

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def midpoint(self) -> float:
        return self.start + self.length / 2.0

    def is_subset_of(self, other: "TimeInterval") -> bool:
        if other.is_empty:
            return False
        return other.start <= self.start and self.end <= other.end


TimeInterval = Union[EmptyInterval, ClosedInterval]

EMPTY = EmptyInterval()


def intersection(a: TimeInterval, b: TimeInterval) -> TimeInterval:
    if a.is_empty or b.is_empty or a.start > b.end or a.end < b.start:
        return EMPTY
    return ClosedInterval(max(a.start, b.start), min(a.end, b.end))
