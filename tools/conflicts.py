"""
Sanadenta Gateway: Conflict Resolver

Half-open interval overlap.  [a, b) and [b, c) touch but do not collide,
so an appointment may start exactly when the previous one ends.

Bounds are compared as UTC instants.  Two datetimes sharing one ZoneInfo
compare by wall clock and ignore `fold`, which is wrong inside the
autumn fall-back hour.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Protocol, TypeVar


class Span(Protocol):
    @property
    def start(self) -> datetime: ...

    @property
    def end(self) -> datetime: ...


S = TypeVar("S", bound=Span)


def _utc(instant: datetime) -> datetime:
    return instant.astimezone(timezone.utc)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return _utc(a_start) < _utc(b_end) and _utc(a_end) > _utc(b_start)


def has_conflict(candidate: Span, busy: Iterable[Span]) -> bool:
    """True iff any busy interval overlaps `candidate`."""
    return any(overlaps(candidate.start, candidate.end, b.start, b.end) for b in busy)


def conflicting(candidate: Span, busy: Iterable[S]) -> list[S]:
    """The busy intervals that collide with `candidate`, in input order."""
    return [b for b in busy if overlaps(candidate.start, candidate.end, b.start, b.end)]
