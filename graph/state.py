"""
Sanadenta Gateway: Data Model

Typed records that flow through the engine:

    request records   raw caller input (FreeSlotsQuery params,
                      CreateBookingPayload) validated ONCE at the boundary
                      into domain values (SlotQuery, BookingCommand).
    engine values     Interval, EffectiveDuration, AvailabilityDecision.
    results           FreeSlotsResult, BookingResult.
    graph state       BookingState, the dict LangGraph threads through the
                      booking state machine.

Dates are `datetime.date` in the clinic timezone, wall-clock times are
`datetime.time`, instants are timezone-aware `datetime`.
"""

from __future__ import annotations

import math
from datetime import date, datetime, time, timezone
from typing import Any, Literal, TypedDict

from pydantic import BaseModel, ConfigDict, Field, model_validator

from errors import InvalidDuration, ValidationError
from tools.clock import format_time, parse_date, parse_time

DurationSource = Literal["explicit", "service", "default"]
DayRejection = Literal["weekday", "surgeon-day"]
BookingStatus = Literal[
    "received",
    "validated",
    "day_checked",
    "hours_checked",
    "conflict_checked",
    "committed",
    "rejected",
    "conflict",
]


# ---------------------------------------------------------------------------
# Engine values
# ---------------------------------------------------------------------------

class Interval(BaseModel):
    """Half-open [start, end) between two aware instants."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _ordered(self) -> Interval:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("interval bounds must be timezone-aware")
        # Same-zone datetimes compare by wall clock; compare instants instead.
        if self.start.astimezone(timezone.utc) >= self.end.astimezone(timezone.utc):
            raise ValueError("interval start must be before end")
        return self


class EffectiveDuration(BaseModel):
    model_config = ConfigDict(frozen=True)

    minutes: int
    source: DurationSource


class AvailabilityDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: DayRejection | None = None

    @classmethod
    def allow(cls) -> AvailabilityDecision:
        return cls(allowed=True)

    @classmethod
    def not_allowed(cls, reason: DayRejection) -> AvailabilityDecision:
        return cls(allowed=False, reason=reason)


# ---------------------------------------------------------------------------
# Boundary parsing
# ---------------------------------------------------------------------------

def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_explicit_minutes(value: Any) -> float | None:
    """Numeric form of a caller's duration override; None when absent."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise InvalidDuration("durationMinutes must be a number")
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        raise InvalidDuration(f"durationMinutes must be a number, got {value!r}") from None
    if not math.isfinite(minutes):
        raise InvalidDuration("durationMinutes must be finite")
    return minutes


class SlotQuery(BaseModel):
    """Validated input of the free-slots use case."""

    model_config = ConfigDict(frozen=True)

    date: date
    service: str | None = None
    explicit_minutes: float | None = None

    @classmethod
    def from_params(
        cls,
        date: str | None,
        service: str | None = None,
        duration_minutes: Any = None,
    ) -> SlotQuery:
        return cls(
            date=parse_date(date),
            service=_clean(service),
            explicit_minutes=parse_explicit_minutes(duration_minutes),
        )


class CreateBookingPayload(BaseModel):
    """JSON body of POST /create-booking, exactly as the caller sent it."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: Any = None
    phone: Any = None
    date: Any = None
    time: Any = None
    service: Any = None
    duration_minutes: Any = Field(default=None, alias="durationMinutes")

    def to_command(self) -> BookingCommand:
        """Validate into a BookingCommand or raise ValidationError."""
        name, phone = _clean(self.name), _clean(self.phone)
        raw_date, raw_time = _clean(self.date), _clean(self.time)

        missing = [
            field for field, value in (
                ("name", name), ("phone", phone), ("date", raw_date), ("time", raw_time),
            )
            if value is None
        ]
        if missing:
            raise ValidationError("missing-fields", f"Missing fields: {', '.join(missing)}")

        return BookingCommand(
            name=name,
            phone=phone,
            date=parse_date(raw_date),
            time=parse_time(raw_time),
            service=_clean(self.service),
            explicit_minutes=parse_explicit_minutes(self.duration_minutes),
        )


class BookingCommand(BaseModel):
    """Validated input of the create-booking use case."""

    model_config = ConfigDict(frozen=True)

    name: str
    phone: str
    date: date
    time: time
    service: str | None = None
    explicit_minutes: float | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class FreeSlotsResult(BaseModel):
    allowed: bool
    reason: DayRejection | None = None
    date: date
    service: str | None = None
    duration: EffectiveDuration
    step_minutes: int
    work_hours: dict[str, str]
    slots: list[time] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "ok": True,
            "allowed": self.allowed,
            "date": self.date.isoformat(),
            "service": self.service,
            "durationMinutes": self.duration.minutes,
            "durationSource": self.duration.source,
            "stepMinutes": self.step_minutes,
            "workHours": self.work_hours,
            "slots": [format_time(s) for s in self.slots],
        }
        if self.reason is not None:
            body["reason"] = self.reason
        return body


class BookingResult(BaseModel):
    """Terminal outcome of one booking attempt."""

    outcome: Literal["created", "conflict", "rejected"]
    reason: str | None = None
    message: str | None = None
    event_id: str | None = None
    link: str | None = None
    interval: Interval | None = None
    duration: EffectiveDuration | None = None

    @classmethod
    def created(
        cls, event_id: str, interval: Interval, duration: EffectiveDuration, link: str | None = None,
    ) -> BookingResult:
        return cls(outcome="created", event_id=event_id, interval=interval, duration=duration, link=link)

    @classmethod
    def conflict(cls, interval: Interval) -> BookingResult:
        return cls(outcome="conflict", reason="conflict", message="Time slot already booked", interval=interval)

    @classmethod
    def rejected(cls, reason: str, message: str) -> BookingResult:
        return cls(outcome="rejected", reason=reason, message=message)


# ---------------------------------------------------------------------------
# LangGraph state for the booking state machine
# ---------------------------------------------------------------------------

class BookingState(TypedDict, total=False):
    """
    Received -> Validated -> DayChecked -> HoursChecked -> ConflictChecked
    -> Committed, with an early exit to a terminal BookingResult at any gate.
    """

    command: BookingCommand
    status: BookingStatus
    duration: EffectiveDuration
    interval: Interval
    busy: list[Interval]
    result: BookingResult
