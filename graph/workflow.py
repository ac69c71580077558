"""
Sanadenta Gateway: Booking Orchestrator

Two use cases over the pure rules in tools/ and the remote calendar:

    list_free_slots   day gate -> slot grid -> busy query -> filter
    create_booking    the booking state machine below, compiled as a
                      LangGraph StateGraph

Booking state machine:

    ┌──────────────────┐
    │ resolve_duration │  Received -> Validated (InvalidDuration raises)
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │    check_day     │──► END  rejected: weekday / surgeon-day
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │   check_hours    │──► END  rejected: outside hours / start in past
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │  check_conflict  │──► END  conflict (fresh busy query)
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │      commit      │──► END  created (provider insert)
    └──────────────────┘

Writes to one calendar are serialized in-process by a per-calendar
asyncio.Lock held from the fresh busy query through the insert.  Other
processes writing to the same calendar can still race; the provider
offers no conditional insert.

ProviderError propagates out of both use cases unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from langgraph.graph import END, StateGraph

from config import ClinicCalendarConfig
from errors import ValidationError
from graph.state import (
    BookingCommand,
    BookingResult,
    BookingState,
    FreeSlotsResult,
    Interval,
    SlotQuery,
)
from tools.calendar import CalendarProvider
from tools.clock import add_minutes, day_bounds, format_time, to_instant
from tools.conflicts import conflicting, has_conflict
from tools.rules import check_day_availability, resolve_duration, validate_within_working_hours
from tools.slots import generate_slots

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DAY_REJECTION_MESSAGES: dict[str, str] = {
    "weekday": "Clinic does not take bookings on this weekday",
    "surgeon-day": "Last Monday of the month is reserved for the surgeon",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def event_summary(service: str, name: str) -> str:
    return f"Sanadenta - {service} - {name}"


def event_description(name: str, phone: str, service: str, minutes: int) -> str:
    return (
        f"Pacientas: {name}\n"
        f"Telefonas: {phone}\n"
        f"Paslauga: {service}\n"
        f"Trukmė: {minutes} min"
    )


# ===================================================================
# BOOKING GRAPH
#
# Nodes receive the state dict and return a partial update.  A node that
# ends the attempt writes `result`; the router then sends it to END.
# ===================================================================

def _route_after_gate(state: dict) -> str:
    return "stop" if state.get("result") is not None else "continue"


def build_booking_graph(
    config: ClinicCalendarConfig,
    provider: CalendarProvider,
    now: Clock = utc_now,
) -> StateGraph:
    """Construct the booking StateGraph (uncompiled)."""

    async def resolve(state: dict) -> dict:
        command: BookingCommand = state["command"]
        duration = resolve_duration(command.service, command.explicit_minutes, config)
        return {"duration": duration, "status": "validated"}

    async def check_day(state: dict) -> dict:
        command: BookingCommand = state["command"]
        decision = check_day_availability(command.date, config)
        if not decision.allowed:
            logger.info("Booking rejected: %s is a %s exclusion", command.date, decision.reason)
            return {
                "status": "rejected",
                "result": BookingResult.rejected(decision.reason, DAY_REJECTION_MESSAGES[decision.reason]),
            }
        return {"status": "day_checked"}

    async def check_hours(state: dict) -> dict:
        command: BookingCommand = state["command"]
        minutes = state["duration"].minutes

        if not validate_within_working_hours(command.time, minutes, config):
            hours = config.work_hours
            return {
                "status": "rejected",
                "result": BookingResult.rejected(
                    "outside-working-hours",
                    f"{format_time(command.time)} + {minutes} min is outside "
                    f"{hours['start']}-{hours['end']}",
                ),
            }

        start = to_instant(command.date, command.time, config.timezone)
        interval = Interval(start=start, end=add_minutes(start, minutes))

        if config.require_future_start and interval.start <= now():
            return {
                "status": "rejected",
                "interval": interval,
                "result": BookingResult.rejected("start-in-past", "Requested start time has already passed"),
            }
        return {"status": "hours_checked", "interval": interval}

    async def check_conflict(state: dict) -> dict:
        interval: Interval = state["interval"]
        busy = await provider.query_busy(
            config.calendar_id, interval.start, interval.end, config.timezone,
        )
        if has_conflict(interval, busy):
            clashes = conflicting(interval, busy)
            logger.info(
                "Booking conflict at %s: %d busy interval(s) overlap",
                interval.start.isoformat(), len(clashes),
            )
            return {"status": "conflict", "busy": busy, "result": BookingResult.conflict(interval)}
        return {"status": "conflict_checked", "busy": busy}

    async def commit(state: dict) -> dict:
        command: BookingCommand = state["command"]
        interval: Interval = state["interval"]
        duration = state["duration"]
        service = command.service or config.default_service

        event = await provider.insert_event(
            config.calendar_id,
            event_summary(service, command.name),
            event_description(command.name, command.phone, service, duration.minutes),
            interval.start,
            interval.end,
            config.timezone,
        )
        logger.info("Booking created: event_id=%s start=%s", event.event_id, interval.start.isoformat())
        return {
            "status": "committed",
            "result": BookingResult.created(event.event_id, interval, duration, link=event.link),
        }

    builder = StateGraph(BookingState)

    builder.add_node("resolve_duration", resolve)
    builder.add_node("check_day", check_day)
    builder.add_node("check_hours", check_hours)
    builder.add_node("check_conflict", check_conflict)
    builder.add_node("commit", commit)

    builder.set_entry_point("resolve_duration")
    builder.add_edge("resolve_duration", "check_day")
    builder.add_conditional_edges(
        "check_day", _route_after_gate, {"continue": "check_hours", "stop": END},
    )
    builder.add_conditional_edges(
        "check_hours", _route_after_gate, {"continue": "check_conflict", "stop": END},
    )
    builder.add_conditional_edges(
        "check_conflict", _route_after_gate, {"continue": "commit", "stop": END},
    )
    builder.add_edge("commit", END)

    return builder


def compile_booking_graph(
    config: ClinicCalendarConfig,
    provider: CalendarProvider,
    now: Clock = utc_now,
):
    """Build and compile the booking graph.  No checkpointer: attempts are single-pass."""
    return build_booking_graph(config, provider, now).compile()


# ===================================================================
# ORCHESTRATOR
# ===================================================================

class BookingOrchestrator:
    """Entry point for both use cases.  Holds no per-request state."""

    def __init__(
        self,
        config: ClinicCalendarConfig,
        provider: CalendarProvider,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config
        self.provider = provider
        self._now = clock
        self._booking_graph = compile_booking_graph(config, provider, clock)
        self._write_locks: dict[str, asyncio.Lock] = {}

    def _write_lock(self, calendar_id: str) -> asyncio.Lock:
        return self._write_locks.setdefault(calendar_id, asyncio.Lock())

    async def list_free_slots(self, query: SlotQuery) -> FreeSlotsResult:
        config = self.config
        duration = resolve_duration(query.service, query.explicit_minutes, config)
        common: dict[str, Any] = {
            "date": query.date,
            "service": query.service,
            "duration": duration,
            "step_minutes": config.step_minutes,
            "work_hours": config.work_hours,
        }

        decision = check_day_availability(query.date, config)
        if not decision.allowed:
            logger.info("Free slots: %s not bookable (%s)", query.date, decision.reason)
            return FreeSlotsResult(allowed=False, reason=decision.reason, **common)

        candidates = generate_slots(config.work_start, config.work_end, config.step_minutes, duration.minutes)
        if not candidates:
            return FreeSlotsResult(allowed=True, slots=[], **common)

        day_start, day_end = day_bounds(query.date, config.timezone)
        busy = await self.provider.query_busy(config.calendar_id, day_start, day_end, config.timezone)
        now = self._now()

        free = []
        for slot in candidates:
            try:
                start = to_instant(query.date, slot, config.timezone)
            except ValidationError:
                # Wall-clock time swallowed by a DST gap.
                continue
            candidate = Interval(start=start, end=add_minutes(start, duration.minutes))
            if config.require_future_start and candidate.start <= now:
                continue
            if not has_conflict(candidate, busy):
                free.append(slot)

        logger.info(
            "Free slots: %s duration=%d (%s) busy=%d free=%d/%d",
            query.date, duration.minutes, duration.source, len(busy), len(free), len(candidates),
        )
        return FreeSlotsResult(allowed=True, slots=free, **common)

    async def create_booking(self, command: BookingCommand) -> BookingResult:
        async with self._write_lock(self.config.calendar_id):
            final = await self._booking_graph.ainvoke({"command": command, "status": "received"})
        return final["result"]
