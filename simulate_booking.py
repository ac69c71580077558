#!/usr/bin/env python3
"""
Sanadenta Gateway: Booking Simulator

Runs scripted list/book sequences against the orchestrator directly (no
HTTP server, no Google credentials) using the in-memory calendar.
Demonstrates:

    1. Listing free slots on a regular clinic day
    2. Booking one of them, then seeing it disappear from the list
    3. A second caller trying the same slot (409-equivalent conflict)
    4. Surgeon-day and weekday exclusions
    5. A long visit that overlaps pre-existing busy time

Usage:
    python simulate_booking.py            # default scenario
    python simulate_booking.py --busy     # pre-seeded busy calendar
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, time, timezone
from typing import Any

from config import ClinicCalendarConfig
from errors import ValidationError
from graph.state import CreateBookingPayload, SlotQuery
from graph.workflow import BookingOrchestrator
from tools.calendar import InMemoryCalendarProvider
from tools.clock import parse_date, to_instant

# Frozen "now" so the scripted February 2026 dates stay in the future.
SIMULATION_NOW = datetime(2026, 2, 1, 6, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def banner(title: str):
    print(f"\n{'='*60}")
    print(f"  {title}")
    print(f"{'='*60}")


def _slots_line(body: dict[str, Any]) -> str:
    if not body["allowed"]:
        return f"not bookable ({body['reason']})"
    slots = body["slots"]
    if not slots:
        return "no free slots"
    if len(slots) > 6:
        return f"{len(slots)} free: {', '.join(slots[:3])} ... {', '.join(slots[-2:])}"
    return f"{len(slots)} free: {', '.join(slots)}"


async def step(orchestrator: BookingOrchestrator, action: str, params: dict[str, Any]) -> str:
    """Run one list/book action and return a one-line outcome."""
    try:
        if action == "list":
            query = SlotQuery.from_params(params.get("date"), params.get("service"), params.get("durationMinutes"))
            result = await orchestrator.list_free_slots(query)
            return _slots_line(result.to_response())

        command = CreateBookingPayload(**params).to_command()
        result = await orchestrator.create_booking(command)
    except ValidationError as exc:
        return f"validation error ({exc.reason}): {exc.message}"

    if result.outcome == "created":
        end = result.interval.end.astimezone(orchestrator.config.zone)
        return f"created {result.event_id}, reserved until {end:%H:%M}"
    return f"{result.outcome} ({result.reason}): {result.message}"


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

PATIENT = {"name": "Ona Petraitienė", "phone": "+37060000000"}

SCENARIO_DEFAULT: list[tuple[str, str, dict[str, Any]]] = [
    ("1. List consultations (Thu)", "list", {"date": "2026-02-26", "service": "Konsultacija"}),
    ("2. Book 10:00 consultation", "book", {**PATIENT, "date": "2026-02-26", "time": "10:00", "service": "Konsultacija"}),
    ("3. List again", "list", {"date": "2026-02-26", "service": "Konsultacija"}),
    ("4. Second caller, same slot", "book", {"name": "Jonas", "phone": "+37061111111", "date": "2026-02-26", "time": "10:00"}),
    ("5. Adjacent slot 10:15", "book", {"name": "Jonas", "phone": "+37061111111", "date": "2026-02-26", "time": "10:15", "service": "Konsultacija"}),
    ("6. Surgeon day (last Mon)", "list", {"date": "2026-02-23"}),
    ("7. Tuesday", "book", {**PATIENT, "date": "2026-02-24", "time": "09:00"}),
    ("8. Missing phone", "book", {"name": "Jonas", "date": "2026-02-26", "time": "11:00"}),
]

SCENARIO_BUSY: list[tuple[str, str, dict[str, Any]]] = [
    ("1. Hour-long visits (Thu)", "list", {"date": "2026-02-26", "service": "Vizitas"}),
    ("2. Book into busy time", "book", {**PATIENT, "date": "2026-02-26", "time": "09:30", "service": "Vizitas"}),
    ("3. Book right after it", "book", {**PATIENT, "date": "2026-02-26", "time": "10:30", "service": "Vizitas"}),
    ("4. Too late in the day", "book", {**PATIENT, "date": "2026-02-26", "time": "16:30", "service": "Vizitas"}),
]


def make_orchestrator(busy: bool = False) -> BookingOrchestrator:
    config = ClinicCalendarConfig()
    provider = InMemoryCalendarProvider()
    if busy:
        day = parse_date("2026-02-26")
        provider.add_busy(
            to_instant(day, time(10, 0), config.timezone),
            to_instant(day, time(10, 30), config.timezone),
        )
    return BookingOrchestrator(config, provider, clock=lambda: SIMULATION_NOW)


async def run_scenario(name: str, scenario: list, busy: bool = False) -> list[str]:
    banner(f"SANADENTA BOOKING: {name}")
    orchestrator = make_orchestrator(busy)
    outcomes = []

    for label, action, params in scenario:
        print(f"\n--- {label} ---")
        outcome = await step(orchestrator, action, params)
        print(f"  {action.upper():5}: {outcome}")
        outcomes.append(outcome)

    print("\n" + "=" * 60)
    print("  CALENDAR EVENTS")
    print("=" * 60)
    for event in orchestrator.provider.events:
        print(f"  {event.event_id}  {event.interval.start:%Y-%m-%d %H:%M}  {event.summary}")
    print()
    return outcomes


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    if "--busy" in sys.argv:
        asyncio.run(run_scenario("Pre-seeded busy calendar", SCENARIO_BUSY, busy=True))
    else:
        asyncio.run(run_scenario("Default day", SCENARIO_DEFAULT))
