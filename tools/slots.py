"""
Sanadenta Gateway: Slot Grid

Candidate appointment start times for one work-day.  A slot is bookable
on the grid when it starts at or after `work_start` and the whole
appointment fits before `work_end`.
"""

from __future__ import annotations

from datetime import time

from tools.clock import minutes_of_day, time_from_minutes


def generate_slots(
    work_start: time,
    work_end: time,
    step_minutes: int,
    duration_minutes: int,
) -> list[time]:
    """
    Ascending start times from `work_start` to `work_end - duration`
    inclusive, every `step_minutes`.

    An empty list is a valid answer: the duration does not fit the window.
    """
    if step_minutes <= 0:
        raise ValueError(f"step_minutes must be positive, got {step_minutes}")
    if duration_minutes <= 0:
        raise ValueError(f"duration_minutes must be positive, got {duration_minutes}")

    start = minutes_of_day(work_start)
    latest_start = minutes_of_day(work_end) - duration_minutes

    return [time_from_minutes(t) for t in range(start, latest_start + 1, step_minutes)]
