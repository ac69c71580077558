"""
Sanadenta Gateway: Availability Rules

Clinic business rules:
    - which days can be booked (allowed weekday and not the surgeon day),
    - how long an appointment lasts (explicit > service > default),
    - whether a start time keeps the visit inside working hours.
"""

from __future__ import annotations

import logging
from datetime import date, time

from config import ClinicCalendarConfig
from errors import InvalidDuration
from graph.state import AvailabilityDecision, EffectiveDuration
from tools.clock import is_allowed_weekday, is_surgeon_day, minutes_of_day

logger = logging.getLogger(__name__)


def resolve_duration(
    service: str | None,
    explicit_minutes: float | None,
    config: ClinicCalendarConfig,
) -> EffectiveDuration:
    """
    Effective appointment length in minutes, tagged with the branch that
    produced it.  Raises InvalidDuration for an unusable override.
    """
    if explicit_minutes is not None:
        if explicit_minutes <= 0 or explicit_minutes != int(explicit_minutes):
            raise InvalidDuration(
                f"durationMinutes must be a positive whole number, got {explicit_minutes:g}"
            )
        minutes = int(explicit_minutes)
        if minutes > config.max_duration_minutes:
            raise InvalidDuration(
                f"durationMinutes may not exceed {config.max_duration_minutes}"
            )
        if config.allowed_durations is not None and minutes not in config.allowed_durations:
            allowed = ", ".join(str(m) for m in sorted(config.allowed_durations))
            raise InvalidDuration(f"durationMinutes must be one of: {allowed}")
        duration = EffectiveDuration(minutes=minutes, source="explicit")
    elif service and service in config.service_durations:
        duration = EffectiveDuration(minutes=config.service_durations[service], source="service")
    else:
        duration = EffectiveDuration(minutes=config.default_duration_minutes, source="default")

    logger.debug(
        "Duration resolved: %s min (source=%s, service=%s)",
        duration.minutes, duration.source, service,
    )
    return duration


def check_day_availability(day: date, config: ClinicCalendarConfig) -> AvailabilityDecision:
    if not is_allowed_weekday(day, config.allowed_weekdays):
        return AvailabilityDecision.not_allowed("weekday")
    if is_surgeon_day(day):
        return AvailabilityDecision.not_allowed("surgeon-day")
    return AvailabilityDecision.allow()


def validate_within_working_hours(
    start: time,
    duration_minutes: int,
    config: ClinicCalendarConfig,
) -> bool:
    begin = minutes_of_day(start)
    return (
        begin >= minutes_of_day(config.work_start)
        and begin + duration_minutes <= minutes_of_day(config.work_end)
    )
