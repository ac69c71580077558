"""Tests for tools/rules.py"""

from datetime import date, time

import pytest

from config import ClinicCalendarConfig
from errors import InvalidDuration
from tools.rules import check_day_availability, resolve_duration, validate_within_working_hours


class TestResolveDuration:

    def test_explicit_wins_over_service(self, config):
        duration = resolve_duration("Konsultacija", 45, config)
        assert (duration.minutes, duration.source) == (45, "explicit")

    def test_known_service(self, config):
        assert resolve_duration("Konsultacija", None, config).minutes == 15
        assert resolve_duration("Trumpas vizitas", None, config).minutes == 30
        assert resolve_duration("Vizitas", None, config).source == "service"

    def test_missing_or_unknown_service_uses_default(self, config):
        for service in (None, "", "Plombavimas"):
            duration = resolve_duration(service, None, config)
            assert (duration.minutes, duration.source) == (60, "default")

    def test_service_names_are_case_sensitive(self, config):
        assert resolve_duration("konsultacija", None, config).source == "default"

    def test_whole_float_is_accepted(self, config):
        assert resolve_duration(None, 30.0, config).minutes == 30

    @pytest.mark.parametrize("minutes", [0, -15, 30.5, 241, 10_000])
    def test_unusable_explicit_values(self, config, minutes):
        with pytest.raises(InvalidDuration) as exc:
            resolve_duration(None, minutes, config)
        assert exc.value.reason == "invalid-duration"

    def test_maximum_is_inclusive(self, config):
        assert resolve_duration(None, 240, config).minutes == 240

    def test_allowed_set_restricts_explicit_values(self):
        config = ClinicCalendarConfig(allowed_durations=frozenset({15, 30, 60}))
        assert resolve_duration(None, 30, config).minutes == 30
        with pytest.raises(InvalidDuration):
            resolve_duration(None, 45, config)

    def test_allowed_set_does_not_touch_service_durations(self):
        config = ClinicCalendarConfig(allowed_durations=frozenset({30}))
        assert resolve_duration("Konsultacija", None, config).minutes == 15


class TestDayAvailability:

    def test_regular_clinic_days(self, config):
        for day in (date(2026, 2, 2), date(2026, 2, 26), date(2026, 2, 27)):
            assert check_day_availability(day, config).allowed

    def test_excluded_weekdays(self, config):
        for day in (date(2026, 2, 24), date(2026, 2, 25), date(2026, 2, 28), date(2026, 3, 1)):
            decision = check_day_availability(day, config)
            assert (decision.allowed, decision.reason) == (False, "weekday")

    def test_surgeon_day(self, config):
        decision = check_day_availability(date(2026, 2, 23), config)
        assert (decision.allowed, decision.reason) == (False, "surgeon-day")

    def test_weekday_rule_is_checked_first(self):
        config = ClinicCalendarConfig(allowed_weekdays=frozenset({4, 5}))
        assert check_day_availability(date(2026, 2, 23), config).reason == "weekday"

    def test_custom_weekdays(self):
        config = ClinicCalendarConfig(allowed_weekdays=frozenset({2}))
        assert check_day_availability(date(2026, 2, 24), config).allowed
        assert not check_day_availability(date(2026, 2, 26), config).allowed


class TestWorkingHours:

    @pytest.mark.parametrize("start, minutes, inside", [
        (time(8, 0), 60, True),
        (time(16, 0), 60, True),
        (time(16, 45), 15, True),
        (time(7, 45), 15, False),
        (time(16, 15), 60, False),
        (time(17, 0), 15, False),
    ])
    def test_window(self, config, start, minutes, inside):
        assert validate_within_working_hours(start, minutes, config) is inside
