"""
Shared pytest fixtures.

The clock is frozen at 2026-02-01 so every February 2026 date used by the
tests is in the future.
"""

from datetime import date, datetime, time, timezone

import pytest
from fastapi.testclient import TestClient

from config import ClinicCalendarConfig, Settings
from errors import ProviderError
from graph.workflow import BookingOrchestrator
from tools.calendar import InMemoryCalendarProvider
from tools.clock import to_instant

FIXED_NOW = datetime(2026, 2, 1, 0, 0, tzinfo=timezone.utc)

THURSDAY = date(2026, 2, 26)
TUESDAY = date(2026, 2, 24)
SURGEON_MONDAY = date(2026, 2, 23)


def local(day: date, hh: int, mm: int = 0, tz: str = "Europe/Vilnius") -> datetime:
    return to_instant(day, time(hh, mm), tz)


class FailingProvider(InMemoryCalendarProvider):
    """Records the busy query, then fails like an unreachable backend."""

    async def query_busy(self, *args, **kwargs):
        await super().query_busy(*args, **kwargs)
        raise ProviderError(503, "backend unavailable", kind="transient")


@pytest.fixture
def config() -> ClinicCalendarConfig:
    return ClinicCalendarConfig(calendar_id="clinic@group.calendar.google.com")


@pytest.fixture
def provider(config) -> InMemoryCalendarProvider:
    return InMemoryCalendarProvider(calendar_id=config.calendar_id)


@pytest.fixture
def orchestrator(config, provider) -> BookingOrchestrator:
    return BookingOrchestrator(config, provider, clock=lambda: FIXED_NOW)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, api_key=None, service_account_json=None)


@pytest.fixture
def client(settings, orchestrator):
    """Test client wired to the in-memory calendar."""
    from main import create_app

    return TestClient(create_app(settings=settings, orchestrator=orchestrator))
