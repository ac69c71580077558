"""
Sanadenta Gateway: Calendar Provider

The remote calendar is the single source of truth for busy time.  The
engine talks to it through exactly two operations:

    query_busy    busy intervals intersecting a window (read, idempotent)
    insert_event  create the appointment event (write, never retried)

Implementations:
    GoogleCalendarProvider   Google Calendar API v3 over httpx, with a
                             tenacity retry loop on the read path only.
    InMemoryCalendarProvider a local event list for simulations and tests;
                             it records every call it receives.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from config import ServiceAccountCredentials
from errors import ConfigurationError, ProviderError, ProviderRetryableError
from graph.state import Interval
from tools.conflicts import overlaps

logger = logging.getLogger(__name__)

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
TOKEN_URI = "https://oauth2.googleapis.com/token"

RETRYABLE_STATUS_CODES = frozenset({500, 502, 503, 504})
_RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"})


class InsertedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    link: str | None = None


@runtime_checkable
class CalendarProvider(Protocol):
    """Contract the booking engine consumes; it never stores events itself."""

    async def query_busy(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        timezone_name: str,
    ) -> list[Interval]:
        ...

    async def insert_event(
        self,
        calendar_id: str,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        timezone_name: str,
    ) -> InsertedEvent:
        ...


def rfc3339(instant: datetime) -> str:
    """ISO-8601 with an explicit offset; naive datetimes are refused."""
    if instant.tzinfo is None:
        raise ValueError("provider timestamps must be timezone-aware")
    return instant.isoformat(timespec="seconds")


def parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------

TokenProvider = Callable[[], Awaitable[str]]


class ServiceAccountTokenSource:
    """
    OAuth access tokens for a Google service account.

    google-auth refreshes synchronously, so the refresh runs in a worker
    thread; the token is reused until google-auth reports it expired.
    """

    def __init__(self, credentials: ServiceAccountCredentials, scopes: list[str] | None = None) -> None:
        try:
            self._credentials = service_account.Credentials.from_service_account_info(
                {
                    "type": "service_account",
                    "client_email": credentials.client_email,
                    "private_key": credentials.private_key,
                    "token_uri": TOKEN_URI,
                },
                scopes=scopes or [CALENDAR_SCOPE],
            )
        except ValueError as exc:
            raise ConfigurationError(f"Service account private key is unusable: {exc}") from exc
        self._lock = asyncio.Lock()

    async def __call__(self) -> str:
        async with self._lock:
            if not self._credentials.valid:
                try:
                    await asyncio.to_thread(self._credentials.refresh, Request())
                except GoogleAuthError as exc:
                    raise ProviderError("token", f"Service account token refresh failed: {exc}", kind="auth") from exc
            return self._credentials.token


# ---------------------------------------------------------------------------
# Google Calendar
# ---------------------------------------------------------------------------

class GoogleCalendarProvider:
    """Calendar API v3 client (freeBusy + events.insert)."""

    DEFAULT_TIMEOUT = 15.0
    DEFAULT_READ_ATTEMPTS = 3

    def __init__(
        self,
        token_provider: TokenProvider,
        timeout: float = DEFAULT_TIMEOUT,
        read_attempts: int = DEFAULT_READ_ATTEMPTS,
        read_wait: wait_base | None = None,
        base_url: str = CALENDAR_API_BASE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._get_token = token_provider
        self._timeout = timeout
        self._read_attempts = max(1, read_attempts)
        self._read_wait = read_wait or wait_exponential_jitter(initial=0.5, max=5.0, jitter=0.5)
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> GoogleCalendarProvider:
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # -- transport -----------------------------------------------------------

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._ensure_client()
        token = await self._get_token()
        try:
            response = await client.post(
                path,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as exc:
            raise ProviderRetryableError(None, f"Calendar API timed out: {exc}", kind="transient") from exc
        except httpx.TransportError as exc:
            raise ProviderRetryableError(None, f"Calendar API unreachable: {exc}", kind="transient") from exc

        if response.is_success:
            try:
                return response.json() if response.content else {}
            except ValueError as exc:
                raise ProviderError(response.status_code, "Calendar API returned invalid JSON", kind="bad-response") from exc

        raise self._error_for(response)

    @staticmethod
    def _error_for(response: httpx.Response) -> ProviderError:
        status = response.status_code
        message = response.text[:300] or response.reason_phrase
        reason = ""
        try:
            error = response.json().get("error", {})
            message = error.get("message", message)
            reason = next((e.get("reason", "") for e in error.get("errors", [])), "")
        except (ValueError, AttributeError):
            pass

        if status == 401:
            return ProviderError(status, message, kind="auth")
        if status == 429 or (status == 403 and reason in _RATE_LIMIT_REASONS):
            return ProviderRetryableError(status, message, kind="quota")
        if status == 403:
            return ProviderError(status, message, kind="permission")
        if status == 404:
            return ProviderError(status, message, kind="not-found")
        if status in RETRYABLE_STATUS_CODES:
            return ProviderRetryableError(status, message, kind="transient")
        return ProviderError(status, message, kind="unknown")

    # -- contract ------------------------------------------------------------

    async def query_busy(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        timezone_name: str,
    ) -> list[Interval]:
        payload = {
            "timeMin": rfc3339(time_min),
            "timeMax": rfc3339(time_max),
            "timeZone": timezone_name,
            "items": [{"id": calendar_id}],
        }

        data: dict[str, Any] = {}
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ProviderRetryableError),
            stop=stop_after_attempt(self._read_attempts),
            wait=self._read_wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                data = await self._post("/freeBusy", payload)

        entry = (data.get("calendars") or {}).get(calendar_id)
        if not entry:
            return []

        errors = entry.get("errors") or []
        if errors:
            reason = errors[0].get("reason", "unknown")
            kind = "not-found" if reason == "notFound" else "permission" if reason == "forbidden" else "unknown"
            raise ProviderError(reason, f"freeBusy rejected calendar {calendar_id}", kind=kind)

        busy: list[Interval] = []
        for raw in entry.get("busy") or []:
            try:
                busy.append(Interval(start=parse_instant(raw["start"]), end=parse_instant(raw["end"])))
            except (KeyError, TypeError, ValueError, PydanticValidationError) as exc:
                raise ProviderError(None, f"Malformed busy interval {raw!r}", kind="bad-response") from exc
        return busy

    async def insert_event(
        self,
        calendar_id: str,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        timezone_name: str,
    ) -> InsertedEvent:
        payload = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": rfc3339(start), "timeZone": timezone_name},
            "end": {"dateTime": rfc3339(end), "timeZone": timezone_name},
        }
        data = await self._post(f"/calendars/{quote(calendar_id, safe='')}/events", payload)

        event_id = data.get("id")
        if not event_id:
            raise ProviderError(None, "Calendar API returned an event without id", kind="bad-response")
        return InsertedEvent(event_id=event_id, link=data.get("htmlLink"))


# ---------------------------------------------------------------------------
# In-memory calendar
# ---------------------------------------------------------------------------

class StoredEvent(BaseModel):
    event_id: str
    calendar_id: str
    summary: str
    description: str
    interval: Interval


class InMemoryCalendarProvider:
    """
    Local stand-in for the remote calendar.

    `busy` seeds pre-existing occupied time.  Inserted events become busy
    time for later queries, so double-booking scenarios behave like the
    real calendar.  `calls` logs ("query_busy" | "insert_event", args).
    """

    def __init__(self, busy: list[Interval] | None = None, calendar_id: str | None = None) -> None:
        self.seed_busy: list[Interval] = list(busy or [])
        self.calendar_id = calendar_id
        self.events: list[StoredEvent] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._ids = itertools.count(1)

    def add_busy(self, start: datetime, end: datetime) -> Interval:
        interval = Interval(start=start, end=end)
        self.seed_busy.append(interval)
        return interval

    def _occupied(self, calendar_id: str) -> list[Interval]:
        seeded = self.seed_busy if self.calendar_id in (None, calendar_id) else []
        return seeded + [e.interval for e in self.events if e.calendar_id == calendar_id]

    async def query_busy(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        timezone_name: str,
    ) -> list[Interval]:
        self.calls.append(("query_busy", {
            "calendar_id": calendar_id, "time_min": time_min,
            "time_max": time_max, "timezone": timezone_name,
        }))
        return sorted(
            (b for b in self._occupied(calendar_id) if overlaps(b.start, b.end, time_min, time_max)),
            key=lambda b: b.start.astimezone(timezone.utc),
        )

    async def insert_event(
        self,
        calendar_id: str,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        timezone_name: str,
    ) -> InsertedEvent:
        self.calls.append(("insert_event", {
            "calendar_id": calendar_id, "summary": summary, "start": start,
            "end": end, "timezone": timezone_name,
        }))
        event = StoredEvent(
            event_id=f"evt-{next(self._ids):04d}",
            calendar_id=calendar_id,
            summary=summary,
            description=description,
            interval=Interval(start=start, end=end),
        )
        self.events.append(event)
        return InsertedEvent(event_id=event.event_id, link=f"memory://{calendar_id}/{event.event_id}")

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]
