"""
Sanadenta Gateway: FastAPI Server

HTTP entry points for the voice bot / web front end:

    GET  /                 plain-text banner
    GET  /health           liveness
    GET  /free-slots       open slots for a date and service
    POST /create-booking   validate, recheck and book one slot

Architecture:
    - Request records are validated once here (graph.state parsers) and
      the orchestrator only ever sees domain values.
    - Configuration is read from the environment once, in create_app().
      If the calendar provider cannot be configured the app still starts,
      but every provider-backed route answers 503 until it is fixed.
    - Errors map to status codes in one place (the exception handlers).
    - Shared-key auth: when API_KEY is unset the routes are open.  Setting
      it is a deployment responsibility.
"""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import ClinicCalendarConfig, Settings, load_credentials
from errors import ConfigurationError, ProviderError, ValidationError
from graph.state import BookingResult, CreateBookingPayload, SlotQuery
from graph.workflow import BookingOrchestrator
from tools.calendar import GoogleCalendarProvider, ServiceAccountTokenSource
from tools.clock import format_time

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FORMAT = "%(asctime)s  %(levelname)s  %(message)s"

logger = logging.getLogger("sanadenta")


def setup_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_orchestrator(settings: Settings) -> BookingOrchestrator:
    """Clinic config + Google provider.  Raises ConfigurationError."""
    config = ClinicCalendarConfig.from_settings(settings)
    credentials = load_credentials(settings.service_account_json)
    provider = GoogleCalendarProvider(
        ServiceAccountTokenSource(credentials),
        timeout=settings.provider_timeout_seconds,
        read_attempts=settings.provider_read_attempts,
    )
    return BookingOrchestrator(config, provider)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    orchestrator = app.state.orchestrator
    close = getattr(getattr(orchestrator, "provider", None), "close", None)
    if close is not None:
        await close()
        logger.info("Calendar provider closed")


class ProviderUnavailable(Exception):
    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(details)


def get_orchestrator(request: Request) -> BookingOrchestrator:
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise ProviderUnavailable(request.app.state.startup_error or "Calendar provider not configured")
    return orchestrator


async def require_api_key(
    request: Request,
    x_api_key: str | None = Header(default=None),
) -> None:
    expected = request.app.state.settings.api_key
    if not expected:
        return
    if x_api_key is None or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        raise StarletteHTTPException(status_code=401, detail="Unauthorized")


# ---------------------------------------------------------------------------
# Response shaping
# ---------------------------------------------------------------------------

def booking_response(result: BookingResult, config: ClinicCalendarConfig) -> JSONResponse:
    if result.outcome == "conflict":
        return JSONResponse(status_code=409, content={"error": result.message})
    if result.outcome == "rejected":
        return JSONResponse(status_code=400, content={"error": result.message, "reason": result.reason})

    interval = result.interval
    return JSONResponse(content={
        "success": True,
        "eventId": result.event_id,
        "reservedUntil": format_time(interval.end.astimezone(config.zone).time()),
        "start": interval.start.isoformat(),
        "end": interval.end.isoformat(),
        "durationMinutes": result.duration.minutes,
        "durationSource": result.duration.source,
        "htmlLink": result.link,
    })


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    orchestrator: BookingOrchestrator | None = None,
) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="Sanadenta Scheduling Gateway", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.startup_error = None

    if orchestrator is None:
        try:
            app.state.orchestrator = build_orchestrator(settings)
        except ConfigurationError as exc:
            app.state.startup_error = str(exc)
            logger.error("Calendar provider disabled: %s", exc)

    if app.state.orchestrator is not None:
        config = app.state.orchestrator.config
        logger.info(
            "Serving calendar=%s timezone=%s hours=%s-%s api_key_check=%s",
            config.calendar_id, config.timezone, *config.work_hours.values(),
            "on" if settings.api_key else "off",
        )

    # --- Error mapping -----------------------------------------------------

    @app.exception_handler(ValidationError)
    async def on_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": exc.message, "reason": exc.reason})

    @app.exception_handler(RequestValidationError)
    async def on_bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Malformed request", "reason": "bad-request"})

    @app.exception_handler(ProviderError)
    async def on_provider_error(request: Request, exc: ProviderError) -> JSONResponse:
        logger.error("Calendar provider error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=502,
            content={"error": "Calendar provider error", "details": exc.message, "kind": exc.kind},
        )

    @app.exception_handler(ProviderUnavailable)
    async def on_provider_unavailable(request: Request, exc: ProviderUnavailable) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={"error": "Calendar provider not configured", "details": exc.details},
        )

    @app.exception_handler(StarletteHTTPException)
    async def on_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def on_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Server error", "details": str(exc)})

    # --- Routes --------------------------------------------------------------

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "Sanadenta API is running"

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True}

    @app.get("/free-slots", dependencies=[Depends(require_api_key)])
    async def free_slots(
        request: Request,
        date: str | None = None,
        service: str | None = None,
        duration_minutes: str | None = Query(default=None, alias="durationMinutes"),
    ) -> dict[str, Any]:
        query = SlotQuery.from_params(date, service, duration_minutes)
        result = await get_orchestrator(request).list_free_slots(query)
        return result.to_response()

    @app.post("/create-booking", dependencies=[Depends(require_api_key)])
    async def create_booking(
        request: Request,
        payload: CreateBookingPayload | None = Body(default=None),
    ) -> JSONResponse:
        command = (payload or CreateBookingPayload()).to_command()
        orchestrator = get_orchestrator(request)
        result = await orchestrator.create_booking(command)
        return booking_response(result, orchestrator.config)

    return app


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

_settings = Settings()
setup_logging(_settings.log_level)
app = create_app(_settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=_settings.port)
