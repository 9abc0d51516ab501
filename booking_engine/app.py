"""FastAPI application: HTTP endpoints for availability and booking.

Endpoints:

  GET  /health                     Health check with notification and audit summaries
  POST /availability               Availability query
  POST /bookings                   Create a booking
  POST /bookings/check             Existing-booking check
  POST /bookings/confirmation      Confirmation summary for a chosen slot
  POST /bookings/{id}/cancel       Cancel a booking (admin)
  GET  /tools                      Tool definitions for the LLM front-end
  POST /tools/{name}               Execute a tool
  GET  /admin/audit                Recent audit entries (admin)
  GET  /admin/attempts             Recent booking attempts with history (admin)

Every public endpoint is rate limited per caller IP. If the client
disconnects mid-request, the in-flight engine work is cancelled.
"""

from __future__ import annotations

# Load .env into os.environ before settings-dependent imports run.
from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

# Configure root logger early so all booking_engine loggers have a handler
# when run via `uvicorn booking_engine.app:create_app --factory`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from booking_engine.audit import AuditLog, redact_pii
from booking_engine.auth import require_admin_token
from booking_engine.availability.service import AvailabilityMode, AvailabilityService
from booking_engine.booking.confirmation import present_confirmation
from booking_engine.booking.orchestrator import BookingOrchestrator, FailureReason, SlotHolds
from booking_engine.booking.store import BookingStore, SqlBookingStore
from booking_engine.calendar_providers.base import CalendarProvider
from booking_engine.calendar_providers.mock import MockCalendarProvider
from booking_engine.config import Settings, settings
from booking_engine.errors import BookingEngineError, ConfigurationError, InputError
from booking_engine.notifications.dispatcher import NotificationDispatcher, RetryPolicy
from booking_engine.notifications.providers import EmailProvider, ResendEmailProvider
from booking_engine.notifications.rate_limit import RecipientRateLimiter
from booking_engine.rate_limit import RateLimiter
from booking_engine.tools import (
    BookMeetingTool,
    CheckExistingBookingTool,
    GetAvailabilityTool,
    ProcessBookingRequestTool,
    ShowBookingConfirmationTool,
    ShowBookingModalTool,
    ToolRegistry,
)

log = logging.getLogger("booking_engine.app")

DISCONNECT_POLL_SECONDS = 0.1

_FAILURE_STATUS = {
    FailureReason.INVALID_INPUT.value: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FailureReason.EXISTING_BOOKING.value: status.HTTP_409_CONFLICT,
    FailureReason.SLOT_UNAVAILABLE.value: status.HTTP_409_CONFLICT,
    FailureReason.CALENDAR_UNAVAILABLE.value: status.HTTP_503_SERVICE_UNAVAILABLE,
    FailureReason.EVENT_CREATION_FAILED.value: status.HTTP_503_SERVICE_UNAVAILABLE,
    FailureReason.SCHEDULING_DISABLED.value: status.HTTP_503_SERVICE_UNAVAILABLE,
}


# ── Engine wiring ─────────────────────────────────────────────────


@dataclass
class BookingEngine:
    """Everything one process needs, with the shared tables it owns."""

    settings: Settings
    calendar: CalendarProvider
    availability: AvailabilityService
    orchestrator: BookingOrchestrator
    dispatcher: NotificationDispatcher
    store: Optional[BookingStore]
    rate_limiter: RateLimiter
    audit: AuditLog
    tools: ToolRegistry
    started_at: float = field(default_factory=time.time)


def _build_calendar(cfg: Settings) -> CalendarProvider:
    if not cfg.google_service_account_json:
        log.warning("No Google service account configured, using demo calendar")
        return MockCalendarProvider()
    # Imported here so demo deployments never load the Google client.
    from booking_engine.calendar_providers.google import GoogleCalendarProvider

    try:
        return GoogleCalendarProvider(
            service_account_path=cfg.google_service_account_json,
            timeout=cfg.calendar_timeout_seconds,
        )
    except (OSError, ValueError) as exc:
        raise ConfigurationError(
            f"Google service account at {cfg.google_service_account_json!r} is unusable: {exc}"
        ) from exc


def _build_email(cfg: Settings) -> EmailProvider | None:
    if not cfg.feature_notifications or not cfg.resend_api_key:
        return None
    return ResendEmailProvider(cfg.resend_api_key)


def build_engine(
    cfg: Settings | None = None,
    *,
    calendar: CalendarProvider | None = None,
    email_provider: EmailProvider | None = None,
    store: BookingStore | None = None,
    clock: Callable[[], Any] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> BookingEngine:
    """Wire live (or injected) collaborators from settings.

    Raises ConfigurationError when the settings are unusable.
    """
    cfg = cfg or settings
    try:
        for warning in cfg.validate_startup():
            log.warning(warning)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    audit = AuditLog(maxlen=cfg.audit_log_size)
    calendar = calendar or _build_calendar(cfg)
    if store is None and cfg.database_url:
        store = SqlBookingStore(cfg.database_url)
    if email_provider is None:
        email_provider = _build_email(cfg)

    service_kwargs: dict[str, Any] = {}
    if clock is not None:
        service_kwargs["clock"] = clock
    policy = cfg.business_hours()
    availability = AvailabilityService(
        calendar,
        policy,
        cfg.meeting_durations,
        calendar_id=cfg.google_calendar_id,
        audit=audit,
        step_minutes=cfg.slot_step_minutes,
        lead_minutes=cfg.min_lead_minutes,
        default_lookahead_days=cfg.default_lookahead_days,
        enabled=cfg.feature_scheduling,
        **service_kwargs,
    )
    dispatcher = NotificationDispatcher(
        email_provider,
        sender=cfg.email_from,
        owner_email=cfg.owner_email,
        business_timezone=cfg.business_timezone,
        retry=RetryPolicy(
            max_attempts=cfg.email_max_attempts,
            base_delay=cfg.email_retry_base_delay,
            multiplier=cfg.email_retry_multiplier,
            max_delay=cfg.email_retry_max_delay,
        ),
        limiter=RecipientRateLimiter(
            hourly_cap=cfg.email_hourly_cap,
            daily_cap=cfg.email_daily_cap,
            cooldown_seconds=cfg.email_cooldown_seconds,
            cooldown_exempt=[cfg.owner_email],
        ),
        audit=audit,
        timeout=cfg.email_timeout_seconds,
        enabled=cfg.feature_notifications,
        sleep=sleep,
    )
    orchestrator = BookingOrchestrator(
        availability,
        calendar,
        store,
        dispatcher,
        calendar_id=cfg.google_calendar_id,
        holds=SlotHolds(cfg.slot_hold_seconds),
        audit=audit,
        enabled=cfg.feature_scheduling,
    )
    tools = ToolRegistry([
        GetAvailabilityTool(availability),
        ShowBookingModalTool(availability),
        BookMeetingTool(orchestrator),
        CheckExistingBookingTool(orchestrator),
        ProcessBookingRequestTool(orchestrator),
        ShowBookingConfirmationTool(policy),
    ])
    log.info(
        "Engine ready (calendar=%s, persistence=%s, notifications=%s)",
        "demo" if calendar.is_demo else "live",
        "on" if store is not None else "off",
        "on" if dispatcher.enabled else "off",
    )
    return BookingEngine(
        settings=cfg,
        calendar=calendar,
        availability=availability,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
        store=store,
        rate_limiter=RateLimiter(cfg.rate_limit_window_seconds, cfg.rate_limit_max_requests),
        audit=audit,
        tools=tools,
    )


# ── Request bodies ────────────────────────────────────────────────


class AvailabilityQuery(BaseModel):
    timezone: Optional[str] = None
    lookahead_days: Optional[int] = None
    requested_time: Optional[str] = None
    preference: Optional[str] = None
    mode: AvailabilityMode = AvailabilityMode.NEAREST


class ExistingBookingQuery(BaseModel):
    email: str
    name: Optional[str] = None


# ── Helpers ───────────────────────────────────────────────────────


class ClientDisconnected(Exception):
    """The caller went away before the response was ready."""


def _client_ip(request: Request, trusted_proxies: list[str]) -> str:
    """Socket peer, or the nearest untrusted X-Forwarded-For hop behind a trusted proxy."""
    peer = request.client.host if request.client else "unknown"
    if peer not in trusted_proxies:
        return peer
    hops = [h.strip() for h in request.headers.get("x-forwarded-for", "").split(",") if h.strip()]
    for hop in reversed(hops):
        if hop not in trusted_proxies:
            return hop
    return peer


async def run_until_disconnected(request: Request, work: Awaitable[Any]) -> Any:
    """Await ``work``, cancelling it if the client disconnects first."""
    task = asyncio.ensure_future(work)

    async def watch() -> None:
        while not task.done():
            if await request.is_disconnected():
                return
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)

    watcher = asyncio.ensure_future(watch())
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
    if task.done():
        return task.result()
    task.cancel()
    log.info("Client disconnected, cancelled %s %s", request.method, request.url.path)
    raise ClientDisconnected()


def get_engine(request: Request) -> BookingEngine:
    return request.app.state.engine


async def enforce_rate_limit(
    request: Request,
    response: Response,
    engine: BookingEngine = Depends(get_engine),
) -> None:
    """Per-IP fixed-window limit; sets X-RateLimit-* headers."""
    decision = engine.rate_limiter.check(_client_ip(request, engine.settings.trusted_proxies))
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please wait before trying again.",
            headers=decision.headers(),
        )
    response.headers.update(decision.headers())


# ── Application ───────────────────────────────────────────────────


def create_app(engine: BookingEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    engine = engine or build_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await engine.orchestrator.drain()

    app = FastAPI(
        title="Booking Engine",
        description="Availability and booking for a single business calendar",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    limited = [Depends(enforce_rate_limit)]

    @app.middleware("http")
    async def record_timing(request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        engine.audit.record("api_request", {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.monotonic() - started) * 1000, 1),
        })
        return response

    @app.exception_handler(InputError)
    async def input_error(request: Request, exc: InputError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"success": False, "message": exc.user_message, "errors": exc.errors},
        )

    @app.exception_handler(BookingEngineError)
    async def engine_error(request: Request, exc: BookingEngineError) -> JSONResponse:
        log.error("Unhandled engine error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"success": False, "message": exc.user_message},
        )

    @app.exception_handler(ClientDisconnected)
    async def client_disconnected(request: Request, exc: ClientDisconnected) -> Response:
        # Nginx convention for "client closed request"; nobody reads it.
        return Response(status_code=499)

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness plus a summary of recent upstream behaviour."""
        return {
            "status": "ok",
            "uptime": round(time.time() - engine.started_at, 1),
            "calendar": "demo" if engine.calendar.is_demo else "live",
            "persistence": engine.store is not None,
            "scheduling_enabled": engine.settings.feature_scheduling,
            "notifications": engine.dispatcher.health(),
            "audit": engine.audit.stats(),
        }

    # ── Availability ───────────────────────────────────────────

    @app.post("/availability", dependencies=limited)
    async def availability(query: AvailabilityQuery, request: Request) -> dict[str, Any]:
        result = await run_until_disconnected(request, engine.availability.get_availability(
            timezone=query.timezone,
            lookahead_days=query.lookahead_days,
            requested_time=query.requested_time,
            preference=query.preference,
            mode=query.mode,
        ))
        return result.model_dump(mode="json")

    # ── Bookings ───────────────────────────────────────────────

    @app.post("/bookings", dependencies=limited)
    async def create_booking(
        body: dict[str, Any], request: Request, response: Response
    ) -> dict[str, Any]:
        log.info("Booking request from %s", redact_pii(str(body.get("email", ""))))
        result = await run_until_disconnected(request, engine.orchestrator.book(body))
        if result.success:
            response.status_code = status.HTTP_201_CREATED
        else:
            response.status_code = _FAILURE_STATUS.get(result.reason, status.HTTP_400_BAD_REQUEST)
        return result.model_dump(mode="json")

    @app.post("/bookings/check", dependencies=limited)
    async def check_booking(query: ExistingBookingQuery, request: Request) -> dict[str, Any]:
        result = await run_until_disconnected(
            request, engine.orchestrator.check_existing_booking(query.email, query.name)
        )
        return result.model_dump(mode="json")

    @app.post("/bookings/confirmation", dependencies=limited)
    async def confirmation(body: dict[str, Any]) -> dict[str, Any]:
        summary = present_confirmation(body, engine.availability.policy)
        return summary.model_dump(mode="json")

    @app.post(
        "/bookings/{booking_id}/cancel",
        dependencies=[Depends(require_admin_token)],
    )
    async def cancel_booking(booking_id: str, response: Response) -> dict[str, Any]:
        result = await engine.orchestrator.cancel(booking_id)
        if not result.success:
            response.status_code = (
                status.HTTP_404_NOT_FOUND if result.reason == "not_found"
                else status.HTTP_503_SERVICE_UNAVAILABLE
            )
        return result.model_dump(mode="json")

    # ── LLM tools ──────────────────────────────────────────────

    @app.get("/tools")
    async def list_tools() -> dict[str, Any]:
        return {"tools": engine.tools.schemas()}

    @app.post("/tools/{name}", dependencies=limited)
    async def execute_tool(
        name: str, request: Request, params: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        if engine.tools.get(name) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown tool: {name}")
        result = await run_until_disconnected(request, engine.tools.execute(name, params or {}))
        return {"tool": name, "result": result}

    # ── Admin ──────────────────────────────────────────────────

    @app.get("/admin/audit", dependencies=[Depends(require_admin_token)])
    async def admin_audit(kind: Optional[str] = None, limit: int = 100) -> dict[str, Any]:
        return {
            "entries": engine.audit.recent(kind=kind, limit=max(1, min(limit, 1000))),
            "stats": engine.audit.stats(),
        }

    @app.get("/admin/attempts", dependencies=[Depends(require_admin_token)])
    async def admin_attempts() -> dict[str, Any]:
        return {"attempts": [a.to_dict() for a in engine.orchestrator.recent_attempts()]}

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
