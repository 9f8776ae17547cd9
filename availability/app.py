"""FastAPI application: HTTP endpoints for availability, booking and calendar sync.

Endpoints:

  GET  /health                          Health check
  POST /webhook/availability            Voice agent asks whether a time is free
  POST /webhook/book                    Voice agent books a confirmed slot
  POST /webhook/google-calendar         Google push notification for a watch channel
  POST /admin/subscriptions/renew       Renew channels expiring within the lead window
  POST /admin/subscriptions/bootstrap   Open channels for clients that have none
  GET  /settings?client_id=             Read a client's blocking settings
  PATCH /settings                       Update a client's blocking settings

The push notification flow:
  1. Google POSTs to /webhook/google-calendar with X-Goog-* headers
  2. We acknowledge with 200 right away
  3. The reconciler pulls the changed events in a background task
"""

from __future__ import annotations

# Load .env into os.environ before Settings is instantiated.
from dotenv import load_dotenv
load_dotenv()

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

# Configure root logger early so all availability.* loggers have a handler
# when run via uvicorn.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import BackgroundTasks, Depends, FastAPI, Header
from fastapi.responses import JSONResponse, Response

from availability.auth import require_admin_token
from availability.calendar_providers.google import GoogleCalendarFeed
from availability.config import Settings, settings
from availability.errors import (
    CalendarNotConnectedError,
    ClientNotFoundError,
    ProviderError,
    ProviderUnavailableError,
    SlotTakenError,
)
from availability.models.booking import AvailabilityRequest, BookingRequest
from availability.models.policy import SettingsUpdate
from availability.service import AvailabilityService
from availability.stores import (
    InMemoryAppointmentStore,
    InMemoryPolicyDirectory,
    InMemorySyncStateStore,
)
from availability.sync import CalendarSyncReconciler, RenewalScheduler

log = logging.getLogger("availability.app")

_START_TIME = time.time()

_TROUBLE = "I'm sorry, I'm having trouble checking the calendar right now."


@dataclass
class Components:
    """The long-lived objects the routes delegate to."""

    service: AvailabilityService
    reconciler: CalendarSyncReconciler
    scheduler: Optional[RenewalScheduler] = None
    config: Optional[Settings] = None


def build_components(config: Settings = settings) -> Components:
    """Wire the default stack: Google Calendar plus in-memory stores."""
    for warning in config.validate_startup():
        log.warning(warning)

    if config.policies_file:
        policies = InMemoryPolicyDirectory.from_json_file(config.policies_file)
    else:
        policies = InMemoryPolicyDirectory()
    appointments = InMemoryAppointmentStore()
    feed = GoogleCalendarFeed(
        config.google_service_account_json or None,
        request_timeout=config.google_request_timeout_seconds,
    )

    reconciler = CalendarSyncReconciler(
        feed,
        appointments,
        InMemorySyncStateStore(),
        policies,
        callback_url=config.webhook_url,
        default_zone=config.calendar_timezone,
        lead_window=timedelta(hours=config.renewal_lead_hours),
    )
    service = AvailabilityService(
        policies, appointments, feed, config, locks=reconciler.locks
    )
    scheduler = RenewalScheduler(
        reconciler,
        interval=timedelta(minutes=config.renewal_interval_minutes),
        lead_window=timedelta(hours=config.renewal_lead_hours),
    )
    return Components(
        service=service, reconciler=reconciler, scheduler=scheduler, config=config
    )


def _speech_error(status_code: int, response: str, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "response": response,
            "available": False,
            "requestedTime": None,
            "alternatives": None,
            "error": error,
        },
    )


def create_app(components: Optional[Components] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    components = components or build_components()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if components.scheduler is not None:
            components.scheduler.start()
        try:
            yield
        finally:
            if components.scheduler is not None:
                await components.scheduler.stop()

    app = FastAPI(
        title="Calendar Availability Engine",
        description="Availability checks, booking and calendar sync for voice scheduling",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.components = components
    app.state.config = components.config

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check, confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        scheduler = components.scheduler
        return JSONResponse({
            "status": "ok",
            "uptime": uptime,
            "renewal_running": bool(scheduler and scheduler.running),
        })

    # ── Voice agent webhooks ───────────────────────────────────

    @app.post("/webhook/availability")
    async def check_availability(request: AvailabilityRequest) -> JSONResponse:
        try:
            result = await components.service.check_availability(request)
        except ClientNotFoundError:
            log.warning("Availability check for unknown client %s", request.client_id)
            return _speech_error(404, _TROUBLE, "Client not found")
        except CalendarNotConnectedError:
            return _speech_error(
                400,
                "I'm sorry, the calendar isn't set up yet. Can I take your number "
                "and have someone call you back?",
                "Calendar not connected",
            )
        except ProviderUnavailableError:
            log.exception("Calendar provider unavailable for client %s", request.client_id)
            return _speech_error(503, _TROUBLE, "Failed to check calendar availability")
        except ProviderError:
            log.exception("Calendar provider refused availability check for %s", request.client_id)
            return _speech_error(500, _TROUBLE, "Failed to check calendar availability")

        return JSONResponse(result.model_dump(mode="json", by_alias=True))

    @app.post("/webhook/book")
    async def book(request: BookingRequest) -> JSONResponse:
        try:
            result = await components.service.book(request)
        except ClientNotFoundError:
            return JSONResponse(
                status_code=404,
                content={"confirmed": False, "error": "Client not found"},
            )
        except CalendarNotConnectedError:
            return JSONResponse(
                status_code=400,
                content={"confirmed": False, "error": "Calendar not connected"},
            )
        except SlotTakenError as exc:
            return JSONResponse(
                status_code=409,
                content={
                    "confirmed": False,
                    "error": str(exc),
                    "alternatives": exc.alternatives,
                },
            )
        except ProviderUnavailableError:
            log.exception("Calendar provider unavailable while booking for %s", request.client_id)
            return JSONResponse(
                status_code=503,
                content={"confirmed": False, "error": "Failed to create calendar event"},
            )
        except ProviderError:
            log.exception("Calendar provider refused booking for %s", request.client_id)
            return JSONResponse(
                status_code=500,
                content={"confirmed": False, "error": "Failed to create calendar event"},
            )
        except ValueError as exc:
            return JSONResponse(
                status_code=400,
                content={"confirmed": False, "error": str(exc)},
            )

        return JSONResponse(result.model_dump(mode="json", by_alias=True))

    # ── Google Calendar push notifications ─────────────────────

    async def _process_notification(channel_id: str, resource_state: Optional[str]) -> None:
        try:
            report = await components.reconciler.handle_notification(
                channel_id, resource_state
            )
        except Exception:
            log.exception("Failed to process notification for channel %s", channel_id)
            return
        if report is not None:
            log.info(
                "Channel %s: %d page(s), %d created, %d failed",
                channel_id, report.pages, len(report.created), report.failed,
            )

    @app.post("/webhook/google-calendar")
    async def google_calendar_webhook(
        background: BackgroundTasks,
        x_goog_channel_id: Optional[str] = Header(default=None),
        x_goog_resource_state: Optional[str] = Header(default=None),
    ) -> Response:
        """Acknowledge immediately; Google retries anything slower than a few seconds."""
        if not x_goog_channel_id:
            log.warning("Calendar notification without X-Goog-Channel-ID")
            return Response(status_code=200)

        background.add_task(_process_notification, x_goog_channel_id, x_goog_resource_state)
        return Response(status_code=200)

    # ── Admin ──────────────────────────────────────────────────

    @app.post(
        "/admin/subscriptions/renew",
        dependencies=[Depends(require_admin_token)],
    )
    async def renew_subscriptions() -> JSONResponse:
        renewed = await components.reconciler.renew_expiring_subscriptions()
        return JSONResponse({"renewed": renewed})

    @app.post(
        "/admin/subscriptions/bootstrap",
        dependencies=[Depends(require_admin_token)],
    )
    async def bootstrap_subscriptions() -> JSONResponse:
        created = await components.reconciler.bootstrap_subscriptions()
        return JSONResponse({"created": created})

    # ── Client settings ────────────────────────────────────────

    @app.get("/settings", dependencies=[Depends(require_admin_token)])
    async def get_settings(client_id: Optional[str] = None) -> JSONResponse:
        if not client_id:
            return JSONResponse(status_code=400, content={"error": "client_id is required"})
        try:
            current = await components.service.get_settings(client_id)
        except ClientNotFoundError:
            return JSONResponse(status_code=404, content={"error": "Client not found"})
        return JSONResponse({"client_id": client_id, **current.model_dump(mode="json")})

    @app.patch("/settings", dependencies=[Depends(require_admin_token)])
    async def update_settings(update: SettingsUpdate) -> JSONResponse:
        if not update.client_id:
            return JSONResponse(status_code=400, content={"error": "client_id is required"})
        try:
            updated = await components.service.update_settings(update)
        except ClientNotFoundError:
            return JSONResponse(status_code=404, content={"error": "Client not found"})
        except ValueError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})
        return JSONResponse({"success": True, "updated": updated})

    return app


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "availability.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
