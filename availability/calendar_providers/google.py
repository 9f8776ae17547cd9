"""Google Calendar feed implementation.

Uses a Google Cloud service account to interact with the Calendar API v3.
The service account JSON key path is read from the ``GOOGLE_SERVICE_ACCOUNT_JSON``
environment variable.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from functools import partial
from typing import Any, Optional

import httplib2
from google.oauth2.service_account import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from availability.errors import (
    AvailabilityError,
    ProviderError,
    ProviderUnavailableError,
    SyncTokenInvalidError,
)
from availability.timeutil import parse_rfc3339, to_rfc3339

from .base import (
    BusyPeriod,
    CalendarEvent,
    CalendarFeed,
    ChangedEventsPage,
    ExternalEvent,
    Participant,
    Subscription,
)

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

PAGE_SIZE = 50


def _participant(raw: Optional[dict]) -> Optional[Participant]:
    if not raw or not raw.get("email"):
        return None
    return Participant(email=raw["email"], is_self=bool(raw.get("self")))


def event_from_api(item: dict[str, Any]) -> ExternalEvent:
    """Normalize an ``events.list`` item.

    All-day events carry ``date`` instead of ``dateTime`` and come back with
    ``start``/``end`` set to ``None``.
    """
    start = item.get("start") or {}
    end = item.get("end") or {}
    attendees = [
        p for p in (_participant(a) for a in item.get("attendees") or []) if p
    ]
    return ExternalEvent(
        id=item["id"],
        status=item.get("status", "confirmed"),
        summary=item.get("summary"),
        description=item.get("description"),
        html_link=item.get("htmlLink"),
        start=parse_rfc3339(start["dateTime"]) if start.get("dateTime") else None,
        end=parse_rfc3339(end["dateTime"]) if end.get("dateTime") else None,
        timezone=start.get("timeZone"),
        attendees=attendees,
        creator=_participant(item.get("creator")),
    )


class GoogleCalendarFeed(CalendarFeed):
    """CalendarFeed backed by Google Calendar API v3."""

    def __init__(
        self,
        service_account_path: str | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        sa_path = service_account_path or os.environ.get(
            "GOOGLE_SERVICE_ACCOUNT_JSON", ""
        )
        if not sa_path:
            raise ValueError(
                "Google service account JSON path must be provided via "
                "constructor argument or GOOGLE_SERVICE_ACCOUNT_JSON env var."
            )
        self._credentials = Credentials.from_service_account_file(
            sa_path, scopes=SCOPES
        )
        self._service = build(
            "calendar", "v3", credentials=self._credentials
        )
        self._request_timeout = request_timeout

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        """Run a synchronous Google API call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(func, *args, **kwargs)
        )

    def _authorized_http(self) -> AuthorizedHttp:
        """A fresh transport for one request; httplib2.Http is not thread-safe."""
        return AuthorizedHttp(
            self._credentials, http=httplib2.Http(timeout=self._request_timeout)
        )

    async def _execute(self, request, what: str) -> Any:
        """Execute an API request, translating failures into engine errors."""
        try:
            return await asyncio.wait_for(
                self._run_in_executor(request.execute, http=self._authorized_http()),
                self._request_timeout,
            )
        except HttpError as exc:
            status = exc.resp.status
            if status == 410:
                raise SyncTokenInvalidError(f"{what}: sync token expired") from exc
            if status == 429 or status >= 500:
                raise ProviderUnavailableError(
                    f"{what} failed with HTTP {status}", status_code=status
                ) from exc
            raise ProviderError(
                f"{what} failed with HTTP {status}", status_code=status
            ) from exc
        except (asyncio.TimeoutError, TimeoutError, ConnectionError) as exc:
            raise ProviderUnavailableError(f"{what} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # CalendarFeed interface
    # ------------------------------------------------------------------

    async def query_busy(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[BusyPeriod]:
        """Query the freebusy API for busy intervals in ``[start, end)``."""
        body = {
            "timeMin": to_rfc3339(start),
            "timeMax": to_rfc3339(end),
            "items": [{"id": calendar_id}],
        }
        response = await self._execute(
            self._service.freebusy().query(body=body), "freebusy query"
        )

        calendar = response.get("calendars", {}).get(calendar_id, {})
        if calendar.get("errors"):
            reasons = ", ".join(e.get("reason", "unknown") for e in calendar["errors"])
            raise ProviderUnavailableError(
                f"freebusy query for {calendar_id} returned errors: {reasons}"
            )

        busy = [
            BusyPeriod(
                start=parse_rfc3339(interval["start"]),
                end=parse_rfc3339(interval["end"]),
            )
            for interval in calendar.get("busy", [])
        ]
        busy.sort(key=lambda b: b.start)
        return busy

    async def list_changed_events(
        self,
        calendar_id: str,
        sync_token: Optional[str] = None,
        since: Optional[datetime] = None,
        page_token: Optional[str] = None,
    ) -> ChangedEventsPage:
        params: dict[str, Any] = {
            "calendarId": calendar_id,
            "singleEvents": True,
            "maxResults": PAGE_SIZE,
        }
        if sync_token:
            # Incremental sync, only changes since the last pass
            params["syncToken"] = sync_token
        else:
            # First sync, only future events and never history
            params["timeMin"] = to_rfc3339(since or datetime.now(timezone.utc))
        if page_token:
            params["pageToken"] = page_token

        response = await self._execute(
            self._service.events().list(**params), "events list"
        )
        return ChangedEventsPage(
            events=[event_from_api(item) for item in response.get("items", [])],
            next_sync_token=response.get("nextSyncToken"),
            next_page_token=response.get("nextPageToken"),
        )

    async def subscribe(
        self, calendar_id: str, channel_id: str, address: str
    ) -> Subscription:
        """Open a ``web_hook`` watch channel on the calendar's events."""
        response = await self._execute(
            self._service.events().watch(
                calendarId=calendar_id,
                body={"id": channel_id, "type": "web_hook", "address": address},
            ),
            "events watch",
        )
        resource_id = response.get("resourceId")
        if not resource_id:
            raise AvailabilityError(f"No resourceId returned for watch channel {channel_id}")

        expiration = datetime.fromtimestamp(
            int(response["expiration"]) / 1000, tz=timezone.utc
        )
        return Subscription(
            channel_id=channel_id, resource_id=resource_id, expiration=expiration
        )

    async def unsubscribe(self, channel_id: str, resource_id: str) -> None:
        await self._execute(
            self._service.channels().stop(
                body={"id": channel_id, "resourceId": resource_id}
            ),
            "channel stop",
        )

    async def create_event(
        self, calendar_id: str, event: CalendarEvent
    ) -> dict:
        """Insert an event into the Google Calendar.

        Sends email invitations to any attendees listed on the event.
        """
        body: dict[str, Any] = {
            "summary": event.summary,
            "start": {"dateTime": to_rfc3339(event.start)},
            "end": {"dateTime": to_rfc3339(event.end)},
        }
        if event.description:
            body["description"] = event.description
        if event.location:
            body["location"] = event.location
        if event.attendees:
            body["attendees"] = [
                {"email": addr} for addr in event.attendees
            ]

        result = await self._execute(
            self._service.events().insert(
                calendarId=calendar_id,
                body=body,
                sendUpdates="all",
            ),
            "events insert",
        )

        logger.info("Created event %s on calendar %s", result["id"], calendar_id)

        return {
            "event_id": result["id"],
            "html_link": result.get("htmlLink", ""),
            "status": result.get("status", "confirmed"),
        }
