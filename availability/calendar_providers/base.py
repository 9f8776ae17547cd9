"""Abstract base class for calendar feeds.

Defines the interface the engine consumes: busy-period queries, incremental
change listing, push-notification subscriptions and event creation.  Any
calendar backend (Google, Outlook, etc.) implements this ABC.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class TimeSlot:
    """A candidate meeting window; ``end`` is ``start`` plus the meeting length."""

    start: datetime
    end: datetime


@dataclass
class BusyPeriod:
    """An occupied interval reported by the calendar."""

    start: datetime
    end: datetime


@dataclass
class CalendarEvent:
    """Represents a calendar event to be created."""

    summary: str
    start: datetime
    end: datetime
    description: str = ""
    attendees: list[str] = field(default_factory=list)  # email addresses
    location: str = ""


@dataclass
class Participant:
    email: str
    is_self: bool = False


@dataclass
class ExternalEvent:
    """A changed event as reported by the incremental listing.

    ``start``/``end`` are ``None`` for all-day events, which only carry dates.
    """

    id: str
    status: str = "confirmed"
    summary: Optional[str] = None
    description: Optional[str] = None
    html_link: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    timezone: Optional[str] = None
    attendees: list[Participant] = field(default_factory=list)
    creator: Optional[Participant] = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def is_timed(self) -> bool:
        return self.start is not None and self.end is not None


@dataclass
class ChangedEventsPage:
    events: list[ExternalEvent]
    next_sync_token: Optional[str] = None
    next_page_token: Optional[str] = None


@dataclass
class Subscription:
    """A push-notification channel registered with the provider."""

    channel_id: str
    resource_id: str
    expiration: datetime


class CalendarFeed(ABC):
    """Abstract calendar backend.

    Implementations never retry on their own; transient failures surface as
    ``ProviderUnavailableError`` and an expired sync token as
    ``SyncTokenInvalidError``.
    """

    @abstractmethod
    async def query_busy(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[BusyPeriod]:
        """Return the busy periods overlapping ``[start, end)``."""

    @abstractmethod
    async def list_changed_events(
        self,
        calendar_id: str,
        sync_token: Optional[str] = None,
        since: Optional[datetime] = None,
        page_token: Optional[str] = None,
    ) -> ChangedEventsPage:
        """Return one page of events changed since ``sync_token``.

        Args:
            calendar_id: The calendar to list.
            sync_token: Resumption token from the previous pass.
            since: Lower bound used when there is no token yet.
            page_token: Continuation token for the next page.
        """

    @abstractmethod
    async def subscribe(
        self, calendar_id: str, channel_id: str, address: str
    ) -> Subscription:
        """Register ``address`` for change notifications on the calendar."""

    @abstractmethod
    async def unsubscribe(self, channel_id: str, resource_id: str) -> None:
        """Stop a notification channel."""

    @abstractmethod
    async def create_event(self, calendar_id: str, event: CalendarEvent) -> dict:
        """Create a calendar event.

        Returns:
            Dict containing at least ``"event_id"`` and ``"html_link"``.
        """
