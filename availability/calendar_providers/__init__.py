"""Calendar feed abstractions and implementations."""

from .base import (
    BusyPeriod,
    CalendarEvent,
    CalendarFeed,
    ChangedEventsPage,
    ExternalEvent,
    Participant,
    Subscription,
    TimeSlot,
)

__all__ = [
    "BusyPeriod",
    "CalendarEvent",
    "CalendarFeed",
    "ChangedEventsPage",
    "ExternalEvent",
    "Participant",
    "Subscription",
    "TimeSlot",
]
