"""Data models for the availability layer."""

from .appointment import Appointment, AppointmentSource, Contact
from .booking import (
    AvailabilityRequest,
    AvailabilityResponse,
    BookingRequest,
    BookingResponse,
)
from .policy import (
    BusinessHoursRule,
    ClientPolicy,
    DateRange,
    PolicySettings,
    SettingsUpdate,
)
from .sync import SyncState, SyncStatus

__all__ = [
    "Appointment",
    "AppointmentSource",
    "AvailabilityRequest",
    "AvailabilityResponse",
    "BookingRequest",
    "BookingResponse",
    "BusinessHoursRule",
    "ClientPolicy",
    "Contact",
    "DateRange",
    "PolicySettings",
    "SettingsUpdate",
    "SyncState",
    "SyncStatus",
]
