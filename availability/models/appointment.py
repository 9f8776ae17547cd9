"""Internal appointment records and the contacts they link to."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class AppointmentSource(str, Enum):
    """Where an appointment came from."""

    VOICE = "voice"
    EXTERNAL = "google_booking"  # created directly on the calendar by someone else


class Contact(BaseModel):
    id: str
    client_id: str
    email: str
    name: str = ""


class Appointment(BaseModel):
    """An appointment owned by the appointment store.

    ``external_event_id`` is the calendar event id and is unique per store,
    which is what makes importing the same event twice a no-op.
    """

    client_id: str
    start_time: datetime
    end_time: datetime
    timezone: str
    external_event_id: str
    source: AppointmentSource
    contact_id: Optional[str] = None
    title: Optional[str] = None
    notes: Optional[str] = None
    external_url: Optional[str] = None
