"""Pydantic models for the scheduling webhook requests and responses."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AvailabilityRequest(_CamelModel):
    """Sent by the voice agent when a caller asks about a time."""

    client_id: str
    requested_time_string: Optional[str] = None
    campaign_id: Optional[str] = None


class AvailabilityResponse(_CamelModel):
    """Result the voice agent reads back to the caller."""

    response: str  # natural-language sentence to speak
    available: bool
    requested_time: Optional[str] = None
    alternatives: Optional[list[str]] = None
    needs_time_specified: Optional[bool] = None
    suggested_slots: Optional[list[str]] = None
    error: Optional[str] = None


class BookingRequest(_CamelModel):
    """Data collected from the caller to book a meeting."""

    client_id: str
    start_time: datetime
    caller_name: str
    caller_email: str
    campaign_id: Optional[str] = None
    duration_minutes: Optional[int] = None


class BookingResponse(_CamelModel):
    """Result returned after a booking attempt."""

    event_id: str
    confirmed: bool
    summary: str
    start_time: datetime
    end_time: datetime
    calendar_link: str = ""
