"""Exception hierarchy for the availability engine.

Parse failures and policy blocks are ordinary return values, not exceptions.
The errors here are the ones that cross component boundaries.
"""

from __future__ import annotations


class AvailabilityError(RuntimeError):
    """Base error for the availability engine."""


class ProviderUnavailableError(AvailabilityError):
    """The calendar provider timed out or returned a transient (429/5xx) error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderError(AvailabilityError):
    """The calendar provider refused the request (401, 403, 404 and similar)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SyncTokenInvalidError(AvailabilityError):
    """The provider rejected the stored sync token (HTTP 410 Gone)."""


class ClientNotFoundError(AvailabilityError):
    """No policy exists for the requested client id."""


class CalendarNotConnectedError(AvailabilityError):
    """The client has not connected a calendar yet."""


class SlotTakenError(AvailabilityError):
    """The slot was free when checked but became unavailable before booking."""

    def __init__(self, message: str, alternatives: list[str] | None = None) -> None:
        super().__init__(message)
        self.alternatives = alternatives or []
