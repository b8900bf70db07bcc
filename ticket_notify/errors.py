"""Exception types raised by the scheduling and delivery core."""

from __future__ import annotations


class NotificationError(Exception):
    """Base class for notification errors."""


class ValidationError(NotificationError, ValueError):
    """A required field is missing or a date/time is malformed."""


class EventAlreadyPassed(NotificationError):
    """The event a reminder was requested for is already in the past."""

    def __init__(self, message: str = "Event time has already passed") -> None:
        super().__init__(message)


class DeliveryTransientFailure(NotificationError):
    """The push provider failed for a reason other than a gone subscription."""


class DeliveryPermanentFailure(NotificationError):
    """The push provider reported the subscription as gone or not found."""

    def __init__(self, endpoint: str, status_code: int | None = None) -> None:
        super().__init__(f"subscription gone ({status_code}): {endpoint}")
        self.endpoint = endpoint
        self.status_code = status_code


class StoreUnavailable(NotificationError):
    """The backing persistence could not be read or written."""


__all__ = [
    "NotificationError",
    "ValidationError",
    "EventAlreadyPassed",
    "DeliveryTransientFailure",
    "DeliveryPermanentFailure",
    "StoreUnavailable",
]
