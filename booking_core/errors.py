"""
Typed failures for the scheduling core.

Every business-rule failure is raised as a subclass of BookingError. The
API layer maps ``status_code`` and ``code`` onto the error envelope; callers
inside the core can branch on ``kind`` or on the exception class.
"""

from typing import Optional

from .core.responses import ErrorCodes


class BookingError(Exception):
    """Base class for scheduling failures returned to the caller as-is."""

    kind = "BookingError"
    status_code = 400
    code = ErrorCodes.VALIDATION_ERROR
    default_message = "Booking request failed"

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class InvalidFormat(BookingError):
    kind = "InvalidFormat"
    code = ErrorCodes.INVALID_FORMAT
    default_message = "Time must be HH:MM (24h)"


class InvalidRange(BookingError):
    kind = "InvalidRange"
    code = ErrorCodes.INVALID_RANGE
    default_message = "Time is outside the 24-hour day"


class PastBooking(BookingError):
    kind = "PastBooking"
    code = ErrorCodes.PAST_BOOKING
    default_message = "Cannot book in the past"


class ServiceNotFound(BookingError):
    kind = "ServiceNotFound"
    status_code = 404
    code = ErrorCodes.SERVICE_NOT_FOUND
    default_message = "Service not found"


class StaffNotQualified(BookingError):
    kind = "StaffNotQualified"
    code = ErrorCodes.STAFF_NOT_QUALIFIED
    default_message = "Selected staff member does not provide this service"


class SlotUnavailable(BookingError):
    """Slot taken by stale client data or a lost race; re-fetch availability."""

    kind = "SlotUnavailable"
    status_code = 409
    code = ErrorCodes.SLOT_UNAVAILABLE
    default_message = "This time slot is no longer available"


class InvalidStatus(BookingError):
    kind = "InvalidStatus"
    code = ErrorCodes.INVALID_STATUS
    default_message = "Unknown booking status"


class InvalidTransition(BookingError):
    kind = "InvalidTransition"
    status_code = 409
    code = ErrorCodes.STATE_CONFLICT
    default_message = "Booking cannot move to that status"


class Forbidden(BookingError):
    kind = "Forbidden"
    status_code = 403
    code = ErrorCodes.AUTHORIZATION_DENIED
    default_message = "Not authorized to access this booking"


class NotFound(BookingError):
    kind = "NotFound"
    status_code = 404
    code = ErrorCodes.NOT_FOUND
    default_message = "Booking not found"


class InfrastructureError(Exception):
    """Persistence layer failure; distinct from business errors and safe to retry."""

    status_code = 503
    code = ErrorCodes.DATABASE_ERROR

    def __init__(self, message: str = "Booking storage is temporarily unavailable"):
        self.message = message
        super().__init__(message)
