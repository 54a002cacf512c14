"""
Scheduling Errors

Exceptions raised at component boundaries. Business-rule outcomes
(slot conflicts, invalid transitions) are returned as typed results
instead, see app.core.scheduling.models.
"""


class SchedulingError(Exception):
    """Base class for scheduling errors surfaced to the HTTP layer."""

    code: str = "scheduling_error"
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidDateFormat(SchedulingError):
    """Raised when a calendar date is not a well-formed YYYY-MM-DD string."""

    code = "InvalidDateFormat"


class InvalidTimeFormat(SchedulingError):
    """Raised when a wall clock is not HH:mm in 24-hour form."""

    code = "InvalidTimeFormat"


class InvalidBookingRequest(SchedulingError):
    """Raised when a booking request fails field validation."""

    code = "InvalidBookingRequest"


class NotFound(SchedulingError):
    """Raised when a booking does not exist."""

    code = "NotFound"
    status_code = 404


class Forbidden(SchedulingError):
    """Raised when the caller's role does not permit the operation."""

    code = "Forbidden"
    status_code = 403


class StoreUnavailable(SchedulingError):
    """Raised when the booking store fails or times out.

    Fatal for the current request. No partial writes are left behind.
    """

    code = "StoreUnavailable"
    status_code = 503
