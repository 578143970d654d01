"""
Error taxonomy for booking operations.

Route handlers never build these into HTTP responses themselves; the
exception handlers registered in ``app.main`` map each kind to its status.
"""


class BookingError(Exception):
    """Base class for all booking-level errors."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Malformed request, or unknown/inactive provider or service."""

    status_code = 400


class ConflictError(BookingError):
    """The requested interval was valid but is no longer free."""

    status_code = 409


class NotFoundError(BookingError):
    """Raised when a staff operation targets a record outside its business."""

    status_code = 404
