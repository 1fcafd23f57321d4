# ======================================
# errors.py - booking error taxonomy
# ======================================


class BookingError(Exception):
    """Base class for errors that map onto an HTTP status."""
    status_code = 500
    default_message = "Booking error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BookingError):
    status_code = 400
    default_message = "Missing required fields"


class ConflictError(BookingError):
    # 400 rather than 409, existing clients check for it
    status_code = 400
    default_message = "Table already booked"


class NotFoundError(BookingError):
    status_code = 404
    default_message = "Booking not found"


class StoreError(BookingError):
    """The persistence backend failed (unreachable, I/O, driver error)."""
    status_code = 500
    default_message = "Storage backend failure"
