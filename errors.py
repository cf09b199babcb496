"""
Error types raised by the booking engine and the store
"""


class BookingError(Exception):
    """Base class for booking errors"""


class InvalidInput(BookingError, ValueError):
    """Malformed time, date, capacity or booking field"""


class InvalidTransition(InvalidInput):
    """Booking status change not allowed by the lifecycle"""

    def __init__(self, current, new):
        super().__init__(f"Cannot change booking from {current} to {new}")
        self.current = current
        self.new = new


class AmbiguousState(BookingError):
    """More than one active booking found for a single table"""

    def __init__(self, table_id, bookings):
        super().__init__(f"Table {table_id} has {len(bookings)} active bookings")
        self.table_id = table_id
        self.bookings = bookings


class BookingNotFound(BookingError):
    pass


class TableNotFound(BookingError):
    pass


class SlotUnavailable(BookingError):
    """Requested table/time overlaps an existing booking"""


class BookingCodeConflict(BookingError):
    """Generated booking code already exists in the store"""

    def __init__(self, code):
        super().__init__(f"Booking code {code} already exists")
        self.code = code


class CodeGenerationExhausted(BookingError):
    """No unused booking code found within the retry limit"""

    def __init__(self, attempts):
        super().__init__(f"Could not generate a unique booking code after {attempts} attempts")
        self.attempts = attempts
