"""
Availability & status engine

Pure functions over a day's bookings and a table's static attributes:
overlap detection, derived table status, overdue detection, time slots,
occupancy statistics and booking codes. Nothing here touches the database
or reads the clock; callers pass fresh snapshots and ``now`` explicitly.
"""

import logging
import math
import re
import secrets
import string
from collections import namedtuple
from datetime import date, datetime, time, timedelta
from enum import Enum

from errors import AmbiguousState, InvalidInput, InvalidTransition

logger = logging.getLogger(__name__)

# Configuration
DEFAULT_DURATION_MINUTES = 120
LATE_THRESHOLD_MINUTES = 15
BOOKING_CODE_PREFIX = 'BKD'
BOOKING_CODE_ALPHABET = string.ascii_uppercase + string.digits
BOOKING_CODE_RANDOM_LENGTH = 5

_TIME_RE = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?$')
_EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


class BookingStatus(str, Enum):
    CONFIRMED = 'confirmed'
    CHECKED_IN = 'checked_in'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class TableStatus(str, Enum):
    """Walk-in flag kept on the table row"""
    AVAILABLE = 'available'
    OCCUPIED = 'occupied'


class DisplayStatus(str, Enum):
    AVAILABLE = 'available'
    BOOKED = 'booked'
    CHECKED_IN = 'checked-in'
    OCCUPIED = 'occupied'
    OVERDUE = 'overdue'


# Bookings that still hold the table for display purposes
OPEN_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)

ALLOWED_TRANSITIONS = {
    BookingStatus.CONFIRMED: frozenset([BookingStatus.CHECKED_IN, BookingStatus.CANCELLED]),
    BookingStatus.CHECKED_IN: frozenset([BookingStatus.COMPLETED, BookingStatus.CANCELLED]),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

TableDisplay = namedtuple('TableDisplay', ['status', 'minutes_late', 'booking'])
OccupancyStats = namedtuple('OccupancyStats', ['available', 'booked', 'occupied', 'total', 'occupancy_percent'])
TableOption = namedtuple('TableOption', ['status', 'selectable'])


# Parsing helpers
def parse_time(value):
    """Parse ``HH:MM`` (or ``HH:MM:SS``) or a ``datetime.time`` to a minute-precision time"""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)

    if not isinstance(value, str):
        raise InvalidInput(f"Invalid time: {value!r}")

    match = _TIME_RE.match(value.strip())
    if not match:
        raise InvalidInput(f"Invalid time: {value!r}")

    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise InvalidInput(f"Invalid time: {value!r}")
    return time(hours, minutes)


def parse_date(value):
    """Parse ``YYYY-MM-DD`` or a ``datetime.date``"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidInput(f"Invalid date: {value!r}")
    try:
        return datetime.strptime(value.strip(), '%Y-%m-%d').date()
    except ValueError:
        raise InvalidInput(f"Invalid date: {value!r}")


def time_to_minutes(value):
    parsed = parse_time(value)
    return parsed.hour * 60 + parsed.minute


def _duration(value):
    if value is None:
        return DEFAULT_DURATION_MINUTES
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidInput(f"Invalid duration: {value!r}")
    return value


def format_time(value):
    """12-hour display, e.g. ``6:30 PM``"""
    parsed = parse_time(value)
    ampm = 'PM' if parsed.hour >= 12 else 'AM'
    hour12 = parsed.hour % 12 or 12
    return f"{hour12}:{parsed.minute:02d} {ampm}"


def format_date(value):
    """Long display, e.g. ``Sunday, October 18, 2026``"""
    parsed = parse_date(value)
    return f"{parsed:%A, %B} {parsed.day}, {parsed.year}"


# Validation
def is_valid_email(email):
    return bool(email) and bool(_EMAIL_RE.match(email))


def clean_text(value, field):
    """Strip a free-text field, None becomes an empty string"""
    if value is None:
        return ''
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be text")
    return value.strip()


def _positive_int(value, field):
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be a positive integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be a positive integer")
    if number < 1 or (isinstance(value, float) and value != number):
        raise InvalidInput(f"{field} must be a positive integer")
    return number


def validate_table(table):
    if isinstance(table.capacity, bool) or not isinstance(table.capacity, int) or table.capacity < 1:
        raise InvalidInput(f"Table {table.id} has invalid capacity {table.capacity!r}")
    base_status = table.base_status or TableStatus.AVAILABLE
    if base_status not in (TableStatus.AVAILABLE, TableStatus.OCCUPIED):
        raise InvalidInput(f"Table {table.id} has invalid status {base_status!r}")
    return table


def validate_booking_fields(fields, require_email=False):
    """Check and normalize the fields of a new booking.

    Name and phone must be non-empty. Email is optional unless
    ``require_email`` is set, but must look like an email when given.
    Returns a new dict with parsed dates/times and stripped strings.
    """
    name = clean_text(fields.get('customer_name'), 'customer_name')
    phone = clean_text(fields.get('customer_phone'), 'customer_phone')
    email = clean_text(fields.get('customer_email'), 'customer_email')

    if not name:
        raise InvalidInput('Please enter your name')
    if require_email and not email:
        raise InvalidInput('Please enter a valid email address')
    if email and not is_valid_email(email):
        raise InvalidInput('Please enter a valid email address')
    if not phone:
        raise InvalidInput('Please enter your phone number')

    if fields.get('table_id') is None:
        raise InvalidInput('Please select a table')

    cleaned = {
        'table_id': _positive_int(fields.get('table_id'), 'table_id'),
        'customer_name': name,
        'customer_phone': phone,
        'customer_email': email or None,
        'special_requests': clean_text(fields.get('special_requests'), 'special_requests') or None,
        'booking_date': parse_date(fields.get('booking_date')),
        'booking_time': parse_time(fields.get('booking_time')),
        'duration_minutes': _duration(fields.get('duration_minutes')),
        'party_size': _positive_int(fields.get('party_size'), 'party_size'),
    }
    return cleaned


def transition_status(current, new):
    """Return the new status if the lifecycle allows it, else raise InvalidTransition"""
    try:
        current_status = BookingStatus(current)
        new_status = BookingStatus(new)
    except ValueError:
        raise InvalidInput(f"Unknown booking status: {current!r} -> {new!r}")

    if new_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransition(current_status.value, new_status.value)
    return new_status


# Availability
def is_table_booked_at(bookings, table_id, slot_time, duration_minutes=DEFAULT_DURATION_MINUTES):
    """True if ``[slot_time, slot_time + duration)`` overlaps a non-cancelled booking on the table.

    Intervals are half-open, so a request starting exactly when a booking
    ends (or ending exactly when one starts) is not a conflict.
    """
    requested_start = time_to_minutes(slot_time)
    requested_end = requested_start + _duration(duration_minutes)

    for booking in bookings:
        if booking.table_id != table_id or booking.status == BookingStatus.CANCELLED:
            continue
        booking_start = time_to_minutes(booking.booking_time)
        booking_end = booking_start + _duration(booking.duration_minutes)
        if requested_start < booking_end and requested_end > booking_start:
            return True
    return False


def is_slot_in_past(slot_date, slot_time, now):
    slot_date = parse_date(slot_date)
    if slot_date != now.date():
        return False
    slot_at = datetime.combine(slot_date, parse_time(slot_time)).replace(tzinfo=now.tzinfo)
    return slot_at <= now


def active_bookings_for_table(bookings, table_id):
    return [b for b in bookings if b.table_id == table_id and b.status in OPEN_STATUSES]


def _bookings_overlap(first, second):
    first_start = time_to_minutes(first.booking_time)
    second_start = time_to_minutes(second.booking_time)
    return (first_start < second_start + _duration(second.duration_minutes)
            and second_start < first_start + _duration(first.duration_minutes))


def has_conflicting_bookings(active):
    """True if open bookings on one table hold it at the same time.

    Two checked-in parties always conflict. Otherwise bookings conflict
    when their half-open intervals overlap, so a lunch and a dinner
    booking on the same table are fine.
    """
    checked_in = [b for b in active if b.status == BookingStatus.CHECKED_IN]
    if len(checked_in) > 1:
        return True
    for index, first in enumerate(active):
        for second in active[index + 1:]:
            if _bookings_overlap(first, second):
                return True
    return False


def find_current_booking(bookings_for_table, table_id=None, strict=False):
    """The booking that currently holds the table, or None.

    The first open booking in iteration order wins. Open bookings that
    hold the table at the same time are a data anomaly: a warning is
    logged, or AmbiguousState is raised when ``strict`` is set.
    """
    active = [b for b in bookings_for_table
              if b.status in OPEN_STATUSES and (table_id is None or b.table_id == table_id)]
    if len(active) > 1 and has_conflicting_bookings(active):
        if strict:
            raise AmbiguousState(table_id, active)
        logger.warning("Table %s has %d overlapping active bookings, using %s",
                       table_id, len(active), active[0].booking_code)
    return active[0] if active else None


def find_ambiguous_tables(tables, bookings_for_day):
    """Ids of tables whose open bookings overlap"""
    return [t.id for t in tables
            if has_conflicting_bookings(active_bookings_for_table(bookings_for_day, t.id))]


def compute_table_display_status(table, bookings_for_table, now, is_today, strict=False):
    validate_table(table)
    booking = find_current_booking(bookings_for_table, table_id=table.id, strict=strict)

    if booking is None:
        if table.base_status == TableStatus.OCCUPIED:
            return TableDisplay(DisplayStatus.OCCUPIED, None, None)
        return TableDisplay(DisplayStatus.AVAILABLE, None, None)

    if booking.status == BookingStatus.CHECKED_IN:
        return TableDisplay(DisplayStatus.CHECKED_IN, None, booking)

    if is_today:
        scheduled = datetime.combine(
            parse_date(booking.booking_date or now.date()),
            parse_time(booking.booking_time),
        ).replace(tzinfo=now.tzinfo)
        late = now - scheduled
        if late >= timedelta(minutes=LATE_THRESHOLD_MINUTES):
            return TableDisplay(DisplayStatus.OVERDUE, int(late.total_seconds() // 60), booking)

    return TableDisplay(DisplayStatus.BOOKED, None, booking)


def describe_table_option(table, bookings, slot_time, party_size, is_today):
    """How a table shows up in the customer grid for a requested slot.

    The walk-in flag describes the dining room right now, so it only blocks
    bookings for today.
    """
    validate_table(table)
    if is_today and table.base_status == TableStatus.OCCUPIED:
        return TableOption('occupied', False)
    if is_table_booked_at(bookings, table.id, slot_time):
        return TableOption('booked', False)
    if table.capacity < party_size:
        return TableOption('unavailable', False)
    return TableOption('available', True)


def filter_tables(tables, property_filter='all'):
    if not property_filter or property_filter == 'all':
        return list(tables)
    return [t for t in tables
            if any(property_filter in prop for prop in (t.properties or []))]


def sort_bookings_for_day(bookings):
    """Open bookings ordered by time, for the staff list"""
    return sorted((b for b in bookings if b.status in OPEN_STATUSES),
                  key=lambda b: time_to_minutes(b.booking_time))


def compute_occupancy_stats(tables, bookings_for_day):
    table_ids = set(t.id for t in tables)
    booked_ids = set()
    checked_in_ids = set()
    for booking in bookings_for_day:
        if booking.table_id not in table_ids:
            continue
        if booking.status == BookingStatus.CONFIRMED:
            booked_ids.add(booking.table_id)
        elif booking.status == BookingStatus.CHECKED_IN:
            checked_in_ids.add(booking.table_id)

    available = 0
    walk_ins = 0
    for table in tables:
        validate_table(table)
        if table.id in booked_ids or table.id in checked_in_ids:
            continue
        if table.base_status == TableStatus.OCCUPIED:
            walk_ins += 1
        else:
            available += 1

    booked = len(booked_ids)
    occupied = walk_ins + len(checked_in_ids)
    total = len(tables)
    if total == 0:
        percent = 0
    else:
        # Half-up rounding, not banker's rounding
        percent = min(100, int(math.floor(100.0 * (occupied + booked) / total + 0.5)))
    return OccupancyStats(available, booked, occupied, total, percent)


# Slots and codes
class TimeSlots(object):
    """Restartable sequence of service-hour slots, ``open_hour:00`` to ``close_hour:00`` inclusive"""

    def __init__(self, open_hour=11, close_hour=22, step_minutes=30):
        for name, value in (('open_hour', open_hour), ('close_hour', close_hour),
                            ('step_minutes', step_minutes)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidInput(f"{name} must be an integer")
        if not 0 <= open_hour <= close_hour <= 23:
            raise InvalidInput(f"Invalid opening hours {open_hour}-{close_hour}")
        if step_minutes < 1:
            raise InvalidInput('step_minutes must be positive')
        self.open_hour = open_hour
        self.close_hour = close_hour
        self.step_minutes = step_minutes

    def __iter__(self):
        minutes = self.open_hour * 60
        end = self.close_hour * 60
        while minutes <= end:
            yield time(minutes // 60, minutes % 60)
            minutes += self.step_minutes

    def __len__(self):
        return (self.close_hour - self.open_hour) * 60 // self.step_minutes + 1

    def __repr__(self):
        return f"TimeSlots({self.open_hour}, {self.close_hour}, {self.step_minutes})"


def generate_time_slots(open_hour=11, close_hour=22, step_minutes=30):
    return TimeSlots(open_hour, close_hour, step_minutes)


def generate_booking_code(rng=None):
    """``BKD`` plus 5 random uppercase letters/digits. Uniqueness is the store's job."""
    choice = rng.choice if rng is not None else secrets.choice
    return BOOKING_CODE_PREFIX + ''.join(choice(BOOKING_CODE_ALPHABET)
                                         for _ in range(BOOKING_CODE_RANDOM_LENGTH))
