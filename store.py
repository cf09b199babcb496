"""
Persistence and change notifications for tables, bookings and the audit log
"""

import logging
from datetime import datetime

from sqlalchemy import event, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from availability import (BookingStatus, TableStatus, generate_booking_code,
                          is_table_booked_at, parse_date, transition_status,
                          validate_booking_fields)
from errors import (BookingCodeConflict, BookingNotFound, CodeGenerationExhausted,
                    InvalidInput, SlotUnavailable, TableNotFound)
from models import AuditLogEntry, Booking, RestaurantTable, db

logger = logging.getLogger(__name__)

DEFAULT_CODE_ATTEMPTS = 5

_STATUS_TIMESTAMPS = {
    BookingStatus.CHECKED_IN: 'checked_in_at',
    BookingStatus.COMPLETED: 'completed_at',
    BookingStatus.CANCELLED: 'cancelled_at',
}


# Reads
def fetch_tables():
    return RestaurantTable.query.order_by(RestaurantTable.id).all()


def get_table(table_id):
    table = db.session.get(RestaurantTable, table_id)
    if table is None:
        raise TableNotFound(f"Table {table_id} not found")
    return table


def fetch_bookings_for_date(booking_date):
    """All bookings on a date except cancelled ones"""
    return (Booking.query
            .filter(Booking.booking_date == parse_date(booking_date),
                    Booking.status != BookingStatus.CANCELLED.value)
            .order_by(Booking.booking_time, Booking.created_at)
            .all())


def get_booking(booking_id):
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFound(f"Booking {booking_id} not found")
    return booking


def get_booking_by_code(code):
    booking = Booking.query.filter_by(booking_code=(code or '').strip().upper()).first()
    if booking is None:
        raise BookingNotFound(f"Booking {code} not found")
    return booking


def fetch_audit_log(table_id=None, limit=100):
    query = AuditLogEntry.query
    if table_id is not None:
        query = query.filter_by(table_id=table_id)
    return query.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc()).limit(limit).all()


def check_table_availability(table_id, booking_date, booking_time, duration_minutes=120):
    return not is_table_booked_at(fetch_bookings_for_date(booking_date), table_id,
                                  booking_time, duration_minutes)


# Writes
def _audit_entry(table_id, booking_id=None, audit=None, previous_status=None, new_status=None):
    return AuditLogEntry(
        table_id=table_id,
        booking_id=booking_id,
        action_type=audit.get('action_type') or new_status,
        action_by=audit.get('action_by') or 'Staff',
        notes=audit.get('notes'),
        previous_status=audit.get('previous_status', previous_status),
        new_status=audit.get('new_status', new_status)
    )


def create_booking(fields, require_email=False, audit=None):
    """Insert a confirmed booking.

    The overlap check runs again inside the transaction with the table row
    locked. A duplicate ``booking_code`` raises BookingCodeConflict so the
    caller can retry with a fresh code.
    """
    code = (fields.get('booking_code') or '').strip()
    if not code:
        raise InvalidInput('booking_code is required')
    cleaned = validate_booking_fields(fields, require_email=require_email)

    try:
        table = (RestaurantTable.query
                 .filter_by(id=cleaned['table_id'])
                 .with_for_update()
                 .first())
        if table is None:
            raise TableNotFound(f"Table {cleaned['table_id']} not found")
        if cleaned['party_size'] > table.capacity:
            raise InvalidInput(f"Table {table.table_number} seats only {table.capacity} guests")

        existing = (Booking.query
                    .filter(Booking.table_id == table.id,
                            Booking.booking_date == cleaned['booking_date'],
                            Booking.status != BookingStatus.CANCELLED.value)
                    .all())
        if is_table_booked_at(existing, table.id, cleaned['booking_time'],
                              cleaned['duration_minutes']):
            raise SlotUnavailable(
                f"Table {table.table_number} is already booked at {cleaned['booking_time']:%H:%M}"
            )

        booking = Booking(booking_code=code, status=BookingStatus.CONFIRMED.value, **cleaned)
        db.session.add(booking)
        if audit is not None:
            db.session.flush()
            db.session.add(_audit_entry(table.id, booking.id, audit,
                                        TableStatus.AVAILABLE.value, 'booked'))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if Booking.query.filter_by(booking_code=code).first() is not None:
            raise BookingCodeConflict(code)
        raise
    except Exception:
        db.session.rollback()
        raise

    logger.info("Created booking %s for table %s on %s %s",
                booking.booking_code, booking.table_id, booking.booking_date, booking.booking_time)
    return booking


def create_booking_with_fresh_code(fields, attempts=DEFAULT_CODE_ATTEMPTS, rng=None, **kwargs):
    """Create a booking, drawing a new random code on each collision"""
    for attempt in range(1, attempts + 1):
        code = generate_booking_code(rng)
        try:
            return create_booking(dict(fields, booking_code=code), **kwargs)
        except BookingCodeConflict:
            logger.warning("Booking code %s collided (attempt %d/%d)", code, attempt, attempts)
    raise CodeGenerationExhausted(attempts)


def update_booking_status(booking_id, new_status, now=None, audit=None):
    booking = get_booking(booking_id)
    previous = booking.status
    status = transition_status(previous, new_status)

    try:
        booking.status = status.value
        setattr(booking, _STATUS_TIMESTAMPS[status], now or datetime.utcnow())
        if audit is not None:
            db.session.add(_audit_entry(booking.table_id, booking.id, audit, previous, status.value))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Booking %s: %s -> %s", booking.booking_code, previous, status.value)
    return booking


def set_table_base_status(table_id, new_status, audit=None):
    """Set or clear the walk-in flag of a table"""
    try:
        status = TableStatus(new_status)
    except ValueError:
        raise InvalidInput(f"Invalid table status: {new_status!r}")

    table = get_table(table_id)
    previous = table.base_status
    try:
        table.base_status = status.value
        if audit is not None:
            db.session.add(_audit_entry(table.id, None, audit, previous, status.value))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Table %s: %s -> %s", table.table_number, previous, status.value)
    return table


def append_audit_log(table_id, action_type, action_by='Staff', booking_id=None,
                     notes=None, previous_status=None, new_status=None):
    entry = AuditLogEntry(
        table_id=table_id,
        booking_id=booking_id,
        action_type=action_type,
        action_by=action_by,
        notes=notes,
        previous_status=previous_status,
        new_status=new_status
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return entry


# Change notifications
_subscribers = {
    RestaurantTable.__tablename__: [],
    Booking.__tablename__: [],
}


def _subscribe(table_name, callback):
    _subscribers[table_name].append(callback)

    def unsubscribe():
        if callback in _subscribers[table_name]:
            _subscribers[table_name].remove(callback)
    return unsubscribe


def subscribe_to_table_changes(callback):
    """Call ``callback(change)`` after every committed change to a table row"""
    return _subscribe(RestaurantTable.__tablename__, callback)


def subscribe_to_booking_changes(callback):
    """Call ``callback(change)`` after every committed change to a booking"""
    return _subscribe(Booking.__tablename__, callback)


@event.listens_for(Session, 'after_flush')
def _collect_changes(session, flush_context):
    pending = session.info.setdefault('pending_changes', [])
    for kind, objects in (('INSERT', session.new), ('UPDATE', session.dirty),
                          ('DELETE', session.deleted)):
        for obj in objects:
            table_name = getattr(obj, '__tablename__', None)
            if table_name not in _subscribers:
                continue
            if kind == 'UPDATE' and not session.is_modified(obj):
                continue
            if kind == 'DELETE':
                pending.append({'event': kind, 'table': table_name,
                                'old': {'id': inspect(obj).identity[0]}})
            else:
                pending.append({'event': kind, 'table': table_name, 'new': obj.to_dict()})


@event.listens_for(Session, 'after_commit')
def _dispatch_changes(session):
    for change in session.info.pop('pending_changes', []):
        for callback in list(_subscribers[change['table']]):
            try:
                callback(change)
            except Exception:
                logger.exception("Change subscriber failed for %s %s", change['event'], change['table'])


@event.listens_for(Session, 'after_rollback')
def _discard_changes(session):
    session.info.pop('pending_changes', None)
