"""
Tests for the persistence layer and change notifications
"""

import itertools
from datetime import date, datetime

import pytest

import store
from errors import (BookingCodeConflict, CodeGenerationExhausted, InvalidInput,
                    InvalidTransition, SlotUnavailable)
from models import AuditLogEntry, db

TODAY = date(2026, 10, 18)


class ScriptedRng(object):
    """Hands out the characters of the given code suffixes in order"""

    def __init__(self, *suffixes):
        self._chars = itertools.chain.from_iterable(suffixes)

    def choice(self, alphabet):
        return next(self._chars)


def booking_fields(table, at='19:00', **overrides):
    fields = {
        'table_id': table.id,
        'customer_name': 'Grace Hopper',
        'customer_phone': '555-0199',
        'customer_email': 'grace@example.com',
        'booking_date': TODAY.isoformat(),
        'booking_time': at,
        'party_size': 2,
    }
    fields.update(overrides)
    return fields


def test_fetch_bookings_for_date_excludes_cancelled(make_table, make_booking):
    table = make_table('T1')
    make_booking(table, at='12:00', status='cancelled')
    kept = make_booking(table, at='18:00')
    make_booking(table, at='18:00', on=date(2026, 10, 19))

    assert [b.id for b in store.fetch_bookings_for_date(TODAY)] == [kept.id]


def test_create_booking(make_table):
    table = make_table('T1')
    booking = store.create_booking(booking_fields(table, booking_code='BKDABCDE'))

    assert booking.status == 'confirmed'
    assert booking.duration_minutes == 120
    assert store.get_booking_by_code('bkdabcde').id == booking.id


def test_create_booking_rejects_overlap(make_table, make_booking):
    table = make_table('T1')
    make_booking(table, at='18:00')

    with pytest.raises(SlotUnavailable):
        store.create_booking(booking_fields(table, at='19:00', booking_code='BKDABCDE'))
    # Touching the end of the existing booking is fine
    store.create_booking(booking_fields(table, at='20:00', booking_code='BKDABCDE'))


def test_create_booking_rejects_party_larger_than_table(make_table):
    table = make_table('T1', capacity=2)
    with pytest.raises(InvalidInput, match='seats only 2'):
        store.create_booking(booking_fields(table, party_size=3, booking_code='BKDABCDE'))


def test_duplicate_code_raises_conflict(make_table, make_booking):
    table = make_table('T1')
    make_booking(table, at='12:00', code='BKDAAAAA')

    with pytest.raises(BookingCodeConflict):
        store.create_booking(booking_fields(table, booking_code='BKDAAAAA'))


def test_code_collision_is_retried(make_table, make_booking):
    table = make_table('T1')
    make_booking(table, at='12:00', code='BKDAAAAA')

    booking = store.create_booking_with_fresh_code(
        booking_fields(table), rng=ScriptedRng('AAAAA', 'BBBBB')
    )
    assert booking.booking_code == 'BKDBBBBB'


def test_code_generation_gives_up(make_table, make_booking):
    table = make_table('T1')
    make_booking(table, at='12:00', code='BKDAAAAA')

    with pytest.raises(CodeGenerationExhausted) as excinfo:
        store.create_booking_with_fresh_code(
            booking_fields(table), attempts=3, rng=ScriptedRng('AAAAA', 'AAAAA', 'AAAAA')
        )
    assert excinfo.value.attempts == 3


def test_update_booking_status_stamps_time_and_audits(make_table, make_booking):
    table = make_table('T1')
    booking = make_booking(table)
    stamp = datetime(2026, 10, 18, 18, 5)

    store.update_booking_status(booking.id, 'checked_in', now=stamp,
                                audit={'action_type': 'checked_in', 'notes': 'arrived'})
    assert booking.status == 'checked_in'
    assert booking.checked_in_at == stamp

    entry = AuditLogEntry.query.one()
    assert entry.previous_status == 'confirmed'
    assert entry.new_status == 'checked_in'
    assert entry.action_by == 'Staff'
    assert entry.booking_id == booking.id


def test_terminal_bookings_cannot_change(make_table, make_booking):
    table = make_table('T1')
    booking = make_booking(table, status='completed')

    with pytest.raises(InvalidTransition):
        store.update_booking_status(booking.id, 'checked_in')
    db.session.expire_all()
    assert store.get_booking(booking.id).status == 'completed'


def test_walk_in_flag(make_table):
    table = make_table('T1')
    store.set_table_base_status(table.id, 'occupied', audit={'action_type': 'occupied'})
    assert store.get_table(table.id).base_status == 'occupied'

    with pytest.raises(InvalidInput):
        store.set_table_base_status(table.id, 'booked')


def test_audit_log_is_append_only(make_table):
    table = make_table('T1')
    entry = store.append_audit_log(table.id, 'freed', notes='Table manually freed')

    entry.notes = 'rewritten'
    with pytest.raises(ValueError):
        db.session.commit()
    db.session.rollback()

    assert [e.notes for e in store.fetch_audit_log(table_id=table.id)] == ['Table manually freed']


def test_subscribers_see_committed_changes(make_table, make_booking):
    table = make_table('T1')
    table_changes = []
    booking_changes = []
    unsubscribe_tables = store.subscribe_to_table_changes(table_changes.append)
    unsubscribe_bookings = store.subscribe_to_booking_changes(booking_changes.append)
    try:
        store.set_table_base_status(table.id, 'occupied')
        booking = make_booking(table, at='20:00')
    finally:
        unsubscribe_tables()
        unsubscribe_bookings()

    assert [(c['event'], c['new']['base_status']) for c in table_changes] == [('UPDATE', 'occupied')]
    assert [(c['event'], c['new']['id']) for c in booking_changes] == [('INSERT', booking.id)]


def test_rolled_back_changes_are_not_delivered(make_table):
    table = make_table('T1')
    changes = []
    unsubscribe = store.subscribe_to_table_changes(changes.append)
    try:
        table.base_status = 'occupied'
        db.session.flush()
        db.session.rollback()
        assert changes == []

        store.set_table_base_status(table.id, 'occupied')
    finally:
        unsubscribe()

    assert len(changes) == 1
    assert changes[0]['event'] == 'UPDATE'
    assert changes[0]['new']['base_status'] == 'occupied'


def test_check_table_availability(make_table, make_booking):
    table = make_table('T1')
    make_booking(table, at='18:00')

    assert not store.check_table_availability(table.id, TODAY, '19:30')
    assert store.check_table_availability(table.id, TODAY, '20:00')
    assert store.check_table_availability(table.id, '2026-10-19', '18:00')
