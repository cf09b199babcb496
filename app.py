"""
Table Booking - Main Application
Customer reservation wizard and staff dashboard with live table updates
"""

from flask import Flask, request, jsonify, session
from flask_socketio import SocketIO
from flask_cors import CORS
from datetime import datetime, timedelta
from functools import wraps
import logging
import os
import re

import availability
import store
from availability import BookingStatus, DisplayStatus, TableStatus
from errors import (AmbiguousState, BookingError, BookingNotFound, CodeGenerationExhausted,
                    InvalidInput, SlotUnavailable, TableNotFound)
from models import db
from wizard import REVIEW_STEP, BookingWizard

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'your-secret-key-change-this')
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///bookings.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
app.config['SESSION_COOKIE_SECURE'] = os.environ.get('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(hours=2)
app.config['STAFF_PASSWORD'] = os.environ.get('STAFF_PASSWORD', 'staff123')

# Service hours and booking rules
app.config['OPEN_HOUR'] = int(os.environ.get('OPEN_HOUR', 11))
app.config['CLOSE_HOUR'] = int(os.environ.get('CLOSE_HOUR', 22))
app.config['SLOT_MINUTES'] = int(os.environ.get('SLOT_MINUTES', 30))
app.config['MAX_PARTY_SIZE'] = int(os.environ.get('MAX_PARTY_SIZE', 20))
app.config['BOOKING_HORIZON_MONTHS'] = int(os.environ.get('BOOKING_HORIZON_MONTHS', 2))
app.config['BOOKING_CODE_ATTEMPTS'] = int(os.environ.get('BOOKING_CODE_ATTEMPTS', 5))
app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO').upper()

logging.basicConfig(
    level=app.config['LOG_LEVEL'],
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize extensions
db.init_app(app)
socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')
CORS(app)

# Create tables
with app.app_context():
    db.create_all()

ERROR_STATUS = (
    (InvalidInput, 400),
    (BookingNotFound, 404),
    (TableNotFound, 404),
    (SlotUnavailable, 409),
    (AmbiguousState, 409),
    (CodeGenerationExhausted, 503),
)


# Live updates: every committed change is pushed, clients refetch the views they show
def _broadcast_table_change(change):
    socketio.emit('table_update', change, namespace='/')


def _broadcast_booking_change(change):
    socketio.emit('booking_update', change, namespace='/')


store.subscribe_to_table_changes(_broadcast_table_change)
store.subscribe_to_booking_changes(_broadcast_booking_change)


# Staff decorator
def require_staff(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('is_staff'):
            return jsonify({'success': False, 'error': 'Staff login required'}), 401
        return f(*args, **kwargs)
    return decorated_function


# Helper functions
def _now():
    return datetime.now()


def _today():
    return _now().date()


def _time_slots():
    return availability.generate_time_slots(
        app.config['OPEN_HOUR'], app.config['CLOSE_HOUR'], app.config['SLOT_MINUTES']
    )


def _payload():
    return request.get_json(silent=True) or {}


def _booking_error(error):
    for error_class, status in ERROR_STATUS:
        if isinstance(error, error_class):
            return jsonify({'success': False, 'error': str(error)}), status
    logger.error("Unhandled booking error: %s", error)
    return jsonify({'success': False, 'error': str(error)}), 500


def _server_error(error):
    db.session.rollback()
    logger.exception("Request failed: %s", error)
    return jsonify({'success': False, 'error': str(error)}), 500


def _load_wizard():
    return BookingWizard.from_dict(
        session.get('wizard'),
        _today(),
        max_party_size=app.config['MAX_PARTY_SIZE'],
        horizon_months=app.config['BOOKING_HORIZON_MONTHS']
    )


def _save_wizard(wizard):
    session['wizard'] = wizard.to_dict()
    session.permanent = True


def _next_slot(now):
    """Start of the next half-hour slot, or now when it falls on one"""
    minutes = min(-(-(now.hour * 60 + now.minute) // 30) * 30, 23 * 60 + 30)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _phone_placeholder_email(phone):
    digits = re.sub(r'\s+', '', phone)
    return f"{digits}@phone.booking" if digits else None


def _check_slot(slot_date, slot_time):
    if slot_time not in set(_time_slots()):
        raise InvalidInput(f"{slot_time:%H:%M} is not a bookable time slot")
    if availability.is_slot_in_past(slot_date, slot_time, _now()):
        raise InvalidInput('That time slot has already passed')


def _booking_summary(booking, table=None):
    data = booking.to_dict()
    data['date_display'] = availability.format_date(booking.booking_date)
    data['time_display'] = availability.format_time(booking.booking_time)
    if table is not None:
        data['table_number'] = table.table_number
        data['table_capacity'] = table.capacity
    return data


def _table_actions(display):
    """Staff actions offered for a table in its current state"""
    if display.status == DisplayStatus.AVAILABLE:
        return ['walk-in', 'phone-booking']
    if display.status in (DisplayStatus.BOOKED, DisplayStatus.OVERDUE):
        return ['check-in', 'cancel']
    if display.status == DisplayStatus.CHECKED_IN:
        return ['complete']
    return ['free']


def get_dashboard(view_date, now):
    """Table statuses, booking list and stats for one service day"""
    is_today = view_date == now.date()
    tables = store.fetch_tables()
    bookings = store.fetch_bookings_for_date(view_date)
    tables_by_id = {t.id: t for t in tables}

    table_views = []
    for table in tables:
        display = availability.compute_table_display_status(table, bookings, now, is_today)
        view = table.to_dict()
        view['status'] = display.status.value
        view['minutes_late'] = display.minutes_late
        view['booking'] = display.booking.to_dict() if display.booking else None
        if display.status == DisplayStatus.CHECKED_IN:
            view['time_display'] = 'Checked In'
        elif display.booking is not None:
            view['time_display'] = availability.format_time(display.booking.booking_time)
        else:
            view['time_display'] = ''
        view['actions'] = _table_actions(display)
        table_views.append(view)

    booking_views = []
    for booking in availability.sort_bookings_for_day(bookings):
        table = tables_by_id.get(booking.table_id)
        booking_views.append(_booking_summary(booking, table))

    stats = availability.compute_occupancy_stats(tables, bookings)
    return {
        'date': view_date.isoformat(),
        'date_display': availability.format_date(view_date),
        'is_today': is_today,
        'tables': table_views,
        'bookings': booking_views,
        'stats': stats._asdict(),
        'ambiguous_tables': availability.find_ambiguous_tables(tables, bookings)
    }


# Customer routes
@app.route('/api/time-slots')
def time_slots_api():
    """Time slots for a date, with past slots disabled"""
    try:
        slot_date = availability.parse_date(request.args.get('date') or _today().isoformat())
        now = _now()
        slots = [{
            'time': slot.strftime('%H:%M'),
            'label': availability.format_time(slot),
            'disabled': availability.is_slot_in_past(slot_date, slot, now)
        } for slot in _time_slots()]
        return jsonify({
            'success': True,
            'date': slot_date.isoformat(),
            'date_display': availability.format_date(slot_date),
            'slots': slots
        })
    except BookingError as e:
        return _booking_error(e)
    except Exception as e:
        return _server_error(e)


@app.route('/api/tables')
def tables_api():
    """Tables with their availability for a date, time and party size"""
    try:
        slot_date = availability.parse_date(request.args.get('date') or _today().isoformat())
        slot_time = availability.parse_time(request.args.get('time') or '')
        party_size = int(request.args.get('party_size', 2))
        property_filter = request.args.get('filter', 'all')

        tables = availability.filter_tables(store.fetch_tables(), property_filter)
        bookings = store.fetch_bookings_for_date(slot_date)
        is_today = slot_date == _today()

        result = []
        for table in tables:
            option = availability.describe_table_option(table, bookings, slot_time, party_size, is_today)
            view = table.to_dict()
            view['status'] = option.status
            view['selectable'] = option.selectable
            result.append(view)

        return jsonify({'success': True, 'tables': result})
    except BookingError as e:
        return _booking_error(e)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        return _server_error(e)


@app.route('/api/wizard', methods=['GET'])
def wizard_state_api():
    """Current wizard state"""
    return jsonify({'success': True, 'wizard': _load_wizard().to_dict()})


@app.route('/api/wizard', methods=['POST'])
def wizard_update_api():
    """Update wizard fields: date, party size, time, filter, table, contact details"""
    try:
        data = _payload()
        wizard = _load_wizard()

        if 'date' in data:
            wizard.set_date(data['date'])
        if 'party_size' in data:
            wizard.set_party_size(data['party_size'])
        if 'party_size_delta' in data:
            wizard.change_party_size(int(data['party_size_delta']))
        if 'time' in data:
            slot_time = availability.parse_time(data['time'])
            _check_slot(wizard.date, slot_time)
            wizard.select_time(slot_time)
        if 'filter' in data:
            wizard.set_filter(data['filter'])
        if 'table_id' in data:
            if wizard.time is None:
                raise InvalidInput('Please select a time slot')
            table = store.get_table(data['table_id'])
            bookings = store.fetch_bookings_for_date(wizard.date)
            option = availability.describe_table_option(
                table, bookings, wizard.time, wizard.party_size, wizard.date == _today()
            )
            if not option.selectable:
                raise SlotUnavailable(f"Table {table.table_number} is {option.status}")
            wizard.select_table(table)

        wizard.set_customer(
            name=data.get('customer_name'),
            email=data.get('customer_email'),
            phone=data.get('customer_phone'),
            special_requests=data.get('special_requests')
        )

        _save_wizard(wizard)
        return jsonify({'success': True, 'wizard': wizard.to_dict()})
    except BookingError as e:
        return _booking_error(e)
    except (TypeError, ValueError) as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        return _server_error(e)


@app.route('/api/wizard/next', methods=['POST'])
def wizard_next_api():
    """Validate the current step and move forward"""
    try:
        wizard = _load_wizard()
        wizard.next_step()
        _save_wizard(wizard)
        return jsonify({'success': True, 'wizard': wizard.to_dict()})
    except BookingError as e:
        return _booking_error(e)


@app.route('/api/wizard/back', methods=['POST'])
def wizard_back_api():
    wizard = _load_wizard()
    wizard.previous_step()
    _save_wizard(wizard)
    return jsonify({'success': True, 'wizard': wizard.to_dict()})


@app.route('/api/wizard/reset', methods=['POST'])
def wizard_reset_api():
    session.pop('wizard', None)
    return jsonify({'success': True, 'wizard': _load_wizard().to_dict()})


@app.route('/api/wizard/confirm', methods=['POST'])
def wizard_confirm_api():
    """Create the booking from a completed wizard"""
    try:
        wizard = _load_wizard()
        if wizard.step != REVIEW_STEP:
            raise InvalidInput('Please complete all booking steps first')
        fields = wizard.booking_fields()
        _check_slot(wizard.date, wizard.time)

        booking = store.create_booking_with_fresh_code(
            fields,
            attempts=app.config['BOOKING_CODE_ATTEMPTS'],
            require_email=True,
            audit={
                'action_type': 'booked',
                'action_by': 'Customer',
                'notes': f"Online booking: {wizard.customer_name}"
            }
        )

        session.pop('wizard', None)
        session['last_booking'] = booking.booking_code

        return jsonify({
            'success': True,
            'booking_code': booking.booking_code,
            'booking': _booking_summary(booking, booking.table)
        })
    except BookingError as e:
        return _booking_error(e)
    except Exception as e:
        return _server_error(e)


@app.route('/api/bookings/<code>')
def booking_lookup_api(code):
    """Look up a booking by its code"""
    try:
        booking = store.get_booking_by_code(code)
        return jsonify({'success': True, 'booking': _booking_summary(booking, booking.table)})
    except BookingError as e:
        return _booking_error(e)
    except Exception as e:
        return _server_error(e)


# Staff routes
@app.route('/staff/login', methods=['POST'])
def staff_login():
    """Staff login with the shared password"""
    password = _payload().get('password') or request.form.get('password')

    if password and password == app.config['STAFF_PASSWORD']:
        session['is_staff'] = True
        session.permanent = True
        return jsonify({'success': True})

    logger.warning("Failed staff login from %s", request.remote_addr)
    return jsonify({'success': False, 'error': 'Invalid password'}), 401


@app.route('/staff/logout', methods=['POST'])
def staff_logout():
    session.pop('is_staff', None)
    return jsonify({'success': True})


@app.route('/api/staff/dashboard')
@require_staff
def staff_dashboard_api():
    """Tables, bookings and occupancy for a day"""
    try:
        view_date = availability.parse_date(request.args.get('date') or _today().isoformat())
        dashboard = get_dashboard(view_date, _now())
        return jsonify(dict(dashboard, success=True))
    except BookingError as e:
        return _booking_error(e)
    except Exception as e:
        return _server_error(e)


def _change_booking_status(booking_id, new_status, describe):
    try:
        actor = _payload().get('actor') or 'Staff'
        booking = store.get_booking(booking_id)
        booking = store.update_booking_status(
            booking_id,
            new_status,
            now=_now(),
            audit={
                'action_type': new_status.value,
                'action_by': actor,
                'notes': describe(booking)
            }
        )
        return jsonify({'success': True, 'booking': booking.to_dict()})
    except BookingError as e:
        return _booking_error(e)
    except Exception as e:
        return _server_error(e)


@app.route('/api/staff/bookings/<booking_id>/check-in', methods=['POST'])
@require_staff
def check_in_api(booking_id):
    return _change_booking_status(
        booking_id, BookingStatus.CHECKED_IN,
        lambda b: f"Customer {b.customer_name} checked in"
    )


@app.route('/api/staff/bookings/<booking_id>/cancel', methods=['POST'])
@require_staff
def cancel_booking_api(booking_id):
    return _change_booking_status(
        booking_id, BookingStatus.CANCELLED,
        lambda b: f"Booking {b.booking_code} cancelled"
    )


@app.route('/api/staff/bookings/<booking_id>/complete', methods=['POST'])
@require_staff
def complete_booking_api(booking_id):
    return _change_booking_status(
        booking_id, BookingStatus.COMPLETED,
        lambda b: 'Booking completed, table freed'
    )


@app.route('/api/staff/tables/<int:table_id>/walk-in', methods=['POST'])
@require_staff
def walk_in_api(table_id):
    """Seat a walk-in party at a free table"""
    try:
        data = _payload()
        customer_name = availability.clean_text(data.get('customer_name'), 'customer_name') or 'Walk-in'
        party_size = int(data.get('party_size') or 1)
        if party_size < 1:
            raise InvalidInput('Party size must be at least 1')

        now = _now()
        table = store.get_table(table_id)
        bookings = store.fetch_bookings_for_date(now.date())
        display = availability.compute_table_display_status(table, bookings, now, True)
        if display.status != DisplayStatus.AVAILABLE:
            raise SlotUnavailable(f"Table {table.table_number} is {display.status.value}")

        table = store.set_table_base_status(table_id, TableStatus.OCCUPIED, audit={
            'action_type': 'occupied',
            'action_by': data.get('actor') or 'Staff',
            'notes': f"Walk-in: {customer_name} ({party_size} guests)"
        })
        return jsonify({'success': True, 'table': table.to_dict()})
    except BookingError as e:
        return _booking_error(e)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        return _server_error(e)


@app.route('/api/staff/tables/<int:table_id>/free', methods=['POST'])
@require_staff
def free_table_api(table_id):
    """Clear the walk-in flag of a table"""
    try:
        table = store.get_table(table_id)
        if table.base_status != TableStatus.OCCUPIED:
            raise InvalidInput(f"Table {table.table_number} is not occupied by a walk-in")

        table = store.set_table_base_status(table_id, TableStatus.AVAILABLE, audit={
            'action_type': 'freed',
            'action_by': _payload().get('actor') or 'Staff',
            'notes': 'Table manually freed'
        })
        return jsonify({'success': True, 'table': table.to_dict()})
    except BookingError as e:
        return _booking_error(e)
    except Exception as e:
        return _server_error(e)


@app.route('/api/staff/tables/<int:table_id>/phone-booking', methods=['POST'])
@require_staff
def phone_booking_api(table_id):
    """Book a table on behalf of a caller"""
    try:
        data = _payload()
        now = _now()
        customer_name = availability.clean_text(data.get('customer_name'), 'customer_name')
        phone = availability.clean_text(data.get('customer_phone'), 'customer_phone')
        booking_time = data.get('booking_time') or _next_slot(now)

        fields = {
            'table_id': table_id,
            'customer_name': customer_name,
            'customer_phone': phone,
            'customer_email': data.get('customer_email') or _phone_placeholder_email(phone),
            'special_requests': data.get('special_requests') or 'Phone booking',
            'booking_date': data.get('booking_date') or now.date(),
            'booking_time': booking_time,
            'duration_minutes': data.get('duration_minutes'),
            'party_size': data.get('party_size'),
        }
        booking = store.create_booking_with_fresh_code(
            fields,
            attempts=app.config['BOOKING_CODE_ATTEMPTS'],
            audit={
                'action_type': 'booked',
                'action_by': data.get('actor') or 'Staff',
                'notes': f"Phone booking: {customer_name}"
            }
        )
        return jsonify({
            'success': True,
            'booking_code': booking.booking_code,
            'booking': _booking_summary(booking, booking.table)
        })
    except BookingError as e:
        return _booking_error(e)
    except Exception as e:
        return _server_error(e)


@app.route('/api/staff/audit-log')
@require_staff
def audit_log_api():
    """Most recent audit entries, optionally for one table"""
    try:
        table_id = request.args.get('table_id', type=int)
        limit = min(request.args.get('limit', 100, type=int), 500)
        entries = store.fetch_audit_log(table_id=table_id, limit=limit)
        return jsonify({'success': True, 'entries': [e.to_dict() for e in entries]})
    except Exception as e:
        return _server_error(e)


if __name__ == '__main__':
    socketio.run(app, debug=True, host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
