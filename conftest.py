import os
import tempfile
from datetime import date, datetime, time

# Tests always run against a throwaway SQLite file
_db_dir = tempfile.mkdtemp(prefix='table-booking-tests-')
os.environ['DATABASE_URL'] = 'sqlite:///' + os.path.join(_db_dir, 'test.db')
os.environ['STAFF_PASSWORD'] = 'test-staff'
os.environ['SECRET_KEY'] = 'test-secret'

import pytest

import app as app_module
from models import Booking, RestaurantTable, db

# Sunday evening service
NOW = datetime(2026, 10, 18, 18, 16)
TODAY = NOW.date()


@pytest.fixture
def flask_app():
    app_module.app.config['TESTING'] = True
    with app_module.app.app_context():
        db.drop_all()
        db.create_all()
        yield app_module.app
        db.session.remove()


@pytest.fixture
def clock(monkeypatch):
    monkeypatch.setattr(app_module, '_now', lambda: NOW)
    return NOW


@pytest.fixture
def client(flask_app, clock):
    return flask_app.test_client()


@pytest.fixture
def staff_client(client):
    response = client.post('/staff/login', json={'password': 'test-staff'})
    assert response.status_code == 200
    return client


@pytest.fixture
def make_table(flask_app):
    def _make_table(table_number, capacity=4, properties=None, base_status='available'):
        table = RestaurantTable(
            table_number=table_number,
            capacity=capacity,
            properties=properties or [],
            base_status=base_status
        )
        db.session.add(table)
        db.session.commit()
        return table
    return _make_table


@pytest.fixture
def make_booking(flask_app):
    counter = {'n': 0}

    def _make_booking(table, at='18:00', on=TODAY, status='confirmed', duration=120,
                      party_size=2, name='Ada Lovelace', code=None):
        counter['n'] += 1
        hours, minutes = (int(part) for part in at.split(':'))
        booking = Booking(
            booking_code=code or f"BKDT{counter['n']:04d}",
            table_id=table.id,
            customer_name=name,
            customer_phone='555-0100',
            customer_email='ada@example.com',
            booking_date=on if isinstance(on, date) else date.fromisoformat(on),
            booking_time=time(hours, minutes),
            duration_minutes=duration,
            party_size=party_size,
            status=status
        )
        db.session.add(booking)
        db.session.commit()
        return booking
    return _make_booking
