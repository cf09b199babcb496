from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint, event
from datetime import datetime
import uuid

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value is not None else None


class RestaurantTable(db.Model):
    __tablename__ = 'tables'

    id = db.Column(db.Integer, primary_key=True)
    table_number = db.Column(db.String(20), nullable=False)
    capacity = db.Column(db.Integer, nullable=False)
    properties = db.Column(db.JSON, nullable=False, default=list)
    # Walk-in flag only: 'available' or 'occupied'. Booked/checked-in is derived from bookings.
    base_status = db.Column(db.String(20), nullable=False, default='available')
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint('capacity >= 1', name='ck_table_capacity_positive'),
        CheckConstraint("base_status IN ('available', 'occupied')", name='ck_table_base_status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'table_number': self.table_number,
            'capacity': self.capacity,
            'properties': list(self.properties or []),
            'base_status': self.base_status,
            'updated_at': _iso(self.updated_at)
        }


class Booking(db.Model):
    __tablename__ = 'bookings'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_code = db.Column(db.String(16), unique=True, nullable=False, index=True)
    table_id = db.Column(db.Integer, db.ForeignKey('tables.id'), nullable=False, index=True)
    customer_name = db.Column(db.String(200), nullable=False)
    customer_phone = db.Column(db.String(50), nullable=False)
    customer_email = db.Column(db.String(200))
    booking_date = db.Column(db.Date, nullable=False, index=True)
    booking_time = db.Column(db.Time, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False, default=120)
    party_size = db.Column(db.Integer, nullable=False)
    special_requests = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default='confirmed')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    checked_in_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)

    table = db.relationship('RestaurantTable', backref=db.backref('bookings', lazy='dynamic'))

    __table_args__ = (
        CheckConstraint('duration_minutes >= 1', name='ck_booking_duration_positive'),
        CheckConstraint('party_size >= 1', name='ck_booking_party_size_positive'),
        CheckConstraint(
            "status IN ('confirmed', 'checked_in', 'completed', 'cancelled')",
            name='ck_booking_status'
        ),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'booking_code': self.booking_code,
            'table_id': self.table_id,
            'customer_name': self.customer_name,
            'customer_phone': self.customer_phone,
            'customer_email': self.customer_email,
            'booking_date': _iso(self.booking_date),
            'booking_time': self.booking_time.strftime('%H:%M') if self.booking_time else None,
            'duration_minutes': self.duration_minutes,
            'party_size': self.party_size,
            'special_requests': self.special_requests,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'checked_in_at': _iso(self.checked_in_at),
            'completed_at': _iso(self.completed_at),
            'cancelled_at': _iso(self.cancelled_at)
        }


class AuditLogEntry(db.Model):
    __tablename__ = 'audit_log'

    id = db.Column(db.Integer, primary_key=True)
    table_id = db.Column(db.Integer, db.ForeignKey('tables.id'), nullable=False, index=True)
    booking_id = db.Column(db.String(36), db.ForeignKey('bookings.id'), nullable=True)
    action_type = db.Column(db.String(50), nullable=False)
    action_by = db.Column(db.String(100), nullable=False, default='Staff')
    notes = db.Column(db.Text)
    previous_status = db.Column(db.String(20))
    new_status = db.Column(db.String(20))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'table_id': self.table_id,
            'booking_id': self.booking_id,
            'action_type': self.action_type,
            'action_by': self.action_by,
            'notes': self.notes,
            'previous_status': self.previous_status,
            'new_status': self.new_status,
            'created_at': _iso(self.created_at)
        }


# Audit entries are append-only
@event.listens_for(AuditLogEntry, 'before_update')
@event.listens_for(AuditLogEntry, 'before_delete')
def _refuse_audit_log_changes(mapper, connection, target):
    raise ValueError(f"Audit log entry {target.id} cannot be modified")
