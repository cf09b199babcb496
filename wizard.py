"""
Customer reservation wizard

The wizard state lives in one explicit object that is serialized into the
Flask session between requests. Steps:

1. date and party size
2. time slot and table
3. contact details
4. review and confirm
"""

import calendar
from datetime import date

from availability import clean_text, is_valid_email, parse_date, parse_time
from errors import InvalidInput

FIRST_STEP = 1
REVIEW_STEP = 4
DEFAULT_PARTY_SIZE = 2


def add_months(day, months):
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


class BookingWizard(object):
    FIELDS = ('step', 'date', 'time', 'party_size', 'table_id', 'table_number',
              'table_capacity', 'table_properties', 'table_filter', 'customer_name',
              'customer_email', 'customer_phone', 'special_requests')

    def __init__(self, today, max_party_size=20, horizon_months=2):
        self.today = today
        self.max_party_size = max_party_size
        self.horizon_months = horizon_months

        self.step = FIRST_STEP
        self.date = today
        self.time = None
        self.party_size = DEFAULT_PARTY_SIZE
        self.table_id = None
        self.table_number = None
        self.table_capacity = None
        self.table_properties = []
        self.table_filter = 'all'
        self.customer_name = ''
        self.customer_email = ''
        self.customer_phone = ''
        self.special_requests = ''

    @property
    def max_date(self):
        return add_months(self.today, self.horizon_months)

    # Session round trip
    def to_dict(self):
        data = {name: getattr(self, name) for name in self.FIELDS}
        data['date'] = self.date.isoformat() if self.date else None
        data['time'] = self.time.strftime('%H:%M') if self.time else None
        return data

    @classmethod
    def from_dict(cls, data, today, **kwargs):
        wizard = cls(today, **kwargs)
        if not data:
            return wizard
        for name in cls.FIELDS:
            if name in data:
                setattr(wizard, name, data[name])
        wizard.date = parse_date(data['date']) if data.get('date') else None
        wizard.time = parse_time(data['time']) if data.get('time') else None
        wizard.table_properties = list(data.get('table_properties') or [])
        # A stored date that has slipped into the past is no longer bookable
        if wizard.date is not None and wizard.date < today:
            wizard.date = today
        return wizard

    # Field updates
    def set_date(self, value):
        chosen = parse_date(value)
        if chosen < self.today or chosen > self.max_date:
            raise InvalidInput(
                f"Please choose a date between {self.today.isoformat()} and {self.max_date.isoformat()}"
            )
        if chosen != self.date:
            self.clear_time()
        self.date = chosen

    def set_party_size(self, value):
        try:
            size = int(value)
        except (TypeError, ValueError):
            raise InvalidInput('Party size must be a number')
        if not 1 <= size <= self.max_party_size:
            raise InvalidInput(f"Party size must be between 1 and {self.max_party_size}")
        if size != self.party_size:
            self.clear_table()
        self.party_size = size

    def change_party_size(self, delta):
        """Stepper buttons: stay within 1..max instead of failing"""
        self.set_party_size(max(1, min(self.max_party_size, self.party_size + delta)))

    def select_time(self, value):
        self.time = parse_time(value)
        self.clear_table()

    def select_table(self, table):
        self.table_id = table.id
        self.table_number = table.table_number
        self.table_capacity = table.capacity
        self.table_properties = list(table.properties or [])

    def set_filter(self, value):
        self.table_filter = clean_text(value, 'filter') or 'all'

    def set_customer(self, name=None, email=None, phone=None, special_requests=None):
        if name is not None:
            self.customer_name = clean_text(name, 'customer_name')
        if email is not None:
            self.customer_email = clean_text(email, 'customer_email')
        if phone is not None:
            self.customer_phone = clean_text(phone, 'customer_phone')
        if special_requests is not None:
            self.special_requests = clean_text(special_requests, 'special_requests')

    def clear_table(self):
        self.table_id = None
        self.table_number = None
        self.table_capacity = None
        self.table_properties = []

    def clear_time(self):
        self.time = None
        self.clear_table()

    # Navigation
    def validate_step(self, step):
        if step == 1:
            if not self.date:
                raise InvalidInput('Please select a date')
        elif step == 2:
            if not self.time:
                raise InvalidInput('Please select a time slot')
            if not self.table_id:
                raise InvalidInput('Please select a table')
        elif step == 3:
            if not self.customer_name:
                raise InvalidInput('Please enter your name')
            if not self.customer_email or not is_valid_email(self.customer_email):
                raise InvalidInput('Please enter a valid email address')
            if not self.customer_phone:
                raise InvalidInput('Please enter your phone number')

    def go_to_step(self, step):
        if not FIRST_STEP <= step <= REVIEW_STEP:
            raise InvalidInput(f"Unknown step {step}")
        if step == 2:
            self.clear_time()
        self.step = step

    def next_step(self):
        if self.step >= REVIEW_STEP:
            raise InvalidInput('Booking is ready to confirm')
        self.validate_step(self.step)
        self.go_to_step(self.step + 1)

    def previous_step(self):
        if self.step > FIRST_STEP:
            self.go_to_step(self.step - 1)

    def booking_fields(self):
        """Payload for creating the booking; every step must be valid"""
        for step in range(FIRST_STEP, REVIEW_STEP):
            self.validate_step(step)
        return {
            'table_id': self.table_id,
            'customer_name': self.customer_name,
            'customer_email': self.customer_email,
            'customer_phone': self.customer_phone,
            'special_requests': self.special_requests,
            'booking_date': self.date,
            'booking_time': self.time,
            'duration_minutes': 120,
            'party_size': self.party_size,
        }
