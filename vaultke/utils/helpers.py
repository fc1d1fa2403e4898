"""
Helper Functions
Utility functions used throughout the application
"""

import calendar
import json
import uuid
from datetime import datetime, timezone


def utcnow():
    """Current UTC time as a naive datetime (the form SQLite stores)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_id():
    """Generate a new primary key"""
    return str(uuid.uuid4())


def generate_reference(prefix='TXN'):
    """
    Generate a human-readable transaction reference
    Format: TXN-YYYYMMDD-XXXXXXXX
    """
    return f"{prefix}-{utcnow().strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


def isoformat(value):
    """Serialize a naive UTC datetime as RFC 3339, or None"""
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat() + 'Z'


def add_months(value, months):
    """Add calendar months, clamping the day to the target month's length"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def load_json_list(value):
    """Decode a JSON array column, tolerating empty and legacy values"""
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return []
    return decoded if isinstance(decoded, list) else []


def dump_json(value):
    return json.dumps(value if value is not None else [])


def format_currency(amount, currency='KES', decimals=2):
    """
    Format amount as currency

    Args:
        amount: Numeric amount
        currency: Currency code
        decimals: Digits after the decimal point

    Returns:
        str: Formatted string, e.g. "KES 1,000,000.00"
    """
    if amount is None:
        amount = 0
    return f"{currency} {amount:,.{decimals}f}"


def mask_phone(phone):
    """
    Hide the middle of a phone number for logging

    Keeps at most the first four and last three characters and always
    masks at least a third of the value. Non-string input is stringified.
    """
    if phone is None:
        return None
    phone = str(phone)
    visible = len(phone) // 3
    head = min(4, visible)
    tail = min(3, visible)
    return phone[:head] + '*' * (len(phone) - head - tail) + phone[len(phone) - tail:]
