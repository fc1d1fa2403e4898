"""
Input Validation
Request body and query-string parsing shared by the route modules
"""

import re
from datetime import datetime, timedelta, timezone

from flask import current_app, request

from vaultke.errors import ValidationError

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_PATTERN = re.compile(r'^\+?\d{9,15}$')
FRACTION_PATTERN = re.compile(r'([Tt ]\d\d:\d\d:\d\d)\.(\d+)')


def get_json_body():
    """Parsed JSON object from the request; {} when no body was sent"""
    if not request.get_data(cache=True):
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Invalid request body')
    return data


def is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_integer(value):
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def require_text(data, key, message):
    """Return the stripped string at data[key] or raise with `message`"""
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(message)
    return value.strip()


def optional_text(data, key, max_length=None, label=None):
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label or key} must be a string")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{label or key} must be at most {max_length} characters")
    return value


def parse_datetime(value, field='date'):
    """
    Parse RFC 3339 / ISO 8601 timestamps and plain YYYY-MM-DD dates

    Returns a naive UTC datetime; raises ValidationError on bad input.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        # fromisoformat before 3.11 only takes 3 or 6 fractional digits
        text = FRACTION_PATTERN.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid {field} format")
    else:
        raise ValidationError(f"Invalid {field} format")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def is_valid_time(value):
    """HH:MM in 24-hour time"""
    return isinstance(value, str) and bool(TIME_PATTERN.match(value))


def is_valid_email(value):
    return isinstance(value, str) and bool(EMAIL_PATTERN.match(value))


def is_valid_phone(value):
    return isinstance(value, str) and bool(PHONE_PATTERN.match(value.replace(' ', '')))


def query_float(name, label=None):
    value = request.args.get(name)
    if value is None or value == '':
        return None
    try:
        return float(value)
    except ValueError:
        raise ValidationError(f"Invalid {label or name}")


def query_int(name, label=None):
    value = request.args.get(name)
    if value is None or value == '':
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"Invalid {label or name}")


def query_bool(name):
    value = request.args.get(name)
    if value is None or value == '':
        return None
    lowered = value.lower()
    if lowered in ('true', '1', 'yes'):
        return True
    if lowered in ('false', '0', 'no'):
        return False
    raise ValidationError(f"Invalid {name}")


def get_pagination():
    """
    Read limit/offset from the query string

    Defaults: limit=ITEMS_PER_PAGE (20), offset=0.
    Limits above MAX_ITEMS_PER_PAGE are clamped; non-positive limits use the default.
    """
    default_limit = current_app.config.get('ITEMS_PER_PAGE', 20)
    max_limit = current_app.config.get('MAX_ITEMS_PER_PAGE', 100)

    limit = query_int('limit')
    offset = query_int('offset')

    if limit is None or limit <= 0:
        limit = default_limit
    limit = min(limit, max_limit)

    if offset is None:
        offset = 0
    if offset < 0:
        raise ValidationError('Offset must be non-negative')
    return limit, offset


def get_sort(allowed, default_field, default_order='desc'):
    """
    Resolve sortBy/sortOrder query parameters against a whitelist

    Args:
        allowed: dict of public field name -> column
        default_field: key in `allowed` used when sortBy is absent or unknown
    """
    field = request.args.get('sortBy') or default_field
    column = allowed.get(field, allowed[default_field])
    order = (request.args.get('sortOrder') or default_order).lower()
    return column.asc() if order == 'asc' else column.desc()


def get_date_range():
    """
    startDate/endDate query parameters as a half-open [start, end) range

    A date-only endDate (YYYY-MM-DD) includes that whole day.
    """
    start = request.args.get('startDate')
    end = request.args.get('endDate')
    start_at = parse_datetime(start, 'startDate') if start else None
    end_at = parse_datetime(end, 'endDate') if end else None
    if end_at is not None and len(end.strip()) == 10:
        end_at += timedelta(days=1)
    return start_at, end_at
