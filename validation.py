"""Request field checks.

Every ``check_*`` helper reads one field from a request payload (JSON dict or
form ``MultiDict``), appends ``{'field', 'msg'}`` entries to ``errors`` when the
value is unusable and returns the normalized value. Absent fields come back as
``MISSING`` so update handlers can tell "not sent" from "sent empty"; blank
values come back as ``None``.

``required`` means the field must be sent and non-blank. ``blank_ok=False``
lets a field be omitted but not blanked, which is what partial updates of
mandatory columns need.
"""
import datetime
import re

from errors import ValidationFailed

MISSING = object()

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
TIME_RE = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)(:[0-5]\d)?$')
ACADEMIC_YEAR_RE = re.compile(r'^(\d{4})[/-](\d{4})$')


def _raw(data, field):
    if field not in data:
        return MISSING
    value = data.get(field)
    if isinstance(value, str):
        value = value.strip()
        if value == '':
            return None
    return value


def _fail(errors, field, msg):
    errors.append({'field': field, 'msg': msg})


def _empty(value, errors, field, msg, required, blank_ok):
    """Handle MISSING/None; returns True when there is no value left to check."""
    if value is MISSING:
        if required:
            _fail(errors, field, msg)
        return True
    if value is None:
        if required or not blank_ok:
            _fail(errors, field, msg)
        return True
    return False


def raise_if(errors):
    if errors:
        raise ValidationFailed(errors=errors)


def present(values):
    """Drop fields that were not sent."""
    return {k: v for k, v in values.items() if v is not MISSING}


def check_str(data, field, errors, msg, required=False, blank_ok=True, max_length=255):
    value = _raw(data, field)
    if _empty(value, errors, field, msg, required, blank_ok):
        return value
    value = str(value)
    if max_length and len(value) > max_length:
        _fail(errors, field, f'{field} must be at most {max_length} characters')
    return value


def parse_date(value):
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value).strip()
    try:
        return datetime.date.fromisoformat(text)
    except ValueError:
        return datetime.datetime.fromisoformat(text.replace('Z', '+00:00')).date()


def check_date(data, field, errors, msg, required=False, blank_ok=True):
    value = _raw(data, field)
    if _empty(value, errors, field, msg, required, blank_ok):
        return value
    try:
        return parse_date(value)
    except (TypeError, ValueError):
        _fail(errors, field, msg)
        return None


def check_time(data, field, errors, msg):
    value = _raw(data, field)
    if _empty(value, errors, field, msg, False, True):
        return value
    match = TIME_RE.match(str(value))
    if not match:
        _fail(errors, field, msg)
        return None
    return f'{match.group(1)}:{match.group(2)}'


def check_choice(data, field, choices, errors, msg, required=False, blank_ok=True, blank=None):
    """Closed-set value, lower-cased; a blank optional field becomes ``blank``."""
    value = _raw(data, field)
    if _empty(value, errors, field, msg, required, blank_ok):
        return blank if value is None else value
    value = str(value).lower()
    if value not in choices:
        _fail(errors, field, msg)
    return value


def check_email(data, field, errors, msg):
    value = _raw(data, field)
    if value in (MISSING, None) or not EMAIL_RE.match(str(value)):
        _fail(errors, field, msg)
        return None
    return str(value).lower()


def check_min_length(data, field, length, errors, msg):
    value = data.get(field)
    if not isinstance(value, str) or len(value) < length:
        _fail(errors, field, msg)
        return None
    return value


def check_int(data, field, errors, msg, low=None, high=None, required=False):
    value = _raw(data, field)
    if _empty(value, errors, field, msg, required, True):
        return value
    if isinstance(value, bool):
        _fail(errors, field, msg)
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        _fail(errors, field, msg)
        return None
    if not number.is_integer():
        _fail(errors, field, msg)
        return None
    number = int(number)
    if (low is not None and number < low) or (high is not None and number > high):
        _fail(errors, field, msg)
        return None
    return number


def normalize_academic_year(value):
    """'2024-2025' or '2024/2025' -> '2024/2025'; None when not two consecutive years."""
    match = ACADEMIC_YEAR_RE.match(str(value).strip())
    if not match:
        return None
    start, end = int(match.group(1)), int(match.group(2))
    if end != start + 1:
        return None
    return f'{start}/{end}'


def check_academic_year(data, field, errors, msg, required=False):
    value = _raw(data, field)
    if _empty(value, errors, field, msg, required, True):
        return value
    year = normalize_academic_year(value)
    if year is None:
        _fail(errors, field, msg)
    return year


def check_bool(data, field, errors, msg):
    value = _raw(data, field)
    if value is MISSING:
        return value
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.lower() in ('true', '1', 'yes'):
        return True
    if isinstance(value, str) and value.lower() in ('false', '0', 'no'):
        return False
    _fail(errors, field, msg)
    return None
