from datetime import date
from decimal import Decimal, InvalidOperation

from flask import request

from .errors import ValidationError

# largest id a signed 64-bit INTEGER column can hold
MAX_ID = 2**63 - 1


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def require_fields(data, *names):
    missing = [name for name in names if data.get(name) in (None, '')]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def parse_int(value, label, minimum=None, maximum=None):
    if isinstance(value, bool):
        raise ValidationError(f'{label} must be an integer')
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f'{label} must be an integer')
    if isinstance(value, float) and value != number:
        raise ValidationError(f'{label} must be an integer')
    if minimum is not None and number < minimum:
        raise ValidationError(f'{label} must be at least {minimum}')
    if maximum is not None and number > maximum:
        raise ValidationError(f'{label} must be at most {maximum}')
    return number


def parse_id(value, label):
    return parse_int(value, label, minimum=1, maximum=MAX_ID)


def parse_str(value, label):
    if not isinstance(value, str):
        raise ValidationError(f'{label} must be a string')
    return value


def optional_str(data, name):
    if data.get(name) is None:
        return None
    return parse_str(data[name], name)


def parse_date(value, label):
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f'{label} must be a date in YYYY-MM-DD format')


def parse_money(value, label):
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f'{label} must be a number')
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f'{label} must be zero or positive')
    return amount


def query_int(name, default, minimum=None, maximum=None):
    value = request.args.get(name)
    if value in (None, ''):
        return default
    return parse_int(value, name, minimum, maximum)


def query_date(name):
    value = request.args.get(name)
    if value in (None, ''):
        return None
    return parse_date(value, name)
