"""Structural validation of create/update payloads.

Each ``validate_*`` function takes the raw JSON mapping sent by a client and
returns a dict of normalized values keyed by model attribute name, ready to
be handed to the repository. Problems are collected per field and raised
together as a single :class:`errors.ValidationError`.
"""
import math
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from errors import ValidationError
from models import BudgetPeriod, PaymentMethod

CENTS = Decimal('0.01')
MAX_INTEGER_DIGITS = 10  # NUMERIC(12, 2)
HEX_COLOR = re.compile(r'^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$')
DATE_FORMATS = ['%Y-%m-%d', '%Y/%m/%d', '%d-%m-%Y', '%d/%m/%Y']

# Marks a field that has no default and must be present on create.
REQUIRED = object()


def parse_amount(value, path='amount'):
    if value is None or isinstance(value, bool):
        raise ValidationError(path, 'Amount is required' if value is None else 'Amount must be a number')
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(path, 'Amount must be a finite number')
    text = str(value).strip()
    if not text:
        raise ValidationError(path, 'Amount is required')
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValidationError(path, 'Amount must be a number')
    if not amount.is_finite():
        raise ValidationError(path, 'Amount must be a finite number')
    if amount.adjusted() < MAX_INTEGER_DIGITS:
        amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    if amount.adjusted() >= MAX_INTEGER_DIGITS:
        raise ValidationError(path, f'Amount must have at most {MAX_INTEGER_DIGITS} integer digits')
    return amount


def parse_date(value, path='date'):
    """Parse a date-like value into a naive UTC datetime.

    ISO-8601 strings (with or without time, offset or trailing ``Z``) and a
    handful of day-first formats are accepted. Aware values are converted
    to UTC; naive ones are taken as already being UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
            for fmt in DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            raise ValidationError(path, 'Invalid date')
    else:
        raise ValidationError(path, 'Date is required')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_enum(enum_cls, value, path):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(m.value for m in enum_cls)
        raise ValidationError(path, f'Must be one of: {allowed}')


def _text(value, path, max_length=None, required=True):
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(path, 'This field is required')
        return None
    if not isinstance(value, str):
        raise ValidationError(path, 'Must be a string')
    value = value.strip()
    if max_length and len(value) > max_length:
        raise ValidationError(path, f'Must be at most {max_length} characters')
    return value


def _color(value, path):
    value = _text(value, path, max_length=7)
    if not HEX_COLOR.match(value):
        raise ValidationError(path, 'Must be a hex color such as #3B82F6')
    return value


def _flag(value, path):
    if isinstance(value, bool):
        return int(value)
    if value in (0, 1, '0', '1'):
        return int(value)
    raise ValidationError(path, 'Must be 0 or 1')


def _validate(payload, fields, partial):
    """Run each field parser over ``payload``.

    ``fields`` maps the client key to ``(attribute, parser, default)``. A
    default of ``REQUIRED`` marks the field mandatory on create.
    """
    if not isinstance(payload, dict):
        raise ValidationError('', 'Expected a JSON object')
    result, errors = {}, []
    for key, (attr, parser, default) in fields.items():
        if key not in payload:
            if partial:
                continue
            if default is REQUIRED:
                errors.append({'path': key, 'message': 'This field is required'})
                continue
            result[attr] = default
            continue
        try:
            result[attr] = parser(payload[key], key)
        except ValidationError as exc:
            errors.extend(exc.errors)
    if errors:
        raise ValidationError(errors=errors)
    if partial and not result:
        raise ValidationError('', 'No fields to update')
    return result


def validate_category(payload, partial=False):
    return _validate(payload, {
        'name': ('name', lambda v, p: _text(v, p, max_length=100), REQUIRED),
        'icon': ('icon', lambda v, p: _text(v, p, max_length=50), 'fas fa-tag'),
        'color': ('color', _color, '#3B82F6'),
        'isDefault': ('is_default', _flag, 0),
    }, partial)


def validate_expense(payload, partial=False):
    return _validate(payload, {
        'categoryId': ('category_id', lambda v, p: _text(v, p, max_length=36), REQUIRED),
        'amount': ('amount', parse_amount, REQUIRED),
        'description': ('description', _text, REQUIRED),
        'paymentMethod': ('payment_method', lambda v, p: parse_enum(PaymentMethod, v, p), PaymentMethod.CASH),
        'date': ('date', parse_date, REQUIRED),
    }, partial)


def validate_income(payload, partial=False):
    return _validate(payload, {
        'amount': ('amount', parse_amount, REQUIRED),
        'source': ('source', lambda v, p: _text(v, p, max_length=100), REQUIRED),
        'description': ('description', lambda v, p: _text(v, p, required=False), None),
        'date': ('date', parse_date, REQUIRED),
    }, partial)


def validate_budget(payload, partial=False):
    return _validate(payload, {
        'categoryId': ('category_id', lambda v, p: _text(v, p, max_length=36), REQUIRED),
        'amount': ('amount', parse_amount, REQUIRED),
        'period': ('period', lambda v, p: parse_enum(BudgetPeriod, v, p), BudgetPeriod.MONTHLY),
        'startDate': ('start_date', parse_date, REQUIRED),
    }, partial)
