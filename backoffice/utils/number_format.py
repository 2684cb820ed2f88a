"""Parsing helpers for JSON payload values (quantities, prices, dates)."""
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from backoffice.exceptions import ValidationError

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})$")


def parse_decimal(value, field: str, positive: bool = False, allow_none: bool = False) -> Decimal:
    """
    Parse a JSON number or numeric string to Decimal.

    Accepts ints, floats (via str to avoid binary noise) and strings with an
    optional thousands separator ("1,234.5").

    Raises:
        ValidationError: if the value is missing, not numeric, negative, or
        not strictly positive when ``positive`` is set.
    """
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError(f'{field} is required', payload={'field': field})

    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number', payload={'field': field})

    try:
        if isinstance(value, str):
            number = Decimal(value.strip().replace(',', ''))
        else:
            number = Decimal(str(value))
        if not number.is_finite():
            raise InvalidOperation
        # Checks below run on the stored precision, so "0.004" is zero
        number = number.quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number', payload={'field': field})

    if number < 0:
        raise ValidationError(f'{field} cannot be negative', payload={'field': field})
    if positive and number == 0:
        raise ValidationError(f'{field} must be greater than 0', payload={'field': field})

    return number


def parse_int(value, field: str, allow_none: bool = False):
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError(f'{field} is required', payload={'field': field})
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer', payload={'field': field})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer', payload={'field': field})


def parse_date(value, field: str, allow_none: bool = False):
    """Parse an ISO date (YYYY-MM-DD); date objects pass through."""
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError(f'{field} is required', payload={'field': field})
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f'{field} must be a date (YYYY-MM-DD)', payload={'field': field})


def parse_month(value: str):
    """Parse 'YYYY-MM' into (year, month)."""
    match = MONTH_PATTERN.match((value or '').strip())
    if not match:
        raise ValidationError('month must be formatted as YYYY-MM', payload={'field': 'month'})
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError('month must be between 01 and 12', payload={'field': 'month'})
    return year, month
