"""Request parsing helpers shared by the JSON blueprints."""
from flask import request

from backoffice.exceptions import ValidationError
from backoffice.utils.number_format import parse_date, parse_int


def json_body() -> dict:
    """Request JSON object, or ValidationError when absent/not an object."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def query_int(name: str):
    return parse_int(request.args.get(name), name, allow_none=True)


def query_date(name: str):
    return parse_date(request.args.get(name), name, allow_none=True)


def query_bool(name: str):
    value = request.args.get(name)
    if value is None or value == '':
        return None
    return value.lower() in ('1', 'true', 'yes')
