"""JSON provider that understands Decimal amounts and ISO dates."""
from datetime import date, datetime
from decimal import Decimal
import enum

from flask.json.provider import DefaultJSONProvider


class BackofficeJSONProvider(DefaultJSONProvider):
    """Serialize Decimal as a number and dates as ISO-8601 strings."""

    ensure_ascii = False
    sort_keys = False

    @staticmethod
    def default(o):
        if isinstance(o, Decimal):
            return int(o) if o == o.to_integral_value() else float(o)
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, enum.Enum):
            return o.value
        return DefaultJSONProvider.default(o)
