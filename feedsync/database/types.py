from datetime import date, datetime, timezone

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator


class EventTime(TypeDecorator):
    """Stores either a calendar date (all-day events) or a precise instant.

    Dates are kept as ``YYYY-MM-DD`` and instants as UTC ISO 8601 strings, so
    an all-day event never gains a time-of-day component on the way back out.
    Naive datetimes are assumed to already be in UTC.
    """

    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc).isoformat()
        if isinstance(value, date):
            return value.isoformat()
        raise TypeError(f"Unsupported event time value: {value!r}")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value)
