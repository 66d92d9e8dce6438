import datetime as _dt

from sqlalchemy.types import TypeDecorator, DateTime


def ensure_utc(value: _dt.datetime | str | None) -> _dt.datetime | None:
    """Coerce ISO strings and naive datetimes into tz-aware UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, str):
        value = _dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=_dt.timezone.utc)
    return value.astimezone(_dt.timezone.utc)


def next_timestamp(previous: _dt.datetime | None) -> _dt.datetime:
    """Now, but strictly after `previous` so that row versions keep increasing."""
    now = _dt.datetime.now(_dt.timezone.utc)
    previous = ensure_utc(previous)
    if previous is not None and now <= previous:
        return previous + _dt.timedelta(microseconds=1)
    return now


class UtcAwareDateTime(TypeDecorator):
    """Always write UTC and always return tz-aware datetimes (UTC)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return ensure_utc(value)

    def process_result_value(self, value, dialect):
        # Some SQLite setups return strings
        return ensure_utc(value)
