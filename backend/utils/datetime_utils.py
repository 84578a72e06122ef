from datetime import datetime, date, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Interpret naive datetimes (as stored by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    """Storage form: UTC instant without tzinfo."""
    return as_utc(value).replace(tzinfo=None)


def _zone(tz_name: str | None):
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except Exception:
            pass
    return timezone.utc


def local_date_for(instant: datetime, tz_name: str | None) -> date:
    """Calendar date of a UTC instant as seen in the given timezone."""
    return as_utc(instant).astimezone(_zone(tz_name)).date()


def today_for_tz(tz_name: str | None, reference: datetime | None = None) -> date:
    """Return today's date in the given timezone."""
    return local_date_for(reference or utcnow(), tz_name)


def days_between(earlier: date, later: date) -> int:
    return (later - earlier).days
