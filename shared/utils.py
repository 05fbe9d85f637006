from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional, Union

from shared.errors import ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    """Wall-clock timestamp in ISO-8601 (UTC)."""
    return utc_now().isoformat()


def parse_day(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d").date()
    except ValueError as e:
        raise ValidationError("invalid_date", f"expected YYYY-MM-DD, got {value!r}") from e


def format_day(d: Optional[Union[date, datetime]]) -> str:
    """Date-only ISO form (YYYY-MM-DD) or empty string if None."""
    if d is None:
        return ""
    if isinstance(d, datetime):
        d = d.date()
    return d.isoformat()


def format_hhmm(t: Optional[time]) -> str:
    if t is None:
        return ""
    return t.strftime("%H:%M")


def parse_hhmm(value: Union[str, time]) -> time:
    if isinstance(value, time):
        return value
    try:
        return datetime.strptime(str(value).strip(), "%H:%M").time()
    except ValueError as e:
        raise ValidationError("invalid_time", f"expected HH:MM, got {value!r}") from e


def iter_days(start: date, end: date) -> Iterator[date]:
    d = start
    while d <= end:
        yield d
        d = d + timedelta(days=1)
