"""Clock and local calendar-day helpers."""

from collections.abc import Callable
from datetime import date, datetime, time, timedelta, tzinfo

from clinic_queue.errors import FieldValidationError

Clock = Callable[[], datetime]


def local_clock(tz: tzinfo | None = None) -> Clock:
    """Return a clock producing aware datetimes in ``tz`` (host local time when None)."""

    def now() -> datetime:
        if tz is None:
            return datetime.now().astimezone()
        return datetime.now(tz)

    return now


def day_bounds(day: date, tz: tzinfo | None) -> tuple[datetime, datetime]:
    """Return the [start, end) local-midnight bounds of a calendar day.

    The end is the next local midnight, which differs from start + 24h on
    days with a DST change.
    """
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    if tz is None:
        start = start.astimezone()
        end = end.astimezone()
    return start, end


def parse_day(value: date | str) -> date:
    """Parse a YYYY-MM-DD string (or pass through a date)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as e:
        raise FieldValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD") from e
