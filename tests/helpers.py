"""Test helpers: a controllable clock and clinic-local timestamps."""

from datetime import datetime, timedelta, timezone

# Fixed offset so day boundaries do not depend on the host timezone or tzdata.
CLINIC_TZ = timezone(timedelta(hours=1))


class FakeClock:
    """Controllable clock returning aware datetimes in CLINIC_TZ."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def set(self, moment: datetime) -> None:
        self.current = moment

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def at(year: int, month: int, day: int, hour: int = 9, minute: int = 0, second: int = 0) -> datetime:
    """Build a clinic-local timestamp."""
    return datetime(year, month, day, hour, minute, second, tzinfo=CLINIC_TZ)
