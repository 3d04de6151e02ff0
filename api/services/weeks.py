"""Rolling 7-day week windows.

A week is the half-open interval ``[start, start + 7 days)`` where ``start``
is local midnight on the configured week-start weekday. Weeks are never
derived from ISO week numbers, so year boundaries need no special casing.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta, tzinfo

DAYS_PER_WEEK = 7
MONDAY = 0


@dataclass(frozen=True, order=True)
class Week:
    """Half-open ``[start, end)`` window. Ordered and compared by start."""

    start: datetime
    end: datetime = field(compare=False)

    @property
    def start_date(self) -> date:
        return self.start.date()

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


class WeekWindow:
    """Maps instants to weeks for one week-start weekday and timezone."""

    def __init__(self, week_start_day: int = MONDAY, tz: tzinfo = UTC) -> None:
        if not 0 <= week_start_day < DAYS_PER_WEEK:
            raise ValueError(f"week_start_day must be 0-6, got {week_start_day}")
        self.week_start_day = week_start_day
        self.tz = tz

    def week_starting(self, start_date: date) -> Week:
        """Rebuild the week that begins on ``start_date`` (a stored week id)."""
        start = datetime.combine(start_date, time.min, tzinfo=self.tz)
        end = datetime.combine(
            start_date + timedelta(days=DAYS_PER_WEEK), time.min, tzinfo=self.tz
        )
        return Week(start=start, end=end)

    def window_containing(self, instant: datetime) -> Week:
        if instant.tzinfo is None or instant.utcoffset() is None:
            raise ValueError("instant must be timezone-aware")
        local_date = instant.astimezone(self.tz).date()
        offset = (local_date.weekday() - self.week_start_day) % DAYS_PER_WEEK
        return self.week_starting(local_date - timedelta(days=offset))

    def previous(self, week: Week) -> Week:
        return self.week_starting(week.start_date - timedelta(days=DAYS_PER_WEEK))

    def next(self, week: Week) -> Week:
        return self.week_starting(week.start_date + timedelta(days=DAYS_PER_WEEK))


def window_containing(
    instant: datetime, week_start_day: int = MONDAY, tz: tzinfo = UTC
) -> Week:
    """One-off form of :meth:`WeekWindow.window_containing`."""
    return WeekWindow(week_start_day, tz).window_containing(instant)
