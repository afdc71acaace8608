"""Doctor availability and appointment overlap rules.

Weekly availability windows are interpreted in UTC. A doctor with no active
windows on record is treated as unrestricted.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum

from telehealth.utils.time import as_utc


class DayOfWeek(int, Enum):
    """Day of week for recurring availability (matches ``date.weekday()``)."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


@dataclass(frozen=True)
class AvailabilityWindow:
    """One recurring weekly window in which a doctor takes bookings.

    Attributes:
        day_of_week: Day the window recurs on
        start_time: Window opening time (UTC, inclusive)
        end_time: Window closing time (UTC, exclusive)
    """

    day_of_week: DayOfWeek
    start_time: time
    end_time: time

    def admits(self, moment: datetime) -> bool:
        """Check whether a start time falls inside this window.

        Examples:
            >>> from datetime import timezone
            >>> window = AvailabilityWindow(DayOfWeek.MONDAY, time(9), time(17))
            >>> window.admits(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc))
            True
            >>> window.admits(datetime(2026, 10, 19, 17, 0, tzinfo=timezone.utc))
            False
            >>> window.admits(datetime(2026, 10, 20, 10, 0, tzinfo=timezone.utc))
            False
        """
        moment = as_utc(moment)
        if moment.weekday() != self.day_of_week:
            return False
        start_of_minute = moment.time().replace(second=0, microsecond=0)
        return self.start_time <= start_of_minute < self.end_time


def is_time_available(start: datetime, windows: Iterable[AvailabilityWindow]) -> bool:
    """Check a requested start time against a doctor's weekly windows.

    Only the start time has to fall inside a window, matching how the
    booking portal offers slots.
    """
    windows = list(windows)
    if not windows:
        return True
    return any(window.admits(start) for window in windows)


def intervals_overlap(
    start: datetime,
    end: datetime,
    other_start: datetime,
    other_end: datetime,
) -> bool:
    """Half-open interval overlap; back-to-back appointments do not clash.

    Examples:
        >>> from datetime import timezone
        >>> ten = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
        >>> intervals_overlap(ten, ten + timedelta(minutes=45),
        ...                   ten + timedelta(minutes=15), ten + timedelta(minutes=60))
        True
        >>> intervals_overlap(ten, ten + timedelta(minutes=45),
        ...                   ten + timedelta(minutes=45), ten + timedelta(minutes=90))
        False
    """
    return start < other_end and end > other_start


def appointment_window(scheduled_at: datetime, duration_minutes: int) -> tuple[datetime, datetime]:
    """Start and end of an appointment in UTC."""
    start = as_utc(scheduled_at)
    return start, start + timedelta(minutes=duration_minutes)
