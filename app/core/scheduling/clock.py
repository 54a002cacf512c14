"""
Authority Clock.

Converts between the authority timezone's wall clock and absolute UTC
instants. Conversions are always anchored to a calendar date so that
DST transitions resolve to the offset in effect on that date.
"""

import re
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.scheduling.errors import InvalidDateFormat, InvalidTimeFormat

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CLOCK_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_calendar_date(value: str) -> date:
    """Parse a YYYY-MM-DD calendar date.

    Raises:
        InvalidDateFormat: If the value is malformed or not a real date
    """
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise InvalidDateFormat(f"Invalid date format '{value}'. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidDateFormat(f"Invalid calendar date '{value}'")


def parse_wall_clock(value: str) -> time:
    """Parse a 24-hour HH:mm wall clock.

    Raises:
        InvalidTimeFormat: If the value is not zero-padded 24-hour HH:mm
    """
    match = _CLOCK_RE.match(value) if isinstance(value, str) else None
    if match is None:
        raise InvalidTimeFormat(f"Invalid time format '{value}'. Use HH:mm (24-hour)")
    return time(int(match.group(1)), int(match.group(2)))


def _ensure_aware(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        raise ValueError("Instant must be timezone-aware")
    return instant


class AuthorityClock:
    """
    Wall clock of the single authority timezone the weekly policy is
    defined in.

    Nonexistent local times (spring-forward gap) are shifted forward by
    the gap. Ambiguous local times (fall-back) resolve by the `fold` of
    the given time: 0 (and every HH:mm string) is the first occurrence,
    1 the second.
    """

    def __init__(self, tz_name: str):
        try:
            self.tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown authority timezone '{tz_name}'") from e
        self.tz_name = tz_name

    def to_authority_local(self, instant_utc: datetime) -> datetime:
        """Convert an absolute instant to the authority's wall clock."""
        return _ensure_aware(instant_utc).astimezone(self.tz)

    def from_authority_local(self, calendar_date: date | str, wall_clock: time | str) -> datetime:
        """Convert an authority-local date and wall clock to a UTC instant.

        Args:
            calendar_date: Authority-local date (date or YYYY-MM-DD)
            wall_clock: Authority-local time of day (time or HH:mm).
                A time's `fold` selects the occurrence of a repeated hour.

        Returns:
            Aware datetime in UTC
        """
        if isinstance(calendar_date, str):
            calendar_date = parse_calendar_date(calendar_date)
        if isinstance(wall_clock, str):
            wall_clock = parse_wall_clock(wall_clock)

        # combine() carries the fold; fold=0 in a gap uses the pre-transition
        # offset, which lands after the gap.
        local = datetime.combine(calendar_date, wall_clock).replace(tzinfo=self.tz)
        return local.astimezone(timezone.utc)

    def occurrences(self, calendar_date: date | str, wall_clock: time | str) -> list[datetime]:
        """Every UTC instant a local wall clock denotes on a date.

        Two instants inside a fall-back repeated hour, otherwise one. A
        gap time still maps to the single instant after the gap.
        """
        if isinstance(calendar_date, str):
            calendar_date = parse_calendar_date(calendar_date)
        if isinstance(wall_clock, str):
            wall_clock = parse_wall_clock(wall_clock)

        first = self.from_authority_local(calendar_date, wall_clock.replace(fold=0))
        second = self.from_authority_local(calendar_date, wall_clock.replace(fold=1))
        # In a gap fold=1 lands before fold=0; only a repeated hour orders them this way
        if second > first:
            return [first, second]
        return [first]

    def utc_offset_label(self, instant_utc: datetime) -> str:
        """Authority UTC offset at an instant, e.g. "-05:00"."""
        return self.to_authority_local(instant_utc).isoformat(timespec="minutes")[-6:]

    def local_clock_key(self, instant_utc: datetime) -> str:
        """Return the authority-local HH:mm key of an instant."""
        return self.to_authority_local(instant_utc).strftime("%H:%M")

    def local_date(self, instant_utc: datetime) -> date:
        """Return the authority-local calendar date of an instant."""
        return self.to_authority_local(instant_utc).date()

    @staticmethod
    def weekday(calendar_date: date) -> int:
        """Day of week with Sunday as 0 and Saturday as 6."""
        return calendar_date.isoweekday() % 7

    def today(self, now: datetime) -> date:
        """Authority-local calendar date at `now`."""
        return self.local_date(now)
