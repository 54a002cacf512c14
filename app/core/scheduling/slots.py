"""
Slot Generator.

Expands the weekly availability policy for one authority-local date
into ordered, deduplicated UTC slot instants.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time

from app.core.scheduling.clock import AuthorityClock, parse_calendar_date
from app.core.scheduling.policy import AvailabilityPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class Slot:
    """Candidate bookable instant. Never persisted."""

    start_utc: datetime
    local_clock: str  # HH:mm in the authority timezone
    utc_offset: str = ""
    repeated: bool = False  # second pass through a fall-back hour

    @property
    def key(self) -> str:
        """Bookable key: HH:mm, plus the offset for the second occurrence of a repeated hour."""
        if self.repeated:
            return f"{self.local_clock}{self.utc_offset}"
        return self.local_clock

    def to_dict(self) -> dict:
        return {
            "start_utc": self.start_utc.isoformat(),
            "local_clock": self.local_clock,
            "utc_offset": self.utc_offset,
            "key": self.key,
        }


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def generate_slots(
    calendar_date: date | str,
    policy: AvailabilityPolicy,
    clock: AuthorityClock,
) -> list[Slot]:
    """Generate slots for one authority-local date.

    Each local slot start is converted individually, so a window that
    straddles a DST transition gets the offset in effect for that slot.
    A start inside a fall-back repeated hour yields both instants; a
    start inside a spring-forward gap collapses onto the instant after
    the gap.

    Args:
        calendar_date: Authority-local date (date or YYYY-MM-DD)
        policy: Weekly availability policy
        clock: Authority clock

    Returns:
        Slots ascending by UTC instant, no duplicate instants. Empty on
        days with no configured window.

    Raises:
        InvalidDateFormat: If calendar_date is a malformed string
    """
    if isinstance(calendar_date, str):
        calendar_date = parse_calendar_date(calendar_date)

    windows = policy.windows_for(clock.weekday(calendar_date))
    if not windows:
        return []

    step = policy.slot_step_minutes
    by_instant: dict[datetime, Slot] = {}

    for window in windows:
        cursor = _minutes(window.start)
        end = _minutes(window.end)
        while cursor < end:
            wall_clock = time(cursor // 60, cursor % 60)
            for index, start_utc in enumerate(clock.occurrences(calendar_date, wall_clock)):
                if start_utc not in by_instant:
                    by_instant[start_utc] = Slot(
                        start_utc=start_utc,
                        local_clock=clock.local_clock_key(start_utc),
                        utc_offset=clock.utc_offset_label(start_utc),
                        repeated=index > 0,
                    )
            cursor += step

    slots = sorted(by_instant.values())
    logger.debug(f"Generated {len(slots)} slots for {calendar_date.isoformat()}")
    return slots

