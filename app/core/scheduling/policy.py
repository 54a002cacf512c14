"""Weekly availability policy in the authority timezone."""

from dataclasses import dataclass, field
from datetime import time
from typing import Mapping, Optional

from app.core.scheduling.clock import parse_wall_clock

# Sunday = 0 ... Saturday = 6
DAY_NAMES = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")

DEFAULT_WINDOWS: dict[int, list[dict[str, str]]] = {
    1: [{"start": "14:00", "end": "17:00"}],  # Monday
    3: [{"start": "14:00", "end": "17:00"}],  # Wednesday
    6: [{"start": "14:00", "end": "18:00"}],  # Saturday
}


@dataclass(frozen=True)
class TimeWindow:
    """Bookable window on one authority-local day. `end` is exclusive."""

    start: time
    end: time

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError(f"Window end {self.end} must be after start {self.start}")

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> "TimeWindow":
        return cls(start=parse_wall_clock(data["start"]), end=parse_wall_clock(data["end"]))

    def to_dict(self) -> dict:
        return {"start": self.start.strftime("%H:%M"), "end": self.end.strftime("%H:%M")}


@dataclass(frozen=True)
class AvailabilityPolicy:
    """
    Declarative weekly schedule of bookable windows.

    Attributes:
        windows: Day of week (0=Sunday) -> windows for that day
        slot_step_minutes: Granularity of generated slots
    """

    windows: Mapping[int, tuple[TimeWindow, ...]] = field(default_factory=dict)
    slot_step_minutes: int = 30

    def __post_init__(self):
        if self.slot_step_minutes <= 0:
            raise ValueError("slot_step_minutes must be positive")
        for day in self.windows:
            if day not in range(7):
                raise ValueError(f"Day of week must be 0-6, got {day}")

    @classmethod
    def from_config(
        cls,
        windows: Optional[Mapping] = None,
        slot_step_minutes: int = 30,
    ) -> "AvailabilityPolicy":
        """Build a policy from plain config data.

        Args:
            windows: {day: [{"start": "HH:mm", "end": "HH:mm"}, ...]}.
                Day keys may be ints, digit strings, or day names.
            slot_step_minutes: Slot granularity

        Returns:
            AvailabilityPolicy
        """
        raw = DEFAULT_WINDOWS if windows is None else windows
        parsed: dict[int, tuple[TimeWindow, ...]] = {}

        for key, day_windows in raw.items():
            day = _parse_day(key)
            ordered = sorted(
                (w if isinstance(w, TimeWindow) else TimeWindow.from_dict(w) for w in day_windows),
                key=lambda w: (w.start, w.end),
            )
            parsed[day] = parsed.get(day, ()) + tuple(ordered)

        return cls(windows=parsed, slot_step_minutes=slot_step_minutes)

    def windows_for(self, day_of_week: int) -> tuple[TimeWindow, ...]:
        """Windows configured for a day; empty on non-operating days."""
        return tuple(self.windows.get(day_of_week, ()))

    def to_dict(self) -> dict:
        return {
            "slot_step_minutes": self.slot_step_minutes,
            "windows": {
                DAY_NAMES[day]: [w.to_dict() for w in ws]
                for day, ws in sorted(self.windows.items())
            },
        }


def _parse_day(key) -> int:
    if isinstance(key, int):
        return key
    text = str(key).strip().lower()
    if text.isdigit():
        return int(text)
    if text in DAY_NAMES:
        return DAY_NAMES.index(text)
    raise ValueError(f"Unknown day of week '{key}'")
