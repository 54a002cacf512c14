"""
Conflict Resolver.

Two non-cancelled bookings conflict when their slot starts are strictly
closer than the buffer. Cancelled bookings never hold a slot.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable

from app.core.scheduling.models import ACTIVE_STATUSES, Booking
from app.core.scheduling.slots import Slot
from app.core.scheduling.store import BookingFilter, BookingStore

logger = logging.getLogger(__name__)


def conflicts(a: datetime, b: datetime, buffer_minutes: int) -> bool:
    """Check the buffer rule for two slot starts.

    The identical instant always conflicts, even with a zero buffer.
    """
    delta = abs(a - b)
    return delta == timedelta(0) or delta < timedelta(minutes=buffer_minutes)


def conflicting_bookings(
    candidate: datetime,
    bookings: Iterable[Booking],
    buffer_minutes: int,
) -> list[Booking]:
    """Active bookings that conflict with a candidate slot start."""
    return [
        b for b in bookings
        if b.is_active and conflicts(candidate, b.slot_start_utc, buffer_minutes)
    ]


def filter_available(
    slots: Iterable[Slot],
    existing_bookings: Iterable[Booking],
    buffer_minutes: int,
) -> list[Slot]:
    """Drop slots that conflict with any active booking. Order is preserved."""
    taken = sorted(b.slot_start_utc for b in existing_bookings if b.is_active)
    return [
        slot for slot in slots
        if not any(conflicts(slot.start_utc, start, buffer_minutes) for start in taken)
    ]


def lookup_window(
    first: datetime,
    last: datetime,
    buffer_minutes: int,
) -> tuple[datetime, datetime]:
    """Half-open UTC range of bookings that can conflict with [first, last].

    A booking conflicts with a candidate only when it starts strictly
    within the buffer of it, so nothing outside
    [first - buffer, last + buffer) can affect the result.
    """
    buffer = timedelta(minutes=buffer_minutes)
    return first - buffer, last + buffer


class ConflictResolver:
    """Availability checks against the booking store."""

    def __init__(self, store: BookingStore, buffer_minutes: int):
        self.store = store
        self.buffer_minutes = buffer_minutes

    async def existing_around(self, first: datetime, last: datetime) -> list[Booking]:
        """Active bookings that could conflict with instants in [first, last]."""
        start, end = lookup_window(first, last, self.buffer_minutes)
        return await self.store.query_bookings(
            BookingFilter(statuses=ACTIVE_STATUSES, slot_range=(start, end))
        )

    async def is_available(self, candidate_utc: datetime) -> bool:
        """Whether a single instant is free under the buffer rule."""
        existing = await self.existing_around(candidate_utc, candidate_utc)
        return not conflicting_bookings(candidate_utc, existing, self.buffer_minutes)

    async def available_slots(self, slots: list[Slot]) -> list[Slot]:
        """Batch form: one bounded store read, then a pure filter."""
        if not slots:
            return []
        existing = await self.existing_around(slots[0].start_utc, slots[-1].start_utc)
        available = filter_available(slots, existing, self.buffer_minutes)
        logger.debug(
            f"{len(available)}/{len(slots)} slots available "
            f"({len(existing)} bookings in lookup window)"
        )
        return available
