"""
Booking Store port.

The store is the sole writer of booking records. `create_booking` must
re-check the buffer rule atomically with the insert.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Union

from app.core.scheduling.models import (
    Booking,
    BookingDraft,
    BookingPatch,
    BookingStatus,
    SlotConflict,
)


@dataclass(frozen=True)
class BookingFilter:
    """
    Booking query filter. Unset fields do not filter.

    Attributes:
        statuses: Match any of these statuses
        slot_range: Half-open [start, end) range on slot_start_utc
        email: Exact (case-insensitive) requester email
        reminder_sent: Match the reminder flag
        newest_first: Order by slot start descending
        limit: Maximum rows returned
    """

    statuses: Optional[Iterable[BookingStatus]] = None
    slot_range: Optional[tuple[datetime, datetime]] = None
    email: Optional[str] = None
    reminder_sent: Optional[bool] = None
    newest_first: bool = False
    limit: Optional[int] = None

    def matches(self, booking: Booking) -> bool:
        if self.statuses is not None and booking.status not in set(self.statuses):
            return False
        if self.slot_range is not None:
            start, end = self.slot_range
            if not (start <= booking.slot_start_utc < end):
                return False
        if self.email is not None and booking.email.lower() != self.email.lower():
            return False
        if self.reminder_sent is not None and booking.reminder_sent != self.reminder_sent:
            return False
        return True


class BookingStore(ABC):
    """Abstract booking store."""

    @abstractmethod
    async def query_bookings(self, booking_filter: BookingFilter) -> list[Booking]:
        """Bookings matching the filter, ordered by slot start."""
        raise NotImplementedError

    @abstractmethod
    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Booking by id, or None."""
        raise NotImplementedError

    @abstractmethod
    async def create_booking(
        self,
        draft: BookingDraft,
        buffer_minutes: int,
    ) -> Union[Booking, SlotConflict]:
        """Insert a booking in `pending` unless it conflicts.

        The conflict check and the insert are a single atomic operation.
        """
        raise NotImplementedError

    @abstractmethod
    async def update_booking(
        self,
        booking_id: str,
        patch: BookingPatch,
        expected_status: Optional[BookingStatus] = None,
    ) -> Optional[Booking]:
        """Apply a patch.

        With `expected_status`, the patch is applied only if the stored
        status still matches; otherwise the current booking is returned
        unchanged.

        Returns:
            Updated (or current) booking, None if not found
        """
        raise NotImplementedError

    @abstractmethod
    async def delete_booking(self, booking_id: str) -> bool:
        """Physically delete a booking. Administrative use only."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources held by the store."""
        return None
