"""
Appointment Service - Main Orchestrator.

Coordinates the clock, availability policy, conflict resolver, state
machine and store behind the operations the HTTP layer exposes.
"""

import asyncio
import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from app.core.scheduling.calendar_export import build_calendar_object, calendar_event_for_booking
from app.core.scheduling.clock import AuthorityClock, parse_calendar_date, parse_wall_clock
from app.core.scheduling.conflicts import ConflictResolver
from app.core.scheduling.errors import (
    Forbidden,
    InvalidBookingRequest,
    InvalidTimeFormat,
    NotFound,
)
from app.core.scheduling.lifecycle import BookingStateMachine
from app.core.scheduling.models import (
    Booking,
    BookingDraft,
    BookingOutcome,
    BookingStatus,
    Medium,
    Principal,
    Role,
    TransitionOutcome,
)
from app.core.scheduling.policy import AvailabilityPolicy
from app.core.scheduling.slots import Slot, generate_slots
from app.core.scheduling.store import BookingFilter, BookingStore

logger = logging.getLogger(__name__)

_OFFSET_RE = re.compile(r"^[+-]\d{2}:\d{2}$")


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BookingRequest:
    """Booking request as received from a requester."""

    full_name: str
    email: str
    phone_number: str
    slot_local_date_time: str  # "YYYY-MM-DDTHH:mm[+HH:MM]" in the authority timezone
    medium: Medium
    remark: Optional[str] = None


class AppointmentService:
    """
    Entry point for scheduling operations.

    Owns no state of its own; every dependency is injected so the same
    service runs against the SQL store in production and the in-memory
    store in tests.
    """

    def __init__(
        self,
        store: BookingStore,
        clock: AuthorityClock,
        policy: AvailabilityPolicy,
        state_machine: BookingStateMachine,
        buffer_minutes: int = 30,
        duration_minutes: Optional[int] = None,
        organizer_email: Optional[str] = None,
    ):
        self.store = store
        self.clock = clock
        self.policy = policy
        self.state_machine = state_machine
        self.resolver = ConflictResolver(store, buffer_minutes)
        self.duration_minutes = duration_minutes
        self.organizer_email = organizer_email

    # === Availability ===

    async def available_slots(
        self,
        calendar_date: date | str,
        now: Optional[datetime] = None,
    ) -> list[Slot]:
        """
        Bookable slots for an authority-local date.

        Past dates have no availability. For today, slots that have
        already started are excluded.

        Raises:
            InvalidDateFormat: Malformed date string
        """
        if isinstance(calendar_date, str):
            calendar_date = parse_calendar_date(calendar_date)
        now = now or _utcnow()

        if calendar_date < self.clock.today(now):
            return []

        slots = [s for s in generate_slots(calendar_date, self.policy, self.clock) if s.start_utc > now]
        return await self.resolver.available_slots(slots)

    async def available_slot_keys(
        self,
        calendar_date: date | str,
        now: Optional[datetime] = None,
    ) -> list[str]:
        """Available slots as authority-local "HH:mm" keys.

        The second occurrence of a fall-back repeated hour carries its
        offset ("01:30-05:00") so every key is distinct and bookable.
        """
        return [s.key for s in await self.available_slots(calendar_date, now)]

    def resolve_slot(self, slot_local_date_time: str, now: Optional[datetime] = None) -> datetime:
        """
        Convert a requested "YYYY-MM-DDTHH:mm" to the UTC slot start.

        An optional "+HH:MM"/"-HH:MM" suffix picks the occurrence of a
        repeated fall-back hour; without it the first occurrence is used.

        Raises:
            InvalidDateFormat / InvalidTimeFormat: Malformed parts
            InvalidBookingRequest: Slot in the past or not offered by the policy
        """
        date_part, sep, time_part = (slot_local_date_time or "").partition("T")
        if not sep:
            raise InvalidBookingRequest(
                "slot_local_date_time must be formatted as YYYY-MM-DDTHH:mm"
            )
        calendar_date = parse_calendar_date(date_part)
        clock_part, offset_part = time_part[:5], time_part[5:]
        wall_clock = parse_wall_clock(clock_part)

        candidates = self.clock.occurrences(calendar_date, wall_clock)
        if offset_part:
            if not _OFFSET_RE.match(offset_part):
                raise InvalidTimeFormat(
                    f"Invalid time format '{time_part}'. Use HH:mm with an optional +HH:MM offset"
                )
            candidates = [i for i in candidates if self.clock.utc_offset_label(i) == offset_part]
            if not candidates:
                raise InvalidBookingRequest(
                    f"{slot_local_date_time} is not an available appointment time"
                )

        instant = candidates[0]
        if instant <= (now or _utcnow()):
            raise InvalidBookingRequest("Cannot book a time slot in the past")

        offered = {s.start_utc for s in generate_slots(calendar_date, self.policy, self.clock)}
        if instant not in offered:
            raise InvalidBookingRequest(
                f"{slot_local_date_time} is not an available appointment time"
            )
        return instant

    # === Booking ===

    async def request_booking(
        self,
        request: BookingRequest,
        now: Optional[datetime] = None,
    ) -> BookingOutcome:
        """
        Book a slot.

        The store insert and the confirmation run shielded from caller
        cancellation. On conflict the outcome carries refreshed
        availability for the same date.
        """
        now = now or _utcnow()
        slot_start = self.resolve_slot(request.slot_local_date_time, now)

        draft = BookingDraft(
            full_name=request.full_name.strip(),
            phone_number=request.phone_number.strip(),
            email=request.email.strip(),
            slot_start_utc=slot_start,
            medium=request.medium,
            remark=request.remark,
            cancel_token=secrets.token_urlsafe(24),
        )

        outcome = await asyncio.shield(self.state_machine.create(draft))

        if not outcome.success:
            outcome.available_slots = await self.available_slot_keys(
                self.clock.local_date(slot_start), now
            )
        return outcome

    async def update_booking(
        self,
        booking_id: str,
        principal: Principal,
        status: Optional[BookingStatus] = None,
        remark: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        return await self.state_machine.apply(
            booking_id, status=status, remark=remark, principal=principal, now=now
        )

    async def cancel_booking(
        self,
        booking_id: str,
        token: str,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        return await self.state_machine.cancel_with_token(booking_id, token, now)

    async def get_booking(self, booking_id: str) -> Booking:
        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")
        return booking

    async def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        email: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Booking]:
        """List bookings, newest slot first."""
        slot_range = None
        if start is not None or end is not None:
            slot_range = (
                start or datetime.min.replace(tzinfo=timezone.utc),
                end or datetime.max.replace(tzinfo=timezone.utc),
            )
        return await self.store.query_bookings(
            BookingFilter(
                statuses=[status] if status else None,
                slot_range=slot_range,
                email=email,
                newest_first=True,
                limit=limit,
            )
        )

    async def delete_booking(self, booking_id: str, principal: Principal) -> None:
        """Remove a booking record entirely (admin only)."""
        if principal.role != Role.ADMIN:
            raise Forbidden("Deleting appointments requires an admin")
        if not await self.store.delete_booking(booking_id):
            raise NotFound(f"Booking {booking_id} not found")
        logger.info(f"Booking {booking_id} deleted by {principal.id}")

    # === Calendar ===

    async def calendar_for(
        self,
        booking_id: str,
        token: Optional[str] = None,
        principal: Optional[Principal] = None,
    ) -> str:
        """ICS text for a booking in its current status.

        Available to staff, or to the requester holding the booking's token.
        """
        booking = await self.get_booking(booking_id)
        is_staff = principal is not None and principal.is_staff
        if not is_staff and not (
            booking.cancel_token and token and hmac.compare_digest(booking.cancel_token, token)
        ):
            raise Forbidden("A staff key or the booking token is required")
        event = calendar_event_for_booking(
            booking,
            self.clock,
            duration_minutes=self.duration_minutes,
            organizer_email=self.organizer_email,
        )
        return build_calendar_object(event)
