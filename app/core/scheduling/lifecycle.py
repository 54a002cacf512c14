"""Booking state machine."""

import hmac
import logging
from datetime import datetime, timezone
from typing import Optional, Set

from email_validator import EmailNotValidError, validate_email

from app.core.scheduling.calendar_export import calendar_event_for_booking
from app.core.scheduling.clock import AuthorityClock
from app.core.scheduling.errors import Forbidden, InvalidBookingRequest, NotFound
from app.core.scheduling.messages import MessageComposer
from app.core.scheduling.models import (
    Booking,
    BookingDraft,
    BookingOutcome,
    BookingPatch,
    BookingStatus,
    InvalidTransition,
    Principal,
    TransitionOutcome,
)
from app.core.scheduling.store import BookingStore
from app.infra.notifications import Notification, NotificationService, deliver, mask_email

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# Valid status transitions
VALID_TRANSITIONS: dict[BookingStatus, Set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.CONFIRMED: {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.COMPLETED: set(),  # Terminal state
    BookingStatus.CANCELLED: set(),  # Terminal state
}


def can_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    """Check if a status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def get_valid_transitions(status: BookingStatus) -> Set[BookingStatus]:
    """Get all valid transitions from a status."""
    return VALID_TRANSITIONS.get(status, set())


def is_terminal_state(status: BookingStatus) -> bool:
    """Check if status is terminal (no further transitions)."""
    return not VALID_TRANSITIONS.get(status)


class BookingStateMachine:
    """
    Drives bookings through their lifecycle.

    pending -> confirmed -> completed, with cancelled reachable from
    pending and confirmed. Every mutation goes through the store with the
    expected prior status, so a concurrent change is reported as an
    InvalidTransition instead of being overwritten.
    """

    def __init__(
        self,
        store: BookingStore,
        notifier: NotificationService,
        composer: MessageComposer,
        clock: AuthorityClock,
        buffer_minutes: int = 30,
        notification_timeout_seconds: float = 10.0,
        duration_minutes: Optional[int] = None,
        organizer_email: Optional[str] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.composer = composer
        self.clock = clock
        self.buffer_minutes = buffer_minutes
        self.notification_timeout_seconds = notification_timeout_seconds
        self.duration_minutes = duration_minutes
        self.organizer_email = organizer_email

    def _calendar_event(self, booking: Booking):
        return calendar_event_for_booking(
            booking,
            self.clock,
            duration_minutes=self.duration_minutes,
            organizer_email=self.organizer_email,
        )

    async def _notify(self, notification: Notification):
        return await deliver(self.notifier, notification, self.notification_timeout_seconds)

    # === Create ===

    async def create(self, draft: BookingDraft) -> BookingOutcome:
        """Create a pending booking and send the confirmation.

        The confirmation is best-effort: a failed send still returns a
        successful outcome with `confirmation_sent=False`.

        Args:
            draft: Validated booking request

        Returns:
            BookingOutcome (booking, or the SlotConflict that blocked it)

        Raises:
            InvalidBookingRequest: Missing name or malformed email
        """
        if not draft.full_name or not draft.full_name.strip():
            raise InvalidBookingRequest("Full name is required")
        try:
            validate_email(draft.email, check_deliverability=False)
        except EmailNotValidError as e:
            raise InvalidBookingRequest(f"A valid email address is required: {e}") from e

        result = await self.store.create_booking(draft, self.buffer_minutes)
        if not isinstance(result, Booking):
            logger.info(
                f"Slot conflict at {result.slot_start_utc.isoformat()} "
                f"with {len(result.conflicting_ids)} booking(s)"
            )
            return BookingOutcome(success=False, conflict=result)

        booking = result
        logger.info(
            f"Booking created: {booking.id} at {booking.slot_start_utc.isoformat()} "
            f"for {mask_email(booking.email)}"
        )

        sent = await self._notify(
            self.composer.confirmation(booking, self._calendar_event(booking))
        )
        if not sent.ok:
            logger.warning(f"Confirmation for booking {booking.id} not sent: {sent.error}")

        return BookingOutcome(
            success=True,
            booking=booking,
            confirmation_sent=sent.ok,
            confirmation_error=sent.error,
        )

    # === Transitions ===

    async def apply(
        self,
        booking_id: str,
        status: Optional[BookingStatus] = None,
        remark: Optional[str] = None,
        principal: Optional[Principal] = None,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """Apply an administrative status and/or remark change.

        Args:
            booking_id: Booking to change
            status: Target status (None or the current status for remark-only edits)
            remark: New remark
            principal: Caller; must be admin or manager
            now: Evaluation time (defaults to current UTC time)

        Returns:
            TransitionOutcome; `error` is set and nothing is written when
            the transition is not allowed

        Raises:
            Forbidden: Caller is not staff
            NotFound: Unknown booking
        """
        if principal is None or not principal.is_staff:
            raise Forbidden("Administrative changes require an admin or manager")

        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")

        if status is None or status == booking.status:
            if remark is None:
                return TransitionOutcome(success=True, booking=booking)
            updated = await self.store.update_booking(
                booking_id, BookingPatch(remark=remark), expected_status=booking.status
            )
            if updated is None:
                raise NotFound(f"Booking {booking_id} not found")
            if updated.status != booking.status:
                return TransitionOutcome(
                    success=False,
                    booking=updated,
                    error=InvalidTransition(
                        booking.status,
                        updated.status,
                        "Booking changed concurrently, retry the update",
                    ),
                )
            logger.info(f"Remark updated on booking {booking_id} by {principal.id}")
            return TransitionOutcome(success=True, booking=updated)

        return await self._transition(booking, status, remark, now or _utcnow(), actor=principal.id)

    async def cancel_with_token(
        self,
        booking_id: str,
        token: str,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """Self-service cancellation using the token issued at booking time.

        Raises:
            NotFound: Unknown booking
            Forbidden: Token missing or wrong
        """
        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")
        if not booking.cancel_token or not token or not hmac.compare_digest(
            booking.cancel_token, token
        ):
            raise Forbidden("Invalid cancellation token")

        return await self._transition(
            booking, BookingStatus.CANCELLED, None, now or _utcnow(), actor="requester"
        )

    async def _transition(
        self,
        booking: Booking,
        status: BookingStatus,
        remark: Optional[str],
        now: datetime,
        actor: str,
    ) -> TransitionOutcome:
        if not can_transition(booking.status, status):
            logger.info(
                f"Rejected transition {booking.status.value} -> {status.value} "
                f"on booking {booking.id}"
            )
            return TransitionOutcome(
                success=False,
                booking=booking,
                error=InvalidTransition(booking.status, status),
            )

        if status == BookingStatus.COMPLETED and now < booking.slot_start_utc:
            return TransitionOutcome(
                success=False,
                booking=booking,
                error=InvalidTransition(
                    booking.status,
                    status,
                    "Cannot complete an appointment before its scheduled time",
                ),
            )

        updated = await self.store.update_booking(
            booking.id,
            BookingPatch(status=status, remark=remark),
            expected_status=booking.status,
        )
        if updated is None:
            raise NotFound(f"Booking {booking.id} not found")
        if updated.status != status:
            # Lost the race: someone else moved the booking first
            return TransitionOutcome(
                success=False,
                booking=updated,
                error=InvalidTransition(updated.status, status),
            )

        logger.info(
            f"Booking {updated.id}: {booking.status.value} -> {status.value} by {actor}"
        )

        notification_sent: Optional[bool] = None
        if status == BookingStatus.CANCELLED:
            sent = await self._notify(
                self.composer.cancellation(updated, self._calendar_event(updated))
            )
            notification_sent = sent.ok
            if not sent.ok:
                logger.warning(f"Cancellation notice for {updated.id} not sent: {sent.error}")

        return TransitionOutcome(success=True, booking=updated, notification_sent=notification_sent)

    # === Reminders ===

    async def mark_reminder_sent(
        self,
        booking: Booking,
        now: Optional[datetime] = None,
    ) -> Optional[Booking]:
        """Flip the reminder flag. The only path that sets `reminder_sent`."""
        return await self.store.update_booking(
            booking.id,
            BookingPatch(reminder_sent=True, last_reminder_sent_at=now or _utcnow()),
        )
