"""Tests for the booking state machine."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from app.core.scheduling.errors import Forbidden, InvalidBookingRequest, NotFound
from app.core.scheduling.lifecycle import (
    VALID_TRANSITIONS,
    can_transition,
    get_valid_transitions,
    is_terminal_state,
)
from app.core.scheduling.models import BookingPatch, BookingStatus, Principal, Role
from app.infra.notifications import SendResult

ADMIN = Principal(id="staff-admin", role=Role.ADMIN)
MANAGER = Principal(id="staff-manager", role=Role.MANAGER)
MEMBER = Principal(id="member-1", role=Role.MEMBER)

# After the 15:00 EST slot on 2024-01-15
AFTER_SLOT = datetime(2024, 1, 15, 21, 0, tzinfo=timezone.utc)
BEFORE_SLOT = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestTransitionTable:
    """Test the transition table."""

    def test_allowed(self):
        """Test every documented transition."""
        assert can_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        assert can_transition(BookingStatus.PENDING, BookingStatus.CANCELLED)
        assert can_transition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED)
        assert can_transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED)

    def test_rejected(self):
        """Test transitions out of terminal states and skips."""
        assert not can_transition(BookingStatus.CANCELLED, BookingStatus.CONFIRMED)
        assert not can_transition(BookingStatus.COMPLETED, BookingStatus.CANCELLED)
        assert not can_transition(BookingStatus.PENDING, BookingStatus.COMPLETED)

    def test_terminal_states(self):
        """Test completed and cancelled are terminal."""
        assert is_terminal_state(BookingStatus.COMPLETED)
        assert is_terminal_state(BookingStatus.CANCELLED)
        assert not is_terminal_state(BookingStatus.PENDING)
        assert get_valid_transitions(BookingStatus.CANCELLED) == set()

    def test_every_status_listed(self):
        """Test the table covers every status."""
        assert set(VALID_TRANSITIONS) == set(BookingStatus)


class TestCreate:
    """Test booking creation."""

    @pytest.mark.asyncio
    async def test_create_sends_confirmation(self, state_machine, notifier, make_draft):
        """Test a new booking is pending and the confirmation carries an invite."""
        outcome = await state_machine.create(make_draft("15:00"))

        assert outcome.success
        assert outcome.booking.status == BookingStatus.PENDING
        assert outcome.confirmation_sent is True
        assert len(notifier.sent) == 1
        message = notifier.sent[0]
        assert message.to == "jane@example.org"
        assert message.attachments[0].filename == "appointment.ics"
        assert "METHOD:REQUEST" in message.attachments[0].content

    @pytest.mark.asyncio
    async def test_create_conflict(self, state_machine, notifier, make_draft):
        """Test a conflicting booking returns SlotConflict and sends nothing."""
        await state_machine.create(make_draft("15:00"))

        outcome = await state_machine.create(make_draft("15:30"))

        assert not outcome.success
        assert outcome.conflict is not None
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_confirmation_failure_is_degraded_success(self, state_machine, store, make_draft):
        """Test a failed send keeps the booking and reports confirmation_sent=False."""
        state_machine.notifier = AsyncMock()
        state_machine.notifier.send.return_value = SendResult.failure("SMTPServerDisconnected")

        outcome = await state_machine.create(make_draft("15:00"))

        assert outcome.success
        assert outcome.degraded
        assert outcome.confirmation_error == "SMTPServerDisconnected"
        assert await store.get_booking(outcome.booking.id) is not None

    @pytest.mark.asyncio
    async def test_confirmation_exception_is_contained(self, state_machine, make_draft):
        """Test a sender that raises does not fail the booking."""
        state_machine.notifier = AsyncMock()
        state_machine.notifier.send.side_effect = ConnectionRefusedError("refused")

        outcome = await state_machine.create(make_draft("15:00"))

        assert outcome.success
        assert outcome.confirmation_sent is False

    @pytest.mark.asyncio
    async def test_rejects_blank_name_and_bad_email(self, state_machine, make_draft):
        """Test requester fields are validated."""
        with pytest.raises(InvalidBookingRequest):
            await state_machine.create(make_draft(full_name="  "))
        with pytest.raises(InvalidBookingRequest):
            await state_machine.create(make_draft(email="not-an-email"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email", ["jane@@example.org", "jane@example", "ja ne@example.org"])
    async def test_rejects_malformed_email_with_at_sign(self, state_machine, make_draft, email):
        """Test addresses containing an @ are still fully validated."""
        with pytest.raises(InvalidBookingRequest):
            await state_machine.create(make_draft(email=email))


class TestApply:
    """Test administrative transitions."""

    @pytest.mark.asyncio
    async def test_confirm(self, state_machine, make_draft):
        """Test pending -> confirmed by a manager."""
        booking = (await state_machine.create(make_draft())).booking

        outcome = await state_machine.apply(booking.id, BookingStatus.CONFIRMED, principal=MANAGER)

        assert outcome.success
        assert outcome.booking.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_cancelled_to_confirmed_rejected(self, state_machine, store, make_draft):
        """Test cancelled -> confirmed is rejected and the record is unchanged."""
        booking = (await state_machine.create(make_draft())).booking
        await state_machine.apply(booking.id, BookingStatus.CANCELLED, principal=ADMIN)
        before = await store.get_booking(booking.id)

        outcome = await state_machine.apply(booking.id, BookingStatus.CONFIRMED, principal=ADMIN)

        assert not outcome.success
        assert outcome.error.from_status == BookingStatus.CANCELLED
        assert outcome.error.to_status == BookingStatus.CONFIRMED
        assert await store.get_booking(booking.id) == before

    @pytest.mark.asyncio
    async def test_complete_only_after_slot_time(self, state_machine, make_draft):
        """Test confirmed -> completed is refused before the slot starts."""
        booking = (await state_machine.create(make_draft("15:00"))).booking
        await state_machine.apply(booking.id, BookingStatus.CONFIRMED, principal=ADMIN)

        early = await state_machine.apply(
            booking.id, BookingStatus.COMPLETED, principal=ADMIN, now=BEFORE_SLOT
        )
        late = await state_machine.apply(
            booking.id, BookingStatus.COMPLETED, principal=ADMIN, now=AFTER_SLOT
        )

        assert not early.success
        assert "before" in early.error.describe()
        assert late.success
        assert late.booking.status == BookingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_pending_cannot_complete(self, state_machine, make_draft):
        """Test pending -> completed skips confirmation and is rejected."""
        booking = (await state_machine.create(make_draft())).booking

        outcome = await state_machine.apply(
            booking.id, BookingStatus.COMPLETED, principal=ADMIN, now=AFTER_SLOT
        )

        assert not outcome.success

    @pytest.mark.asyncio
    async def test_remark_only_change(self, state_machine, make_draft):
        """Test a same-status update only changes the remark."""
        booking = (await state_machine.create(make_draft())).booking

        outcome = await state_machine.apply(
            booking.id, BookingStatus.PENDING, remark="Running late", principal=MANAGER
        )

        assert outcome.success
        assert outcome.booking.status == BookingStatus.PENDING
        assert outcome.booking.remark == "Running late"

    @pytest.mark.asyncio
    async def test_cancel_sends_notice(self, state_machine, notifier, make_draft):
        """Test cancellation sends a METHOD:CANCEL calendar object."""
        booking = (await state_machine.create(make_draft())).booking

        outcome = await state_machine.apply(booking.id, BookingStatus.CANCELLED, principal=ADMIN)

        assert outcome.success
        assert outcome.notification_sent is True
        notice = notifier.sent[-1]
        assert notice.subject == "Your Appointment has been Cancelled"
        assert "METHOD:CANCEL" in notice.attachments[0].content
        assert "STATUS:CANCELLED" in notice.attachments[0].content

    @pytest.mark.asyncio
    async def test_member_forbidden(self, state_machine, make_draft):
        """Test members cannot make administrative changes."""
        booking = (await state_machine.create(make_draft())).booking

        with pytest.raises(Forbidden):
            await state_machine.apply(booking.id, BookingStatus.CONFIRMED, principal=MEMBER)
        with pytest.raises(Forbidden):
            await state_machine.apply(booking.id, BookingStatus.CONFIRMED, principal=None)

    @pytest.mark.asyncio
    async def test_unknown_booking(self, state_machine):
        """Test NotFound for unknown ids."""
        with pytest.raises(NotFound):
            await state_machine.apply("missing", BookingStatus.CONFIRMED, principal=ADMIN)

    @pytest.mark.asyncio
    async def test_lost_race_reported(self, state_machine, store, make_draft):
        """Test a concurrent status change turns into InvalidTransition."""
        booking = (await state_machine.create(make_draft())).booking
        original_get = store.get_booking

        async def stale_get(booking_id):
            stale = await original_get(booking_id)
            # Another request cancels between read and write
            await store.update_booking(booking_id, BookingPatch(status=BookingStatus.CANCELLED))
            return stale

        store.get_booking = stale_get

        outcome = await state_machine.apply(booking.id, BookingStatus.CONFIRMED, principal=ADMIN)

        assert not outcome.success
        assert outcome.booking.status == BookingStatus.CANCELLED


class TestCancelWithToken:
    """Test self-service cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_with_token(self, state_machine, make_draft):
        """Test the booking token cancels the booking."""
        booking = (await state_machine.create(make_draft())).booking

        outcome = await state_machine.cancel_with_token(booking.id, "token-123")

        assert outcome.success
        assert outcome.booking.status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_wrong_token(self, state_machine, make_draft):
        """Test a wrong token is Forbidden."""
        booking = (await state_machine.create(make_draft())).booking

        with pytest.raises(Forbidden):
            await state_machine.cancel_with_token(booking.id, "guess")

    @pytest.mark.asyncio
    async def test_cancel_twice(self, state_machine, make_draft):
        """Test cancelling a cancelled booking is an invalid transition."""
        booking = (await state_machine.create(make_draft())).booking
        await state_machine.cancel_with_token(booking.id, "token-123")

        outcome = await state_machine.cancel_with_token(booking.id, "token-123")

        assert not outcome.success


class TestMarkReminderSent:
    """Test the reminder flag."""

    @pytest.mark.asyncio
    async def test_mark_reminder_sent(self, state_machine, make_draft):
        """Test the flag and timestamp are set without touching status."""
        booking = (await state_machine.create(make_draft())).booking
        now = BEFORE_SLOT - timedelta(hours=1)

        updated = await state_machine.mark_reminder_sent(booking, now)

        assert updated.reminder_sent is True
        assert updated.last_reminder_sent_at == now
        assert updated.status == BookingStatus.PENDING
