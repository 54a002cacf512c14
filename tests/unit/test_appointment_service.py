"""Tests for the appointment service."""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.scheduling.errors import (
    Forbidden,
    InvalidBookingRequest,
    InvalidDateFormat,
    InvalidTimeFormat,
    NotFound,
)
from app.core.scheduling.models import BookingStatus, Medium, Principal, Role
from app.core.scheduling.policy import AvailabilityPolicy
from app.core.scheduling.service import BookingRequest

from tests.unit.conftest import MONDAY, MONDAY_MORNING_UTC

ADMIN = Principal(id="staff-admin", role=Role.ADMIN)
MANAGER = Principal(id="staff-manager", role=Role.MANAGER)


def _request(slot: str = "2024-01-15T15:00", **overrides) -> BookingRequest:
    fields = dict(
        full_name="Jane Doe",
        email="jane@example.org",
        phone_number="+1 555 0100",
        slot_local_date_time=slot,
        medium=Medium.PHONE,
        remark="Prayer request",
    )
    fields.update(overrides)
    return BookingRequest(**fields)


class TestAvailableSlots:
    """Test availability queries."""

    @pytest.mark.asyncio
    async def test_full_day(self, service):
        """Test an empty Monday offers every policy slot."""
        keys = await service.available_slot_keys(MONDAY, now=MONDAY_MORNING_UTC)

        assert keys == ["14:00", "14:30", "15:00", "15:30", "16:00", "16:30"]

    @pytest.mark.asyncio
    async def test_accepts_date_string(self, service):
        """Test "YYYY-MM-DD" input."""
        keys = await service.available_slot_keys("2024-01-15", now=MONDAY_MORNING_UTC)

        assert keys[0] == "14:00"

    @pytest.mark.asyncio
    async def test_malformed_date(self, service):
        """Test a malformed date raises InvalidDateFormat."""
        with pytest.raises(InvalidDateFormat):
            await service.available_slots("15/01/2024", now=MONDAY_MORNING_UTC)

    @pytest.mark.asyncio
    async def test_past_date_is_empty(self, service):
        """Test past dates have no availability."""
        later = MONDAY_MORNING_UTC + timedelta(days=7)

        assert await service.available_slots(MONDAY, now=later) == []

    @pytest.mark.asyncio
    async def test_today_excludes_started_slots(self, service):
        """Test slots at or before now are dropped for the current day."""
        # 15:10 EST
        now = datetime(2024, 1, 15, 20, 10, tzinfo=timezone.utc)

        keys = await service.available_slot_keys(MONDAY, now=now)

        assert keys == ["15:30", "16:00", "16:30"]

    @pytest.mark.asyncio
    async def test_closed_day(self, service):
        """Test a Tuesday has no slots."""
        tuesday = MONDAY + timedelta(days=1)

        assert await service.available_slots(tuesday, now=MONDAY_MORNING_UTC) == []

    @pytest.mark.asyncio
    async def test_existing_booking_blocks_buffer(self, service):
        """Test a 15:00 booking with a 60 minute buffer."""
        await service.request_booking(_request("2024-01-15T15:00"), now=MONDAY_MORNING_UTC)

        keys = await service.available_slot_keys(MONDAY, now=MONDAY_MORNING_UTC)

        assert keys == ["14:00", "16:00", "16:30"]


class TestResolveSlot:
    """Test slot parsing and validation."""

    def test_resolves_to_utc(self, service):
        """Test a valid slot converts to its UTC instant."""
        instant = service.resolve_slot("2024-01-15T15:00", now=MONDAY_MORNING_UTC)

        assert instant == datetime(2024, 1, 15, 20, 0, tzinfo=timezone.utc)

    def test_missing_separator(self, service):
        """Test the date and time must be joined by T."""
        with pytest.raises(InvalidBookingRequest):
            service.resolve_slot("2024-01-15 15:00", now=MONDAY_MORNING_UTC)

    def test_malformed_time(self, service):
        """Test a malformed time part."""
        with pytest.raises(InvalidTimeFormat):
            service.resolve_slot("2024-01-15T3pm", now=MONDAY_MORNING_UTC)

    def test_past_slot(self, service):
        """Test slots at or before now are rejected."""
        with pytest.raises(InvalidBookingRequest, match="past"):
            service.resolve_slot("2024-01-15T15:00", now=datetime(2024, 1, 15, 20, 0, tzinfo=timezone.utc))

    def test_not_offered(self, service):
        """Test a time outside the policy windows is rejected."""
        with pytest.raises(InvalidBookingRequest, match="not an available"):
            service.resolve_slot("2024-01-15T09:00", now=MONDAY_MORNING_UTC)

    def test_off_step(self, service):
        """Test a time inside a window but off the slot step is rejected."""
        with pytest.raises(InvalidBookingRequest):
            service.resolve_slot("2024-01-15T15:10", now=MONDAY_MORNING_UTC)

    def test_repeated_hour_offset_selects_occurrence(self, service):
        """Test the offset suffix books the second pass through a fall-back hour."""
        service.policy = AvailabilityPolicy.from_config({0: [{"start": "00:00", "end": "03:00"}]})
        now = datetime(2024, 11, 1, 12, 0, tzinfo=timezone.utc)

        first = service.resolve_slot("2024-11-03T01:30", now=now)
        second = service.resolve_slot("2024-11-03T01:30-05:00", now=now)

        assert first == datetime(2024, 11, 3, 5, 30, tzinfo=timezone.utc)
        assert second == datetime(2024, 11, 3, 6, 30, tzinfo=timezone.utc)

    def test_offset_not_in_effect(self, service):
        """Test an offset that the wall clock never has on that date is rejected."""
        service.policy = AvailabilityPolicy.from_config({1: [{"start": "14:00", "end": "17:00"}]})

        with pytest.raises(InvalidBookingRequest):
            service.resolve_slot("2024-01-15T15:00-04:00", now=MONDAY_MORNING_UTC)

    def test_malformed_offset(self, service):
        """Test trailing text that is not an offset."""
        with pytest.raises(InvalidTimeFormat):
            service.resolve_slot("2024-01-15T15:00:00", now=MONDAY_MORNING_UTC)

    @pytest.mark.asyncio
    async def test_repeated_hour_keys_are_bookable(self, service):
        """Test both occurrences of a repeated hour are listed and book distinct instants."""
        service.policy = AvailabilityPolicy.from_config({0: [{"start": "01:00", "end": "02:00"}]})
        now = datetime(2024, 11, 1, 12, 0, tzinfo=timezone.utc)

        keys = await service.available_slot_keys("2024-11-03", now=now)

        assert keys == ["01:00", "01:30", "01:00-05:00", "01:30-05:00"]
        instants = {service.resolve_slot(f"2024-11-03T{key}", now=now) for key in keys}
        assert len(instants) == 4


class TestRequestBooking:
    """Test booking requests."""

    @pytest.mark.asyncio
    async def test_books_slot(self, service, notifier):
        """Test a successful request stores a pending booking with a token."""
        outcome = await service.request_booking(
            _request(full_name="  Jane Doe  "), now=MONDAY_MORNING_UTC
        )

        assert outcome.success
        booking = outcome.booking
        assert booking.full_name == "Jane Doe"
        assert booking.status == BookingStatus.PENDING
        assert booking.cancel_token
        assert booking.slot_start_utc == datetime(2024, 1, 15, 20, 0, tzinfo=timezone.utc)
        assert outcome.confirmation_sent is True
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, service):
        """Test each booking receives its own token."""
        first = await service.request_booking(_request("2024-01-15T14:00"), now=MONDAY_MORNING_UTC)
        second = await service.request_booking(_request("2024-01-15T16:00"), now=MONDAY_MORNING_UTC)

        assert first.booking.cancel_token != second.booking.cancel_token

    @pytest.mark.asyncio
    async def test_conflict_returns_remaining_slots(self, service):
        """Test a conflicting request reports what is still open that day."""
        await service.request_booking(_request("2024-01-15T15:00"), now=MONDAY_MORNING_UTC)

        outcome = await service.request_booking(
            _request("2024-01-15T15:30", email="john@example.org"), now=MONDAY_MORNING_UTC
        )

        assert not outcome.success
        assert outcome.available_slots == ["14:00", "16:00", "16:30"]

    @pytest.mark.asyncio
    async def test_cancelled_slot_bookable_again(self, service):
        """Test cancelling frees the slot for a new request."""
        first = await service.request_booking(_request(), now=MONDAY_MORNING_UTC)
        await service.cancel_booking(first.booking.id, first.booking.cancel_token, now=MONDAY_MORNING_UTC)

        again = await service.request_booking(
            _request(email="john@example.org"), now=MONDAY_MORNING_UTC
        )

        assert again.success


class TestManagement:
    """Test staff operations."""

    @pytest.mark.asyncio
    async def test_get_missing(self, service):
        """Test NotFound for unknown ids."""
        with pytest.raises(NotFound):
            await service.get_booking("missing")

    @pytest.mark.asyncio
    async def test_update_booking(self, service):
        """Test staff confirm through the service."""
        created = await service.request_booking(_request(), now=MONDAY_MORNING_UTC)

        outcome = await service.update_booking(
            created.booking.id, MANAGER, status=BookingStatus.CONFIRMED
        )

        assert outcome.success
        assert outcome.booking.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_list_newest_first_and_filtered(self, service, clock):
        """Test listing order and filters."""
        early = await service.request_booking(_request("2024-01-15T14:00"), now=MONDAY_MORNING_UTC)
        late = await service.request_booking(
            _request("2024-01-15T16:00", email="john@example.org"), now=MONDAY_MORNING_UTC
        )

        everything = await service.list_bookings()
        assert [b.id for b in everything] == [late.booking.id, early.booking.id]

        by_email = await service.list_bookings(email="JOHN@example.org")
        assert [b.id for b in by_email] == [late.booking.id]

        until = clock.from_authority_local(MONDAY, "15:00")
        before_three = await service.list_bookings(end=until)
        assert [b.id for b in before_three] == [early.booking.id]

        assert await service.list_bookings(status=BookingStatus.CONFIRMED) == []
        assert len(await service.list_bookings(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_delete_requires_admin(self, service):
        """Test managers cannot delete."""
        created = await service.request_booking(_request(), now=MONDAY_MORNING_UTC)

        with pytest.raises(Forbidden):
            await service.delete_booking(created.booking.id, MANAGER)

        await service.delete_booking(created.booking.id, ADMIN)
        with pytest.raises(NotFound):
            await service.get_booking(created.booking.id)

    @pytest.mark.asyncio
    async def test_delete_missing(self, service):
        """Test deleting an unknown booking is NotFound."""
        with pytest.raises(NotFound):
            await service.delete_booking("missing", ADMIN)


class TestCalendarFor:
    """Test calendar access."""

    @pytest.mark.asyncio
    async def test_with_token(self, service):
        """Test the requester's token unlocks the calendar object."""
        created = await service.request_booking(_request(), now=MONDAY_MORNING_UTC)

        ics = await service.calendar_for(created.booking.id, token=created.booking.cancel_token)

        assert "BEGIN:VEVENT" in ics
        assert f"UID:{created.booking.id}@appointments" in ics
        assert "STATUS:TENTATIVE" in ics

    @pytest.mark.asyncio
    async def test_staff(self, service):
        """Test staff can fetch any booking's calendar object."""
        created = await service.request_booking(_request(), now=MONDAY_MORNING_UTC)

        ics = await service.calendar_for(created.booking.id, principal=MANAGER)

        assert "DTSTART:20240115T200000Z" in ics

    @pytest.mark.asyncio
    async def test_denied(self, service):
        """Test a wrong token without staff access is Forbidden."""
        created = await service.request_booking(_request(), now=MONDAY_MORNING_UTC)

        with pytest.raises(Forbidden):
            await service.calendar_for(created.booking.id, token="nope")
        with pytest.raises(Forbidden):
            await service.calendar_for(created.booking.id)
