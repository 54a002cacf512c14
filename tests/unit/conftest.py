"""Shared fixtures for scheduling tests."""

from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.scheduling.clock import AuthorityClock
from app.core.scheduling.lifecycle import BookingStateMachine
from app.core.scheduling.messages import MessageComposer
from app.core.scheduling.models import BookingDraft, Medium
from app.core.scheduling.policy import AvailabilityPolicy
from app.core.scheduling.service import AppointmentService
from app.infra.booking_store import InMemoryBookingStore
from app.infra.notifications import LoggingNotificationService

# Monday, 2024-01-15 (EST, UTC-5)
MONDAY = date(2024, 1, 15)
MONDAY_MORNING_UTC = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def next_weekday(day_of_week: int, weeks_ahead: int = 2) -> date:
    """A future date on the given day of week (0=Sunday)."""
    start = date.today() + timedelta(weeks=weeks_ahead)
    offset = (day_of_week - start.isoweekday() % 7) % 7
    return start + timedelta(days=offset)


@pytest.fixture
def clock():
    return AuthorityClock("America/New_York")


@pytest.fixture
def policy():
    """Monday and Wednesday 14:00-17:00, Saturday 14:00-18:00, 30 minute steps."""
    return AvailabilityPolicy.from_config()


@pytest.fixture
def store():
    return InMemoryBookingStore()


@pytest.fixture
def notifier():
    return LoggingNotificationService()


@pytest.fixture
def composer(clock):
    return MessageComposer(clock, "https://appointments.example.org")


@pytest.fixture
def state_machine(store, notifier, composer, clock):
    return BookingStateMachine(
        store=store,
        notifier=notifier,
        composer=composer,
        clock=clock,
        buffer_minutes=60,
        notification_timeout_seconds=1.0,
        organizer_email="pastor@example.org",
    )


@pytest.fixture
def service(store, clock, policy, state_machine):
    return AppointmentService(
        store=store,
        clock=clock,
        policy=policy,
        state_machine=state_machine,
        buffer_minutes=60,
        organizer_email="pastor@example.org",
    )


@pytest.fixture
def make_draft(clock):
    """Factory for drafts at an authority-local time on MONDAY."""

    def _make(wall_clock: str = "15:00", calendar_date: date = MONDAY, **overrides) -> BookingDraft:
        fields = dict(
            full_name="Jane Doe",
            phone_number="+1 555 0100",
            email="jane@example.org",
            slot_start_utc=clock.from_authority_local(calendar_date, wall_clock),
            medium=Medium.IN_PERSON,
            cancel_token="token-123",
        )
        fields.update(overrides)
        return BookingDraft(**fields)

    return _make
