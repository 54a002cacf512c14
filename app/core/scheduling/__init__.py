"""
Scheduling Module

Turns a weekly availability policy in the authority's timezone into
bookable slots, guards against double booking, drives bookings through
their lifecycle, and produces reminders and calendar exports.

Usage:
    from app.core.scheduling import (
        AppointmentService,
        AuthorityClock,
        AvailabilityPolicy,
    )

    clock = AuthorityClock("America/New_York")
    slots = generate_slots("2024-01-15", AvailabilityPolicy.from_config(), clock)
    print([s.local_clock for s in slots])  # ["14:00", "14:30", ...]
"""

# Clock & policy
from app.core.scheduling.clock import (
    AuthorityClock,
    parse_calendar_date,
    parse_wall_clock,
)
from app.core.scheduling.policy import (
    AvailabilityPolicy,
    TimeWindow,
    DEFAULT_WINDOWS,
)
from app.core.scheduling.slots import Slot, generate_slots

# Domain models & errors
from app.core.scheduling.models import (
    Booking,
    BookingDraft,
    BookingPatch,
    BookingStatus,
    BookingOutcome,
    TransitionOutcome,
    SlotConflict,
    InvalidTransition,
    Medium,
    Principal,
    Role,
)
from app.core.scheduling.errors import (
    SchedulingError,
    InvalidDateFormat,
    InvalidTimeFormat,
    InvalidBookingRequest,
    NotFound,
    Forbidden,
    StoreUnavailable,
)

# Store port & conflicts
from app.core.scheduling.store import BookingFilter, BookingStore
from app.core.scheduling.conflicts import ConflictResolver, conflicts, filter_available

# Lifecycle, reminders, calendar
from app.core.scheduling.lifecycle import BookingStateMachine, can_transition
from app.core.scheduling.reminders import (
    ClaimRegistry,
    ReminderPassResult,
    ReminderScheduler,
    ReminderWindow,
)
from app.core.scheduling.calendar_export import (
    CalendarEvent,
    build_calendar_object,
    calendar_event_for_booking,
)
from app.core.scheduling.messages import MessageComposer

# Service (main orchestrator)
from app.core.scheduling.service import AppointmentService, BookingRequest

__all__ = [
    # Clock & policy
    "AuthorityClock",
    "parse_calendar_date",
    "parse_wall_clock",
    "AvailabilityPolicy",
    "TimeWindow",
    "DEFAULT_WINDOWS",
    "Slot",
    "generate_slots",
    # Models & errors
    "Booking",
    "BookingDraft",
    "BookingPatch",
    "BookingStatus",
    "BookingOutcome",
    "TransitionOutcome",
    "SlotConflict",
    "InvalidTransition",
    "Medium",
    "Principal",
    "Role",
    "SchedulingError",
    "InvalidDateFormat",
    "InvalidTimeFormat",
    "InvalidBookingRequest",
    "NotFound",
    "Forbidden",
    "StoreUnavailable",
    # Store & conflicts
    "BookingFilter",
    "BookingStore",
    "ConflictResolver",
    "conflicts",
    "filter_available",
    # Lifecycle, reminders, calendar
    "BookingStateMachine",
    "can_transition",
    "ClaimRegistry",
    "ReminderPassResult",
    "ReminderScheduler",
    "ReminderWindow",
    "CalendarEvent",
    "build_calendar_object",
    "calendar_event_for_booking",
    "MessageComposer",
    # Service
    "AppointmentService",
    "BookingRequest",
]
