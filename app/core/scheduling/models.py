"""
Booking domain models.

Booking is the persisted entity; drafts, patches and outcomes are the
typed values passed between the store, the conflict resolver and the
state machine.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    """Lifecycle states of a booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Medium(str, Enum):
    """How the appointment takes place."""

    IN_PERSON = "in-person"
    ONLINE = "online"
    PHONE = "phone"


ACTIVE_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED}
)


class Role(str, Enum):
    """Caller roles."""

    ADMIN = "admin"
    MANAGER = "manager"
    MEMBER = "member"


STAFF_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.MANAGER})


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    id: str
    role: Role

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


@dataclass
class Booking:
    """Appointment booking. `slot_start_utc` is the sole source of truth for time."""

    id: str
    full_name: str
    phone_number: str
    email: str
    slot_start_utc: datetime
    medium: Medium
    status: BookingStatus = BookingStatus.PENDING
    remark: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    reminder_sent: bool = False
    last_reminder_sent_at: Optional[datetime] = None
    meeting_link: Optional[str] = None
    cancel_token: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """Non-cancelled bookings hold their slot."""
        return self.status != BookingStatus.CANCELLED

    def copy(self, **changes) -> "Booking":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to dictionary for API response. The cancel token is never exposed."""
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone_number": self.phone_number,
            "email": self.email,
            "slot_start_utc": self.slot_start_utc.isoformat(),
            "medium": self.medium.value,
            "status": self.status.value,
            "remark": self.remark,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "reminder_sent": self.reminder_sent,
            "last_reminder_sent_at": (
                self.last_reminder_sent_at.isoformat() if self.last_reminder_sent_at else None
            ),
            "meeting_link": self.meeting_link,
        }


@dataclass(frozen=True)
class BookingDraft:
    """Validated booking request, ready for the store."""

    full_name: str
    phone_number: str
    email: str
    slot_start_utc: datetime
    medium: Medium
    remark: Optional[str] = None
    meeting_link: Optional[str] = None
    cancel_token: Optional[str] = None


@dataclass(frozen=True)
class BookingPatch:
    """Partial update applied by the store. None means unchanged."""

    status: Optional[BookingStatus] = None
    remark: Optional[str] = None
    reminder_sent: Optional[bool] = None
    last_reminder_sent_at: Optional[datetime] = None
    meeting_link: Optional[str] = None

    def changes(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass(frozen=True)
class SlotConflict:
    """The requested slot is within the buffer of an existing booking."""

    slot_start_utc: datetime
    conflicting_ids: tuple[str, ...] = ()
    message: str = "Time slot unavailable due to conflicting appointment"


@dataclass(frozen=True)
class InvalidTransition:
    """A status change the state machine does not permit."""

    from_status: BookingStatus
    to_status: BookingStatus
    message: str = ""

    def describe(self) -> str:
        return self.message or (
            f"Cannot transition booking from {self.from_status.value} to {self.to_status.value}"
        )


@dataclass
class BookingOutcome:
    """Result of a booking request."""

    success: bool
    booking: Optional[Booking] = None
    conflict: Optional[SlotConflict] = None
    confirmation_sent: bool = False
    confirmation_error: Optional[str] = None

    # Refreshed availability for conflict recovery (HH:mm keys)
    available_slots: Optional[list[str]] = None

    @property
    def degraded(self) -> bool:
        """Booked, but the confirmation could not be delivered."""
        return self.success and not self.confirmation_sent


@dataclass
class TransitionOutcome:
    """Result of a status/remark change."""

    success: bool
    booking: Optional[Booking] = None
    error: Optional[InvalidTransition] = None
    notification_sent: Optional[bool] = None
