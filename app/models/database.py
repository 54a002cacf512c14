"""
Database Models

SQLAlchemy ORM models for appointment bookings.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text, text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.core.scheduling.models import Booking, BookingStatus, Medium


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored datetime to aware UTC.

    Backends without timezone support (SQLite) hand back naive values,
    which are always stored as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )


class BookingRecord(Base, TimestampMixin):
    """
    Appointment booking.

    The partial unique index on slot_start_utc rejects two active bookings
    for the identical instant at the storage boundary. Buffer spacing is
    enforced by the store's transactional check-and-insert.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointment_slot", "slot_start_utc"),
        Index("idx_appointment_status_slot", "status", "slot_start_utc"),
        Index("idx_appointment_email", "email"),
        Index(
            "uq_appointment_active_slot",
            "slot_start_utc",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    slot_start_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    medium: Mapped[Medium] = mapped_column(
        SQLEnum(Medium, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False
    )
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=BookingStatus.PENDING,
        nullable=False
    )
    remark: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    meeting_link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    cancel_token: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    def to_domain(self) -> Booking:
        """Convert to the Booking domain model."""
        return Booking(
            id=self.id,
            full_name=self.full_name,
            phone_number=self.phone_number,
            email=self.email,
            slot_start_utc=as_utc(self.slot_start_utc),
            medium=Medium(self.medium),
            status=BookingStatus(self.status),
            remark=self.remark,
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
            reminder_sent=bool(self.reminder_sent),
            last_reminder_sent_at=as_utc(self.last_reminder_sent_at),
            meeting_link=self.meeting_link,
            cancel_token=self.cancel_token,
        )

    def __repr__(self) -> str:
        return f"<BookingRecord(id={self.id}, slot={self.slot_start_utc}, status={self.status})>"
