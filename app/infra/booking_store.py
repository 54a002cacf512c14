"""
Booking Store Adapters

SQLAlchemy-backed store for production and an in-memory store for local
runs and tests. Both enforce the buffer rule atomically with the insert.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Optional, TypeVar, Union

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.scheduling.conflicts import conflicting_bookings
from app.core.scheduling.errors import StoreUnavailable
from app.core.scheduling.models import (
    ACTIVE_STATUSES,
    Booking,
    BookingDraft,
    BookingPatch,
    BookingStatus,
    SlotConflict,
)
from app.core.scheduling.store import BookingFilter, BookingStore
from app.infra.database import Database
from app.models.database import BookingRecord, as_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Key for pg_advisory_xact_lock serializing booking inserts
BOOKING_LOCK_KEY = 0x41505054  # "APPT"


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class InMemoryBookingStore(BookingStore):
    """
    Process-local booking store.

    A single asyncio.Lock makes check-and-insert atomic. Returned bookings
    are copies, so callers cannot mutate stored state.
    """

    def __init__(self):
        self._bookings: dict[str, Booking] = {}
        self._lock = asyncio.Lock()

    async def query_bookings(self, booking_filter: BookingFilter) -> list[Booking]:
        found = [b.copy() for b in self._bookings.values() if booking_filter.matches(b)]
        found.sort(key=lambda b: b.slot_start_utc, reverse=booking_filter.newest_first)
        if booking_filter.limit is not None:
            found = found[: booking_filter.limit]
        return found

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        booking = self._bookings.get(booking_id)
        return booking.copy() if booking else None

    async def create_booking(
        self,
        draft: BookingDraft,
        buffer_minutes: int,
    ) -> Union[Booking, SlotConflict]:
        async with self._lock:
            clashes = conflicting_bookings(
                draft.slot_start_utc, self._bookings.values(), buffer_minutes
            )
            if clashes:
                return SlotConflict(
                    slot_start_utc=draft.slot_start_utc,
                    conflicting_ids=tuple(b.id for b in clashes),
                )

            now = _utcnow()
            booking = Booking(
                id=str(uuid.uuid4()),
                full_name=draft.full_name,
                phone_number=draft.phone_number,
                email=draft.email,
                slot_start_utc=draft.slot_start_utc,
                medium=draft.medium,
                status=BookingStatus.PENDING,
                remark=draft.remark,
                created_at=now,
                updated_at=now,
                meeting_link=draft.meeting_link,
                cancel_token=draft.cancel_token,
            )
            self._bookings[booking.id] = booking
            return booking.copy()

    async def update_booking(
        self,
        booking_id: str,
        patch: BookingPatch,
        expected_status: Optional[BookingStatus] = None,
    ) -> Optional[Booking]:
        async with self._lock:
            current = self._bookings.get(booking_id)
            if current is None:
                return None
            if expected_status is not None and current.status != expected_status:
                return current.copy()

            updated = current.copy(**patch.changes(), updated_at=_utcnow())
            self._bookings[booking_id] = updated
            return updated.copy()

    async def delete_booking(self, booking_id: str) -> bool:
        async with self._lock:
            return self._bookings.pop(booking_id, None) is not None


class SqlAlchemyBookingStore(BookingStore):
    """
    SQLAlchemy booking store.

    Inserts run as a transactional check-and-insert. On PostgreSQL the
    transaction takes a transaction-scoped advisory lock, so concurrent
    inserts across processes are serialized. Other backends serialize
    within the process. The partial unique index on active slot starts
    backs both paths.
    """

    def __init__(self, database: Database, timeout_seconds: float = 5.0):
        self._db = database
        self._timeout = timeout_seconds
        self._local_lock = asyncio.Lock()

    async def _bounded(self, operation: Awaitable[T], action: str) -> T:
        """Run a store operation with a timeout, mapping failures to StoreUnavailable."""
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error(f"Store timeout during {action} after {self._timeout}s")
            raise StoreUnavailable(f"Booking store timed out during {action}")
        except SQLAlchemyError as e:
            logger.error(f"Store error during {action}: {e}")
            raise StoreUnavailable(f"Booking store failed during {action}") from e

    # === Reads ===

    async def query_bookings(self, booking_filter: BookingFilter) -> list[Booking]:
        return await self._bounded(self._query(booking_filter), "query")

    async def _query(self, booking_filter: BookingFilter) -> list[Booking]:
        stmt = select(BookingRecord)

        if booking_filter.statuses is not None:
            stmt = stmt.where(BookingRecord.status.in_(list(booking_filter.statuses)))
        if booking_filter.slot_range is not None:
            start, end = booking_filter.slot_range
            stmt = stmt.where(
                BookingRecord.slot_start_utc >= as_utc(start),
                BookingRecord.slot_start_utc < as_utc(end),
            )
        if booking_filter.email is not None:
            stmt = stmt.where(func.lower(BookingRecord.email) == booking_filter.email.lower())
        if booking_filter.reminder_sent is not None:
            stmt = stmt.where(BookingRecord.reminder_sent == booking_filter.reminder_sent)

        order = BookingRecord.slot_start_utc
        stmt = stmt.order_by(order.desc() if booking_filter.newest_first else order.asc())
        if booking_filter.limit is not None:
            stmt = stmt.limit(booking_filter.limit)

        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [record.to_domain() for record in result.scalars().all()]

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return await self._bounded(self._get(booking_id), "get")

    async def _get(self, booking_id: str) -> Optional[Booking]:
        async with self._db.session() as session:
            record = await session.get(BookingRecord, booking_id)
            return record.to_domain() if record else None

    # === Writes ===

    async def create_booking(
        self,
        draft: BookingDraft,
        buffer_minutes: int,
    ) -> Union[Booking, SlotConflict]:
        if self._db.dialect == "postgresql":
            return await self._bounded(self._check_and_insert(draft, buffer_minutes), "create")
        async with self._local_lock:
            return await self._bounded(self._check_and_insert(draft, buffer_minutes), "create")

    async def _check_and_insert(
        self,
        draft: BookingDraft,
        buffer_minutes: int,
    ) -> Union[Booking, SlotConflict]:
        slot = as_utc(draft.slot_start_utc)
        buffer = timedelta(minutes=max(buffer_minutes, 0))

        try:
            async with self._db.session() as session:
                if self._db.dialect == "postgresql":
                    await session.execute(
                        text("SELECT pg_advisory_xact_lock(:key)"),
                        {"key": BOOKING_LOCK_KEY},
                    )

                result = await session.execute(
                    select(BookingRecord).where(
                        BookingRecord.status.in_(list(ACTIVE_STATUSES)),
                        BookingRecord.slot_start_utc > slot - buffer,
                        BookingRecord.slot_start_utc < slot + buffer,
                    )
                )
                nearby = [r.to_domain() for r in result.scalars().all()]
                # Exact instants are caught by the range query when buffer > 0,
                # and by the unique index otherwise.
                clashes = conflicting_bookings(slot, nearby, buffer_minutes)
                if clashes:
                    return SlotConflict(
                        slot_start_utc=slot,
                        conflicting_ids=tuple(b.id for b in clashes),
                    )

                now = _utcnow()
                record = BookingRecord(
                    id=str(uuid.uuid4()),
                    full_name=draft.full_name,
                    phone_number=draft.phone_number,
                    email=draft.email,
                    slot_start_utc=slot,
                    medium=draft.medium,
                    status=BookingStatus.PENDING,
                    remark=draft.remark,
                    reminder_sent=False,
                    meeting_link=draft.meeting_link,
                    cancel_token=draft.cancel_token,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
                await session.flush()
                return record.to_domain()

        except IntegrityError:
            logger.info(f"Unique slot index rejected booking at {slot.isoformat()}")
            return SlotConflict(slot_start_utc=slot)

    async def update_booking(
        self,
        booking_id: str,
        patch: BookingPatch,
        expected_status: Optional[BookingStatus] = None,
    ) -> Optional[Booking]:
        return await self._bounded(
            self._update(booking_id, patch, expected_status), "update"
        )

    async def _update(
        self,
        booking_id: str,
        patch: BookingPatch,
        expected_status: Optional[BookingStatus],
    ) -> Optional[Booking]:
        async with self._db.session() as session:
            stmt = select(BookingRecord).where(BookingRecord.id == booking_id)
            if self._db.dialect == "postgresql":
                stmt = stmt.with_for_update()
            record = (await session.execute(stmt)).scalar_one_or_none()
            if record is None:
                return None
            if expected_status is not None and record.status != expected_status:
                return record.to_domain()

            for name, value in patch.changes().items():
                if isinstance(value, datetime):
                    value = as_utc(value)
                setattr(record, name, value)
            record.updated_at = _utcnow()
            await session.flush()
            return record.to_domain()

    async def delete_booking(self, booking_id: str) -> bool:
        return await self._bounded(self._delete(booking_id), "delete")

    async def _delete(self, booking_id: str) -> bool:
        async with self._db.session() as session:
            result = await session.execute(
                delete(BookingRecord).where(BookingRecord.id == booking_id)
            )
            return (result.rowcount or 0) > 0
