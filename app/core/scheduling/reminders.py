"""
Reminder Scheduler.

Sends one reminder per booking for bookings starting within the
lookahead window. A pass is triggered externally (cron or the staff
endpoint) and is safe to run concurrently with another pass: the
reminder flag is only flipped after a successful send, and an optional
claim registry keeps overlapping passes from sending the same reminder.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from app.core.scheduling.lifecycle import BookingStateMachine
from app.core.scheduling.messages import MessageComposer
from app.core.scheduling.models import Booking, BookingStatus
from app.core.scheduling.store import BookingFilter, BookingStore
from app.infra.notifications import NotificationService, deliver

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReminderWindow:
    """Which bookings are due for a reminder."""

    lookahead: timedelta = timedelta(hours=24)
    statuses: frozenset[BookingStatus] = frozenset({BookingStatus.PENDING})

    @classmethod
    def from_config(cls, lookahead_hours: float, statuses: Iterable[str]) -> "ReminderWindow":
        return cls(
            lookahead=timedelta(hours=lookahead_hours),
            statuses=frozenset(BookingStatus(s) for s in statuses),
        )


@dataclass
class ReminderPassResult:
    """Outcome of one reminder pass."""

    sent: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sent": list(self.sent),
            "failed": [{"id": booking_id, "reason": reason} for booking_id, reason in self.failed],
            "skipped": list(self.skipped),
        }


class ClaimRegistry:
    """
    Per-booking claims shared between overlapping passes.

    The base registry grants every claim, which leaves delivery
    at-least-once.
    """

    async def claim(self, booking_id: str) -> bool:
        return True

    async def release(self, booking_id: str) -> None:
        return None


class ReminderScheduler:
    """Finds due bookings and sends their reminders."""

    def __init__(
        self,
        store: BookingStore,
        state_machine: BookingStateMachine,
        notifier: NotificationService,
        composer: MessageComposer,
        window: Optional[ReminderWindow] = None,
        claims: Optional[ClaimRegistry] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        notification_timeout_seconds: float = 10.0,
    ):
        self.store = store
        self.state_machine = state_machine
        self.notifier = notifier
        self.composer = composer
        self.window = window or ReminderWindow()
        self.claims = claims or ClaimRegistry()
        self.batch_size = max(batch_size, 1)
        self.notification_timeout_seconds = notification_timeout_seconds

    async def due_bookings(
        self,
        now: datetime,
        lookahead: Optional[timedelta] = None,
    ) -> list[Booking]:
        """Bookings in the window that have not been reminded yet."""
        span = lookahead if lookahead is not None else self.window.lookahead
        return await self.store.query_bookings(
            BookingFilter(
                statuses=self.window.statuses,
                slot_range=(now, now + span),
                reminder_sent=False,
            )
        )

    async def run_reminder_pass(
        self,
        now: Optional[datetime] = None,
        lookahead: Optional[timedelta] = None,
    ) -> ReminderPassResult:
        """
        Run one reminder pass.

        Each booking is sent and flagged independently; a failure for one
        booking leaves it unflagged for the next pass and does not affect
        the others.

        Args:
            now: Pass time (defaults to current UTC time)
            lookahead: Override the configured lookahead

        Returns:
            ReminderPassResult with sent, failed and skipped booking ids
        """
        now = now or _utcnow()
        result = ReminderPassResult()

        due = await self.due_bookings(now, lookahead)
        if not due:
            logger.debug("Reminder pass: nothing due")
            return result

        logger.info(f"Reminder pass: {len(due)} booking(s) due")

        for start in range(0, len(due), self.batch_size):
            batch = due[start:start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self._remind(booking, now) for booking in batch),
                return_exceptions=True,
            )
            for booking, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(f"Reminder for booking {booking.id} failed: {outcome}")
                    result.failed.append((booking.id, f"{type(outcome).__name__}: {outcome}"))
                elif outcome is None:
                    result.sent.append(booking.id)
                elif outcome == "skipped":
                    result.skipped.append(booking.id)
                else:
                    result.failed.append((booking.id, outcome))

        logger.info(
            f"Reminder pass complete | Sent: {len(result.sent)} | "
            f"Failed: {len(result.failed)} | Skipped: {len(result.skipped)}"
        )
        return result

    async def _remind(self, booking: Booking, now: datetime) -> Optional[str]:
        """Send one reminder. Returns None on success, "skipped", or a failure reason."""
        if not await self.claims.claim(booking.id):
            logger.debug(f"Reminder for {booking.id} claimed by another pass")
            return "skipped"

        try:
            sent = await deliver(
                self.notifier,
                self.composer.reminder(booking),
                self.notification_timeout_seconds,
            )
            if not sent.ok:
                await self.claims.release(booking.id)
                logger.warning(f"Reminder for booking {booking.id} not sent: {sent.error}")
                return sent.error or "send failed"

            await self.state_machine.mark_reminder_sent(booking, now)
            return None
        except Exception:
            await self.claims.release(booking.id)
            raise
