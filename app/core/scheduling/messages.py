"""
Notification Messages.

Composes confirmation, reminder and cancellation emails for a booking.
Times are shown in the authority timezone, which is the timezone the
requester picked the slot in.
"""

from typing import Optional

from app.core.scheduling.calendar_export import (
    CalendarEvent,
    build_calendar_object,
    format_authority_time,
)
from app.core.scheduling.clock import AuthorityClock
from app.core.scheduling.models import Booking, Medium
from app.infra.notifications import Attachment, Notification

MEDIUM_LABELS = {
    Medium.IN_PERSON: "In person",
    Medium.ONLINE: "Online",
    Medium.PHONE: "Phone call",
}


class MessageComposer:
    """Builds outbound notifications for booking events."""

    def __init__(
        self,
        clock: AuthorityClock,
        public_base_url: Optional[str] = None,
    ):
        self.clock = clock
        self.public_base_url = (public_base_url or "").rstrip("/")

    def _when(self, booking: Booking) -> str:
        return format_authority_time(booking.slot_start_utc, self.clock)

    def _details(self, booking: Booking) -> list[str]:
        lines = [
            f"When: {self._when(booking)}",
            f"How: {MEDIUM_LABELS[booking.medium]}",
        ]
        if booking.meeting_link:
            lines.append(f"Meeting link: {booking.meeting_link}")
        return lines

    def cancel_link(self, booking: Booking) -> Optional[str]:
        """Self-service cancellation link, if the booking has a token."""
        if not booking.cancel_token or not self.public_base_url:
            return None
        return (
            f"{self.public_base_url}/appointments/{booking.id}/cancel"
            f"?token={booking.cancel_token}"
        )

    def confirmation(self, booking: Booking, event: Optional[CalendarEvent] = None) -> Notification:
        """Booking received. Attaches the calendar invite when given."""
        lines = [
            f"Dear {booking.full_name},",
            "",
            "Your appointment request has been received.",
            "",
            *self._details(booking),
            f"Reference: {booking.id}",
        ]
        link = self.cancel_link(booking)
        if link:
            lines += ["", f"If you can no longer attend, cancel here: {link}"]
        lines += ["", "We will send you a reminder before your appointment."]

        attachments: tuple[Attachment, ...] = ()
        if event is not None:
            attachments = (
                Attachment(
                    filename="appointment.ics",
                    content=build_calendar_object(event),
                    method=event.method.value,
                ),
            )

        return Notification(
            to=booking.email,
            subject="Your Appointment is Confirmed",
            body="\n".join(lines),
            attachments=attachments,
        )

    def reminder(self, booking: Booking) -> Notification:
        lines = [
            f"Dear {booking.full_name},",
            "",
            "This is a reminder of your upcoming appointment.",
            "",
            *self._details(booking),
        ]
        link = self.cancel_link(booking)
        if link:
            lines += ["", f"If you can no longer attend, cancel here: {link}"]

        return Notification(
            to=booking.email,
            subject="Appointment Reminder",
            body="\n".join(lines),
        )

    def cancellation(self, booking: Booking, event: Optional[CalendarEvent] = None) -> Notification:
        """Cancellation notice. The attached event should carry METHOD:CANCEL."""
        lines = [
            f"Dear {booking.full_name},",
            "",
            "Your appointment has been cancelled.",
            "",
            *self._details(booking),
            "",
            "You are welcome to book another time.",
        ]

        attachments: tuple[Attachment, ...] = ()
        if event is not None:
            attachments = (
                Attachment(
                    filename="cancellation.ics",
                    content=build_calendar_object(event),
                    method=event.method.value,
                ),
            )

        return Notification(
            to=booking.email,
            subject="Your Appointment has been Cancelled",
            body="\n".join(lines),
            attachments=attachments,
        )
