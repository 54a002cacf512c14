"""
Calendar Export.

Renders a booking as an iCalendar (RFC 5545) object. Pure: no storage
side effects, safe for a booking in any status, e.g. a cancellation
notice with STATUS:CANCELLED and METHOD:CANCEL.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from icalendar import Calendar, Event, vCalAddress, vText

from app.core.scheduling.clock import AuthorityClock
from app.core.scheduling.models import Booking, BookingStatus, Medium

PRODID = "-//Church Appointments//Appointments//EN"
DEFAULT_DURATION_MINUTES = 30


class CalendarStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    TENTATIVE = "TENTATIVE"


class CalendarMethod(str, Enum):
    REQUEST = "REQUEST"
    CANCEL = "CANCEL"
    PUBLISH = "PUBLISH"


@dataclass(frozen=True)
class CalendarEvent:
    """Everything the calendar object is built from."""

    title: str
    start_utc: datetime
    duration_minutes: Optional[int] = None
    description: str = ""
    location: str = ""
    uid: Optional[str] = None
    organizer_email: Optional[str] = None
    attendee_email: Optional[str] = None
    status: CalendarStatus = CalendarStatus.CONFIRMED
    method: CalendarMethod = CalendarMethod.REQUEST

    @property
    def end_utc(self) -> datetime:
        minutes = self.duration_minutes or DEFAULT_DURATION_MINUTES
        return self.start_utc + timedelta(minutes=minutes)


def build_calendar_object(event: CalendarEvent, now: Optional[datetime] = None) -> str:
    """Build the calendar text object.

    DESCRIPTION, LOCATION and SUMMARY are escaped per RFC 5545
    (backslash, newline, comma, semicolon).

    Args:
        event: Event data
        now: Build time for DTSTAMP (defaults to current UTC time)

    Returns:
        CRLF-delimited VCALENDAR text
    """
    stamp = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).replace(microsecond=0)
    start = event.start_utc.astimezone(timezone.utc).replace(microsecond=0)
    end = event.end_utc.astimezone(timezone.utc).replace(microsecond=0)

    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("method", CalendarMethod(event.method).value)

    vevent = Event()
    vevent.add("uid", event.uid or str(uuid.uuid4()))
    vevent.add("dtstamp", stamp)
    vevent.add("dtstart", start)
    vevent.add("dtend", end)
    vevent.add("summary", event.title)
    vevent.add("status", CalendarStatus(event.status).value)
    if event.description:
        vevent.add("description", event.description)
    if event.location:
        vevent.add("location", event.location)

    if event.organizer_email:
        organizer = vCalAddress(f"mailto:{event.organizer_email}")
        organizer.params["cn"] = vText("Pastor")
        vevent.add("organizer", organizer)

    if event.attendee_email:
        attendee = vCalAddress(f"mailto:{event.attendee_email}")
        attendee.params["cn"] = vText("Attendee")
        attendee.params["rsvp"] = vText("TRUE")
        vevent.add("attendee", attendee)

    cal.add_component(vevent)
    return cal.to_ical().decode("utf-8")


def format_authority_time(instant: datetime, clock: AuthorityClock) -> str:
    """Human-friendly authority-local time, e.g. 'Mon, Jan 15, 2024 3:00 PM EST'."""
    local = clock.to_authority_local(instant)
    hour = local.hour % 12 or 12
    return f"{local:%a, %b} {local.day}, {local:%Y} {hour}:{local:%M %p %Z}"


def calendar_event_for_booking(
    booking: Booking,
    clock: AuthorityClock,
    duration_minutes: Optional[int] = None,
    organizer_email: Optional[str] = None,
) -> CalendarEvent:
    """Map a booking to a calendar event.

    The UID is derived from the booking id so a later cancellation
    replaces the same calendar entry.
    """
    if booking.status == BookingStatus.CANCELLED:
        status, method = CalendarStatus.CANCELLED, CalendarMethod.CANCEL
    elif booking.status == BookingStatus.PENDING:
        status, method = CalendarStatus.TENTATIVE, CalendarMethod.REQUEST
    else:
        status, method = CalendarStatus.CONFIRMED, CalendarMethod.REQUEST

    lines = []
    if booking.remark:
        lines.append(booking.remark)
    lines.append(f"Medium: {booking.medium.value}")
    if booking.meeting_link:
        lines.append(f"Meeting link: {booking.meeting_link}")
    lines.append(f"Pastor's time: {format_authority_time(booking.slot_start_utc, clock)}")

    if booking.medium == Medium.ONLINE:
        location = booking.meeting_link or "Online"
    elif booking.medium == Medium.PHONE:
        location = f"Phone: {booking.phone_number}"
    else:
        location = "In person"

    return CalendarEvent(
        title=f"Appointment with the Pastor ({booking.full_name})",
        start_utc=booking.slot_start_utc,
        duration_minutes=duration_minutes,
        description="\n".join(lines),
        location=location,
        uid=f"{booking.id}@appointments",
        organizer_email=organizer_email,
        attendee_email=booking.email,
        status=status,
        method=method,
    )
