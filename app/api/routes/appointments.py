"""
Appointments API Endpoints.

Availability lookup, booking, administrative status changes,
self-service cancellation and calendar export.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator

from app.api.dependencies import get_appointment_service
from app.api.middleware.auth import optional_staff, require_admin, require_staff
from app.core.scheduling.clock import parse_calendar_date
from app.core.scheduling.models import (
    Booking,
    BookingStatus,
    Medium,
    Principal,
    TransitionOutcome,
)
from app.core.scheduling.service import AppointmentService, BookingRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


# === Request / response models ===


class AppointmentCreateRequest(BaseModel):
    """Booking request."""

    full_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Requester's full name",
        examples=["Jane Doe"],
    )
    email: EmailStr = Field(
        ...,
        description="Requester's email address",
        examples=["jane@example.org"],
    )
    phone_number: str = Field(
        ...,
        min_length=3,
        max_length=40,
        description="Requester's phone number",
        examples=["+1 555 123 4567"],
    )
    slot_local_date_time: str = Field(
        ...,
        description=(
            "Slot start in the pastor's timezone, YYYY-MM-DDTHH:mm. During the repeated "
            "fall-back hour, use the slot key with its offset (e.g. 2024-11-03T01:30-05:00)"
        ),
        examples=["2024-01-15T15:00"],
    )
    medium: Medium = Field(
        ...,
        description="How the appointment takes place",
    )
    remark: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Anything the pastor should know beforehand",
    )

    @field_validator("full_name", "phone_number")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class AppointmentUpdateRequest(BaseModel):
    """Administrative status and/or remark change."""

    status: Optional[BookingStatus] = Field(
        default=None,
        description="Target status",
    )
    remark: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="New remark",
    )


class AvailableSlotsResponse(BaseModel):
    """Available slots for a date."""

    date: str
    timezone: str
    slots: list[str]


class AppointmentCreatedResponse(BaseModel):
    """Booking created."""

    id: str
    status: BookingStatus
    slot_start_utc: str
    local_date: str
    local_time: str
    confirmation_sent: bool
    cancel_token: Optional[str] = None


class AppointmentResponse(BaseModel):
    """Booking as seen by staff."""

    id: str
    full_name: str
    email: str
    phone_number: str
    slot_start_utc: str
    local_date: str
    local_time: str
    medium: Medium
    status: BookingStatus
    remark: Optional[str] = None
    reminder_sent: bool
    last_reminder_sent_at: Optional[str] = None
    meeting_link: Optional[str] = None
    created_at: str
    updated_at: str


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


class ConflictResponse(ErrorResponse):
    """Slot conflict with refreshed availability."""

    available_slots: list[str] = []


def _to_response(booking: Booking, service: AppointmentService) -> AppointmentResponse:
    local = service.clock.to_authority_local(booking.slot_start_utc)
    data = booking.to_dict()
    data["local_date"] = local.date().isoformat()
    data["local_time"] = local.strftime("%H:%M")
    return AppointmentResponse(**data)


def _transition_response(
    outcome: TransitionOutcome,
    service: AppointmentService,
) -> AppointmentResponse | JSONResponse:
    if not outcome.success:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=ErrorResponse(
                error="InvalidTransition",
                detail=outcome.error.describe() if outcome.error else None,
            ).model_dump(),
        )
    return _to_response(outcome.booking, service)


# === Public endpoints ===


@router.get(
    "/available-slots",
    response_model=AvailableSlotsResponse,
    summary="List available slots",
    description="Bookable slot start times for a date, in the pastor's timezone.",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid date format"},
    },
)
async def available_slots(
    date: str = Query(..., description="Date as YYYY-MM-DD", examples=["2024-01-15"]),
    service: AppointmentService = Depends(get_appointment_service),
) -> AvailableSlotsResponse:
    """Get available slots for a date. Past dates have none."""
    calendar_date = parse_calendar_date(date)
    slots = await service.available_slot_keys(calendar_date)
    return AvailableSlotsResponse(
        date=calendar_date.isoformat(),
        timezone=service.clock.tz_name,
        slots=slots,
    )


@router.post(
    "",
    response_model=AppointmentCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
    responses={
        201: {"description": "Appointment booked"},
        400: {"model": ErrorResponse, "description": "Invalid request"},
        409: {"model": ConflictResponse, "description": "Slot no longer available"},
    },
)
async def create_appointment(
    request: AppointmentCreateRequest,
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentCreatedResponse | JSONResponse:
    """
    Book a slot.

    The confirmation email is best-effort: a failed send still books the
    slot and reports `confirmation_sent: false`.
    """
    outcome = await service.request_booking(
        BookingRequest(
            full_name=request.full_name,
            email=str(request.email),
            phone_number=request.phone_number,
            slot_local_date_time=request.slot_local_date_time,
            medium=request.medium,
            remark=request.remark,
        )
    )

    if not outcome.success:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=ConflictResponse(
                error="SlotConflict",
                detail=outcome.conflict.message if outcome.conflict else None,
                available_slots=outcome.available_slots or [],
            ).model_dump(),
        )

    booking = outcome.booking
    local = service.clock.to_authority_local(booking.slot_start_utc)
    return AppointmentCreatedResponse(
        id=booking.id,
        status=booking.status,
        slot_start_utc=booking.slot_start_utc.isoformat(),
        local_date=local.date().isoformat(),
        local_time=local.strftime("%H:%M"),
        confirmation_sent=outcome.confirmation_sent,
        cancel_token=booking.cancel_token,
    )


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    summary="Cancel with the booking token",
    responses={
        403: {"model": ErrorResponse, "description": "Invalid token"},
        404: {"model": ErrorResponse, "description": "Appointment not found"},
        409: {"model": ErrorResponse, "description": "Appointment cannot be cancelled"},
    },
)
async def cancel_appointment(
    appointment_id: str,
    token: str = Query(..., min_length=1, description="Token from the confirmation email"),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse | JSONResponse:
    """Self-service cancellation. Frees the slot immediately."""
    outcome = await service.cancel_booking(appointment_id, token)
    return _transition_response(outcome, service)


@router.get(
    "/{appointment_id}/calendar",
    summary="Download calendar file",
    response_class=Response,
    responses={
        200: {"content": {"text/calendar": {}}, "description": "iCalendar file"},
        403: {"model": ErrorResponse, "description": "Staff key or booking token required"},
        404: {"model": ErrorResponse, "description": "Appointment not found"},
    },
)
async def appointment_calendar(
    appointment_id: str,
    token: Optional[str] = Query(None, description="Token from the confirmation email"),
    principal: Optional[Principal] = Depends(optional_staff),
    service: AppointmentService = Depends(get_appointment_service),
) -> Response:
    """Export the appointment as an .ics attachment."""
    ics = await service.calendar_for(appointment_id, token=token, principal=principal)
    return Response(
        content=ics,
        media_type="text/calendar",
        headers={
            "Content-Disposition": f'attachment; filename="appointment-{appointment_id}.ics"'
        },
    )


# === Staff endpoints ===


@router.get(
    "",
    response_model=list[AppointmentResponse],
    summary="List appointments",
    description="Appointments, newest first. Dates are in the pastor's timezone.",
)
async def list_appointments(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    email: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None, alias="from", description="YYYY-MM-DD, inclusive"),
    date_to: Optional[str] = Query(None, alias="to", description="YYYY-MM-DD, inclusive"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    principal: Principal = Depends(require_staff),
    service: AppointmentService = Depends(get_appointment_service),
) -> list[AppointmentResponse]:
    """List appointments with optional filters."""
    start = end = None
    if date_from:
        start = service.clock.from_authority_local(parse_calendar_date(date_from), "00:00")
    if date_to:
        next_day = parse_calendar_date(date_to) + timedelta(days=1)
        end = service.clock.from_authority_local(next_day, "00:00")

    bookings = await service.list_bookings(
        status=status_filter,
        email=email,
        start=start,
        end=end,
        limit=limit,
    )
    return [_to_response(b, service) for b in bookings]


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Get an appointment",
    responses={404: {"model": ErrorResponse, "description": "Appointment not found"}},
)
async def get_appointment(
    appointment_id: str,
    principal: Principal = Depends(require_staff),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    """Get appointment details."""
    return _to_response(await service.get_booking(appointment_id), service)


@router.patch(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Update status or remark",
    responses={
        404: {"model": ErrorResponse, "description": "Appointment not found"},
        409: {"model": ErrorResponse, "description": "Transition not allowed"},
    },
)
async def update_appointment(
    appointment_id: str,
    request: AppointmentUpdateRequest,
    principal: Principal = Depends(require_staff),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse | JSONResponse:
    """Confirm, complete or cancel an appointment, or edit its remark."""
    outcome = await service.update_booking(
        appointment_id,
        principal,
        status=request.status,
        remark=request.remark,
    )
    return _transition_response(outcome, service)


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an appointment",
    responses={404: {"model": ErrorResponse, "description": "Appointment not found"}},
)
async def delete_appointment(
    appointment_id: str,
    principal: Principal = Depends(require_admin),
    service: AppointmentService = Depends(get_appointment_service),
) -> Response:
    """Remove an appointment record (admin only)."""
    await service.delete_booking(appointment_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
