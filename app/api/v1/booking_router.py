# app/api/v1/booking_router.py
from datetime import date, datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from app.api.deps import Pagination, service_provider
from app.api.responses import ok, many, paged
from app.db.models import AppointmentStatus
from app.db.schemas import (
    ApiResponse,
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatusUpdate,
    BookingResult,
    ConflictCheckResponse,
    ConflictingBooking,
    ERROR_RESPONSES,
    PageResponse,
    WarningResponse,
)
from app.services.v1 import AppointmentService, TimeInterval

booking_router = APIRouter(
    prefix="/booking",
    tags=["Booking"],
    responses=ERROR_RESPONSES,
)

booking_reader = service_provider(AppointmentService, "booking:read")
booking_writer = service_provider(AppointmentService, "booking:write")


def _as_utc(value: datetime) -> datetime:
    # Naive query parameters are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@booking_router.post(
    "/appointments",
    response_model=ApiResponse[BookingResult],
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
    description="""
    Creates a direct booking after checking the provider and chair for
    overlapping bookings.

    **Concurrency:** the provider row is locked for the duration of the
    check, so two requests for the same slot cannot both succeed.
    Overlaps at other clinic locations come back as `warnings`.
    """,
)
async def create_appointment(
    payload: AppointmentCreate,
    service: AppointmentService = Depends(booking_writer),
):
    appointment, warnings = await service.book(payload)
    return ok(
        BookingResult(
            appointment=AppointmentResponse.model_validate(appointment),
            warnings=many(WarningResponse, warnings),
        )
    )


@booking_router.get(
    "/appointments",
    response_model=ApiResponse[PageResponse[AppointmentResponse]],
    summary="List appointments",
)
async def list_appointments(
    provider_id: Optional[str] = None,
    chair_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    appointment_status: Optional[AppointmentStatus] = Query(None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    week_of: Optional[date] = Query(None, description="Any day of the Monday-Sunday week to list"),
    pagination: Pagination = Depends(),
    service: AppointmentService = Depends(booking_reader),
):
    page = await service.list_appointments(
        page=pagination.page,
        page_size=pagination.page_size,
        provider_id=provider_id,
        chair_id=chair_id,
        patient_id=patient_id,
        status=appointment_status,
        date_from=date_from,
        date_to=date_to,
        week_of=week_of,
    )
    return paged(AppointmentResponse, page)


@booking_router.get(
    "/appointments/{appointment_id}",
    response_model=ApiResponse[AppointmentResponse],
    summary="Get an appointment",
)
async def get_appointment(
    appointment_id: str,
    service: AppointmentService = Depends(booking_reader),
):
    appointment = await service.get_appointment(appointment_id)
    return ok(AppointmentResponse.model_validate(appointment))


@booking_router.post(
    "/appointments/{appointment_id}/status",
    response_model=ApiResponse[AppointmentResponse],
    summary="Move an appointment through its lifecycle",
)
async def change_appointment_status(
    appointment_id: str,
    payload: AppointmentStatusUpdate,
    service: AppointmentService = Depends(booking_writer),
):
    appointment = await service.change_status(appointment_id, payload.status, payload.reason)
    return ok(AppointmentResponse.model_validate(appointment))


@booking_router.get(
    "/conflicts",
    response_model=ApiResponse[ConflictCheckResponse],
    summary="Check a provider or chair for overlapping bookings",
    description="""
    Read-only. Intervals are half-open: a booking ending at 10:00 does not
    conflict with one starting at 10:00. Cancelled and no-show bookings
    never conflict.
    """,
)
async def check_conflicts(
    start: datetime,
    end: datetime,
    provider_id: Optional[str] = None,
    chair_id: Optional[str] = None,
    exclude_appointment_id: Optional[str] = None,
    service: AppointmentService = Depends(booking_reader),
):
    interval = TimeInterval(start=_as_utc(start), end=_as_utc(end))
    conflicts, warnings = await service.check_conflicts(
        provider_id, chair_id, interval, exclude_appointment_id
    )
    return ok(
        ConflictCheckResponse(
            has_conflict=bool(conflicts),
            conflicts=many(ConflictingBooking, conflicts),
            warnings=many(WarningResponse, warnings),
        )
    )


__all__ = ["booking_router"]
