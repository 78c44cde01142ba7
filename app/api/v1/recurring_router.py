# app/api/v1/recurring_router.py
from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from app.api.deps import Pagination, service_provider
from app.api.responses import ok, many, paged
from app.db.models import OccurrenceStatus, SeriesStatus
from app.db.schemas import (
    ApiResponse,
    AppointmentResponse,
    ERROR_RESPONSES,
    MaterializeResult,
    OccurrenceMaterializeRequest,
    OccurrenceResponse,
    OccurrenceUpdateRequest,
    OccurrenceUpdateResult,
    PageResponse,
    RecurringSeriesCreate,
    RecurringSeriesResponse,
    RecurringSeriesUpdate,
    SeriesCancelRequest,
    SeriesCancelResult,
    SeriesWithOccurrences,
    WarningResponse,
)
from app.services.v1 import RecurringSeriesService

recurring_router = APIRouter(
    prefix="/booking/recurring",
    tags=["Recurring appointments"],
    responses=ERROR_RESPONSES,
)

series_reader = service_provider(RecurringSeriesService, "booking:read")
series_writer = service_provider(RecurringSeriesService, "booking:write")


def _series_with(series, occurrences) -> SeriesWithOccurrences:  # type: ignore[no-untyped-def]
    return SeriesWithOccurrences(
        series=RecurringSeriesResponse.model_validate(series),
        occurrences=many(OccurrenceResponse, occurrences),
    )


@recurring_router.post(
    "",
    response_model=ApiResponse[SeriesWithOccurrences],
    status_code=status.HTTP_201_CREATED,
    summary="Create a recurring series",
    description="""
    Validates the recurrence rule and expands it into PENDING occurrences.
    No appointments are booked until an occurrence is materialized.
    """,
)
async def create_series(
    payload: RecurringSeriesCreate,
    service: RecurringSeriesService = Depends(series_writer),
):
    series, occurrences = await service.create_series(payload)
    return ok(_series_with(series, occurrences))


@recurring_router.get(
    "",
    response_model=ApiResponse[PageResponse[RecurringSeriesResponse]],
    summary="List recurring series",
)
async def list_series(
    series_status: Optional[SeriesStatus] = Query(None, alias="status"),
    patient_id: Optional[str] = None,
    provider_id: Optional[str] = None,
    pagination: Pagination = Depends(),
    service: RecurringSeriesService = Depends(series_reader),
):
    page = await service.list_series(
        page=pagination.page,
        page_size=pagination.page_size,
        status=series_status,
        patient_id=patient_id,
        provider_id=provider_id,
    )
    return paged(RecurringSeriesResponse, page)


@recurring_router.get(
    "/{series_id}",
    response_model=ApiResponse[SeriesWithOccurrences],
    summary="Get a series with its occurrences",
)
async def get_series(
    series_id: str,
    service: RecurringSeriesService = Depends(series_reader),
):
    series, occurrences = await service.get_series(series_id)
    return ok(_series_with(series, occurrences))


@recurring_router.patch(
    "/{series_id}",
    response_model=ApiResponse[RecurringSeriesResponse],
    summary="Update series name, notes or bounds",
)
async def update_series(
    series_id: str,
    payload: RecurringSeriesUpdate,
    service: RecurringSeriesService = Depends(series_writer),
):
    series = await service.update_series(series_id, payload)
    return ok(RecurringSeriesResponse.model_validate(series))


@recurring_router.post(
    "/{series_id}/generate",
    response_model=ApiResponse[SeriesWithOccurrences],
    summary="Generate occurrences up to the current bounds",
    description="Appends occurrences after the last generated one; existing ones are untouched.",
)
async def generate_occurrences(
    series_id: str,
    service: RecurringSeriesService = Depends(series_writer),
):
    series, created = await service.generate_occurrences(series_id)
    return ok(_series_with(series, created))


@recurring_router.post(
    "/{series_id}/cancel",
    response_model=ApiResponse[SeriesCancelResult],
    summary="Cancel a series",
    description="""
    `future`: cancels upcoming PENDING occurrences and completes the series.
    `all`: also cancels skipped occurrences and upcoming booked ones along
    with their appointments; the series becomes CANCELLED.
    """,
)
async def cancel_series(
    series_id: str,
    payload: SeriesCancelRequest,
    service: RecurringSeriesService = Depends(series_writer),
):
    series, occurrences, appointments = await service.cancel_series(
        series_id, payload.scope, payload.reason
    )
    return ok(
        SeriesCancelResult(
            series=RecurringSeriesResponse.model_validate(series),
            cancelled_occurrences=occurrences,
            cancelled_appointments=appointments,
        )
    )


@recurring_router.get(
    "/{series_id}/occurrences",
    response_model=ApiResponse[list[OccurrenceResponse]],
    summary="List occurrences of a series",
)
async def list_occurrences(
    series_id: str,
    occurrence_status: Optional[OccurrenceStatus] = Query(None, alias="status"),
    service: RecurringSeriesService = Depends(series_reader),
):
    occurrences = await service.list_occurrences(series_id, occurrence_status)
    return ok(many(OccurrenceResponse, occurrences))


@recurring_router.post(
    "/{series_id}/occurrences",
    response_model=ApiResponse[MaterializeResult],
    status_code=status.HTTP_201_CREATED,
    summary="Book one pending occurrence",
    description="""
    Creates the appointment for a PENDING occurrence and links it.

    **Concurrency:** a second request for the same occurrence fails with
    `OCCURRENCE_NOT_FOUND` or `CONCURRENT_MODIFICATION`; at most one
    appointment is ever created.
    """,
)
async def materialize_occurrence(
    series_id: str,
    payload: OccurrenceMaterializeRequest,
    service: RecurringSeriesService = Depends(series_writer),
):
    occurrence, appointment, warnings = await service.materialize(
        series_id, payload.occurrence_number
    )
    return ok(
        MaterializeResult(
            occurrence=OccurrenceResponse.model_validate(occurrence),
            appointment=AppointmentResponse.model_validate(appointment),
            warnings=many(WarningResponse, warnings),
        )
    )


@recurring_router.put(
    "/{series_id}/occurrences",
    response_model=ApiResponse[OccurrenceUpdateResult],
    summary="Modify occurrences",
    description="""
    `this` changes one occurrence, `future` every upcoming PENDING one,
    `series` also rewrites the series template.
    """,
)
async def update_occurrence(
    series_id: str,
    payload: OccurrenceUpdateRequest,
    service: RecurringSeriesService = Depends(series_writer),
):
    series, updated = await service.update_occurrence(
        series_id, payload.occurrence_number, payload.scope, payload.changes
    )
    return ok(
        OccurrenceUpdateResult(
            series=RecurringSeriesResponse.model_validate(series),
            updated=many(OccurrenceResponse, updated),
        )
    )


__all__ = ["recurring_router"]
