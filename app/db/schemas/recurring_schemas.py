# app/db/schemas/recurring_schemas.py
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, field_validator
from datetime import date, datetime
from typing import Optional
from ..models import DayOfWeek, RecurrencePattern, SeriesStatus, OccurrenceStatus
from .appointment_schemas import AppointmentResponse
from .common_schemas import WarningResponse

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class CancelScope(str, Enum):
    FUTURE = "future"  # Pending upcoming occurrences; series completes
    ALL = "all"  # Every non-terminal occurrence; series is cancelled


class UpdateScope(str, Enum):
    THIS = "this"
    FUTURE = "future"
    SERIES = "series"


class RecurringSeriesCreate(BaseModel):
    patient_id: str
    provider_id: str
    chair_id: Optional[str] = None
    appointment_type: Optional[str] = Field(None, max_length=50)
    name: Optional[str] = Field(None, max_length=100)
    duration: int = Field(..., ge=1, le=480, description="Minutes per visit")
    preferred_time: str = Field(..., pattern=HHMM_PATTERN, description="UTC HH:MM")
    pattern: RecurrencePattern
    interval: int = Field(1, ge=1, le=12)
    days_of_week: Optional[list[DayOfWeek]] = None
    preferred_day_of_week: Optional[DayOfWeek] = None
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    week_of_month: Optional[int] = Field(None, ge=-1, le=4)
    start_date: date
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("days_of_week")
    @classmethod
    def dedupe_days(cls, v: Optional[list[DayOfWeek]]) -> Optional[list[DayOfWeek]]:
        if v is None:
            return v
        return sorted(set(v), key=lambda day: day.weekday)

    @field_validator("week_of_month")
    @classmethod
    def reject_week_zero(cls, v: Optional[int]) -> Optional[int]:
        if v == 0:
            raise ValueError("week_of_month must be 1-4, or -1 for the last week")
        return v


class RecurringSeriesUpdate(BaseModel):
    """Descriptive fields and bounds; booking template changes go through occurrence updates."""

    name: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=1000)
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = Field(None, ge=1)


class SeriesCancelRequest(BaseModel):
    scope: CancelScope = CancelScope.FUTURE
    reason: Optional[str] = Field(None, max_length=500)


class OccurrenceMaterializeRequest(BaseModel):
    occurrence_number: int = Field(..., ge=1)


class OccurrenceChanges(BaseModel):
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = Field(None, pattern=HHMM_PATTERN)
    status: Optional[OccurrenceStatus] = None
    skipped_reason: Optional[str] = Field(None, max_length=500)
    # Series template fields, only with scope=series
    provider_id: Optional[str] = None
    chair_id: Optional[str] = None
    duration: Optional[int] = Field(None, ge=1, le=480)
    appointment_type: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)

    def template_fields(self) -> dict[str, object]:
        return self.model_dump(
            include={"provider_id", "chair_id", "duration", "appointment_type", "notes"},
            exclude_unset=True,
        )


class OccurrenceUpdateRequest(BaseModel):
    occurrence_number: int = Field(..., ge=1)
    scope: UpdateScope = UpdateScope.THIS
    changes: OccurrenceChanges


class OccurrenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    occurrence_id: str
    series_id: str
    occurrence_number: int
    scheduled_date: date
    scheduled_time: str
    status: OccurrenceStatus
    appointment_id: Optional[str]
    skipped_reason: Optional[str]
    is_modified: bool
    modified_at: Optional[datetime]
    modified_by: Optional[str]


class RecurringSeriesResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    series_id: str
    name: Optional[str]
    patient_id: str
    provider_id: str
    chair_id: Optional[str]
    appointment_type: Optional[str]
    duration: int
    preferred_time: str
    pattern: RecurrencePattern
    interval: int
    days_of_week: Optional[list[DayOfWeek]]
    preferred_day_of_week: Optional[DayOfWeek]
    day_of_month: Optional[int]
    week_of_month: Optional[int]
    start_date: date
    end_date: Optional[date]
    max_occurrences: Optional[int]
    status: SeriesStatus
    occurrences_created: int
    last_generated_date: Optional[date]
    notes: Optional[str]
    created_by: str
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    created_at: datetime


class SeriesWithOccurrences(BaseModel):
    series: RecurringSeriesResponse
    occurrences: list[OccurrenceResponse]


class MaterializeResult(BaseModel):
    occurrence: OccurrenceResponse
    appointment: AppointmentResponse
    warnings: list[WarningResponse] = Field(default_factory=list)


class OccurrenceUpdateResult(BaseModel):
    series: RecurringSeriesResponse
    updated: list[OccurrenceResponse]


class SeriesCancelResult(BaseModel):
    series: RecurringSeriesResponse
    cancelled_occurrences: int
    cancelled_appointments: int


__all__ = [
    "CancelScope",
    "UpdateScope",
    "RecurringSeriesCreate",
    "RecurringSeriesUpdate",
    "SeriesCancelRequest",
    "OccurrenceMaterializeRequest",
    "OccurrenceChanges",
    "OccurrenceUpdateRequest",
    "OccurrenceResponse",
    "RecurringSeriesResponse",
    "SeriesWithOccurrences",
    "MaterializeResult",
    "OccurrenceUpdateResult",
    "SeriesCancelResult",
]
