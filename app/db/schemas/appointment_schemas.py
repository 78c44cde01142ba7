# app/db/schemas/appointment_schemas.py
from pydantic import BaseModel, Field, ConfigDict, AwareDatetime
from datetime import datetime
from typing import Optional
from ..models import AppointmentStatus, AppointmentSource
from .common_schemas import WarningResponse


class AppointmentCreate(BaseModel):
    patient_id: str = Field(..., description="Patient in the caller's clinic")
    provider_id: str = Field(..., description="Provider in the caller's clinic")
    chair_id: Optional[str] = Field(None, description="Optional operatory chair")
    start_time: AwareDatetime = Field(..., description="Start instant, timezone-aware")
    duration: int = Field(..., ge=5, le=480, description="Length in minutes")
    appointment_type: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    reason: Optional[str] = Field(None, max_length=500)


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    appointment_id: str
    patient_id: str
    provider_id: str
    chair_id: Optional[str]
    start_time: datetime
    end_time: datetime
    duration: int
    status: AppointmentStatus
    source: AppointmentSource
    appointment_type: Optional[str]
    notes: Optional[str]
    booked_by: str
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    created_at: datetime
    updated_at: datetime


class BookingResult(BaseModel):
    appointment: AppointmentResponse
    warnings: list[WarningResponse] = Field(default_factory=list)


class ConflictingBooking(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    appointment_id: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus


class ConflictCheckResponse(BaseModel):
    has_conflict: bool
    conflicts: list[ConflictingBooking]
    warnings: list[WarningResponse] = Field(default_factory=list)


__all__ = [
    "AppointmentCreate",
    "AppointmentStatusUpdate",
    "AppointmentResponse",
    "BookingResult",
    "ConflictingBooking",
    "ConflictCheckResponse",
]
