# app/db/models/recurring_table.py
from __future__ import annotations
from typing import TYPE_CHECKING, Optional
from enum import Enum
from datetime import date, datetime
from sqlalchemy import (
    String,
    Integer,
    Boolean,
    Date,
    ForeignKey,
    Text,
    JSON,
    UniqueConstraint,
    Enum as sqlalchemy_Enum,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from .db_base_model import DbBaseModel, ClinicScopedMixin, SoftDeleteMixin, UTCDateTime

if TYPE_CHECKING:
    from .appointment_table import Appointment


class DayOfWeek(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @property
    def weekday(self) -> int:
        """Python `date.weekday()` number (Monday == 0)."""
        return list(DayOfWeek).index(self)

    @classmethod
    def from_date(cls, value: date) -> "DayOfWeek":
        return list(cls)[value.weekday()]


class RecurrencePattern(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"


class SeriesStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OccurrenceStatus(str, Enum):
    PENDING = "PENDING"  # Generated, no booking yet
    SCHEDULED = "SCHEDULED"  # Materialized into exactly one booking
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"


class RecurringSeries(ClinicScopedMixin, SoftDeleteMixin, DbBaseModel):
    __tablename__ = "recurring_series"

    series_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )

    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Booking template
    patient_id: Mapped[str] = mapped_column(ForeignKey("patients.patient_id"), nullable=False)
    provider_id: Mapped[str] = mapped_column(ForeignKey("providers.provider_id"), nullable=False)
    chair_id: Mapped[Optional[str]] = mapped_column(ForeignKey("chairs.chair_id"), nullable=True)
    appointment_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    preferred_time: Mapped[str] = mapped_column(String(5), nullable=False)  # "HH:MM" UTC
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Recurrence rule
    pattern: Mapped[RecurrencePattern] = mapped_column(
        sqlalchemy_Enum(RecurrencePattern, name="recurrence_pattern"),
        nullable=False,
    )
    interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    days_of_week: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    preferred_day_of_week: Mapped[Optional[DayOfWeek]] = mapped_column(
        sqlalchemy_Enum(DayOfWeek, name="day_of_week"), nullable=True
    )
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    week_of_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # -1 = last

    # Bounds
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    max_occurrences: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[SeriesStatus] = mapped_column(
        sqlalchemy_Enum(SeriesStatus, name="series_status"),
        nullable=False,
        default=SeriesStatus.ACTIVE,
    )

    occurrences_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_generated_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    occurrences: Mapped[list["RecurringOccurrence"]] = relationship(
        "RecurringOccurrence",
        back_populates="series",
        order_by="RecurringOccurrence.occurrence_number",
        lazy="raise",
    )

    @property
    def weekdays(self) -> list[DayOfWeek]:
        return [DayOfWeek(day) for day in (self.days_of_week or [])]


class RecurringOccurrence(ClinicScopedMixin, DbBaseModel):
    __tablename__ = "recurring_occurrences"
    __table_args__ = (
        UniqueConstraint("series_id", "occurrence_number", name="uq_occurrence_series_number"),
    )

    occurrence_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )

    series_id: Mapped[str] = mapped_column(
        ForeignKey("recurring_series.series_id"), nullable=False, index=True
    )

    occurrence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[str] = mapped_column(String(5), nullable=False)

    status: Mapped[OccurrenceStatus] = mapped_column(
        sqlalchemy_Enum(OccurrenceStatus, name="occurrence_status"),
        nullable=False,
        default=OccurrenceStatus.PENDING,
    )

    # Unique: one booking can back at most one occurrence
    appointment_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("appointments.appointment_id"), nullable=True, unique=True
    )

    skipped_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_modified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    modified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    modified_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    series: Mapped["RecurringSeries"] = relationship(
        "RecurringSeries", back_populates="occurrences", lazy="raise"
    )
    appointment: Mapped[Optional["Appointment"]] = relationship("Appointment", lazy="raise")


__all__ = [
    "DayOfWeek",
    "RecurrencePattern",
    "SeriesStatus",
    "OccurrenceStatus",
    "RecurringSeries",
    "RecurringOccurrence",
]
