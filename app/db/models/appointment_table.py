# app/db/models/appointment_table.py
from __future__ import annotations
from typing import TYPE_CHECKING, Optional
from enum import Enum
from sqlalchemy import (
    String,
    Integer,
    ForeignKey,
    Text,
    Index,
    Enum as sqlalchemy_Enum,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from datetime import datetime
from .db_base_model import DbBaseModel, ClinicScopedMixin, SoftDeleteMixin, UTCDateTime


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"  # Booked, not yet confirmed
    CONFIRMED = "CONFIRMED"  # Patient confirmed attendance
    IN_PROGRESS = "IN_PROGRESS"  # Patient is in the chair
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"  # Appointment time passed without arrival

    @property
    def blocks_schedule(self) -> bool:
        """Whether a booking in this status occupies its provider/chair."""
        return self not in NON_BLOCKING_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in (
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        )


NON_BLOCKING_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})

APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


class AppointmentSource(str, Enum):
    DIRECT = "DIRECT"
    RECURRING = "RECURRING"


if TYPE_CHECKING:
    from .patient_table import Patient
    from .provider_table import Provider
    from .chair_table import Chair


class Appointment(ClinicScopedMixin, SoftDeleteMixin, DbBaseModel):
    """A booking: one patient, one provider, optionally one chair, one interval."""

    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_provider_window", "provider_id", "start_time", "end_time"),
        Index("ix_appointments_chair_window", "chair_id", "start_time", "end_time"),
    )

    appointment_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )

    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.patient_id"),
        nullable=False,
    )

    provider_id: Mapped[str] = mapped_column(
        ForeignKey("providers.provider_id"),
        nullable=False,
    )

    chair_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("chairs.chair_id"),
        nullable=True,
    )

    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[AppointmentStatus] = mapped_column(
        sqlalchemy_Enum(AppointmentStatus, name="appointment_status"),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )

    source: Mapped[AppointmentSource] = mapped_column(
        sqlalchemy_Enum(AppointmentSource, name="appointment_source"),
        nullable=False,
        default=AppointmentSource.DIRECT,
    )

    appointment_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    booked_by: Mapped[str] = mapped_column(String(36), nullable=False)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    patient: Mapped["Patient"] = relationship("Patient", lazy="raise")
    provider: Mapped["Provider"] = relationship("Provider", lazy="raise")
    chair: Mapped[Optional["Chair"]] = relationship("Chair", lazy="raise")


__all__ = [
    "Appointment",
    "AppointmentStatus",
    "AppointmentSource",
    "APPOINTMENT_TRANSITIONS",
    "NON_BLOCKING_STATUSES",
]
