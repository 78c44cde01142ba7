# app/services/v1/conflict_service.py
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from sqlalchemy import select, Select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import (
    Appointment,
    Provider,
    RecordState,
    NON_BLOCKING_STATUSES,
)
from app.db.repository import ScopedRepository
from common.api_error import ValidationError, ResourceConflict


class ResourceKind(str, Enum):
    PROVIDER = "provider"
    CHAIR = "chair"


@dataclass(frozen=True)
class TimeInterval:
    """Half-open [start, end) time range."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError(
                "Interval start must be before its end", code="INVALID_INTERVAL"
            )

    @classmethod
    def from_duration(cls, start: datetime, minutes: int) -> "TimeInterval":
        return cls(start=start, end=start + timedelta(minutes=minutes))

    def overlaps(self, other: "TimeInterval") -> bool:
        # Touching edges (one ends when the other starts) do not overlap.
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class ScheduleWarning:
    """Advisory finding that never blocks a booking."""

    code: str
    message: str
    clinic_id: str
    start: datetime
    end: datetime


class ConflictDetector:
    """
    Answers "is this resource free for this interval?" for one clinic.

    Pure query: callers decide whether a conflict rejects the request.
    """

    def __init__(self, db: AsyncSession, clinic_id: str):
        self.db = db
        self.clinic_id = clinic_id
        self.repo = ScopedRepository(db, clinic_id)

    def _overlapping(
        self,
        resource: ResourceKind,
        resource_id: str,
        interval: TimeInterval,
        exclude_booking_id: Optional[str],
    ) -> Select[tuple[Appointment]]:
        column = (
            Appointment.provider_id
            if resource == ResourceKind.PROVIDER
            else Appointment.chair_id
        )
        stmt = (
            self.repo.select(Appointment)
            .where(
                column == resource_id,
                Appointment.start_time < interval.end,
                Appointment.end_time > interval.start,
                Appointment.status.not_in(NON_BLOCKING_STATUSES),
            )
            .order_by(Appointment.start_time)
        )
        if exclude_booking_id:
            stmt = stmt.where(Appointment.appointment_id != exclude_booking_id)
        return stmt

    async def find_conflicts(
        self,
        resource: ResourceKind,
        resource_id: str,
        interval: TimeInterval,
        exclude_booking_id: Optional[str] = None,
    ) -> list[Appointment]:
        stmt = self._overlapping(
            resource, resource_id, interval, exclude_booking_id
        ).execution_options(logging_token="ConflictDetector.find_conflicts")
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def has_conflict(
        self,
        resource: ResourceKind,
        resource_id: str,
        interval: TimeInterval,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        stmt = self._overlapping(resource, resource_id, interval, exclude_booking_id)
        result = await self.db.execute(
            select(stmt.exists()).execution_options(
                logging_token="ConflictDetector.has_conflict"
            )
        )
        return bool(result.scalar())

    async def cross_location_warnings(
        self,
        provider: Provider,
        interval: TimeInterval,
    ) -> list[ScheduleWarning]:
        """
        Overlapping bookings of the same staff member at other clinics.

        This is the one read that crosses the tenant boundary, so it only
        returns the other clinic's id and the overlapping window.
        """
        stmt = (
            select(Appointment.clinic_id, Appointment.start_time, Appointment.end_time)
            .join(Provider, Appointment.provider_id == Provider.provider_id)
            .where(
                Provider.staff_user_id == provider.staff_user_id,
                Appointment.clinic_id != self.clinic_id,
                Appointment.record_state == RecordState.ACTIVE,
                Appointment.status.not_in(NON_BLOCKING_STATUSES),
                Appointment.start_time < interval.end,
                Appointment.end_time > interval.start,
            )
            .order_by(Appointment.start_time)
            .execution_options(logging_token="ConflictDetector.cross_location_warnings")
        )
        rows = (await self.db.execute(stmt)).all()
        return [
            ScheduleWarning(
                code="CROSS_LOCATION_OVERLAP",
                message="Provider is booked at another location during this time",
                clinic_id=row.clinic_id,
                start=row.start_time,
                end=row.end_time,
            )
            for row in rows
        ]

    async def ensure_available(
        self,
        provider: Provider,
        chair_id: Optional[str],
        interval: TimeInterval,
        exclude_booking_id: Optional[str] = None,
    ) -> list[ScheduleWarning]:
        """
        Raise ResourceConflict if the provider or chair is taken, otherwise
        return the advisory warnings for the slot.
        """
        checks = [(ResourceKind.PROVIDER, provider.provider_id)]
        if chair_id:
            checks.append((ResourceKind.CHAIR, chair_id))

        for resource, resource_id in checks:
            conflicts = await self.find_conflicts(
                resource, resource_id, interval, exclude_booking_id
            )
            if conflicts:
                raise ResourceConflict(
                    resource.value, resource_id, conflicts[0].appointment_id
                )

        return await self.cross_location_warnings(provider, interval)


__all__ = [
    "ResourceKind",
    "TimeInterval",
    "ScheduleWarning",
    "ConflictDetector",
]
