# app/services/v1/appointment_service.py
from datetime import date, timezone
from typing import Optional

from app.db.models import (
    Appointment,
    AppointmentStatus,
    AppointmentSource,
    Chair,
    DbBaseModel,
    Patient,
    Provider,
    APPOINTMENT_TRANSITIONS,
)
from app.db.repository import Page
from app.db.schemas import AppointmentCreate
from common.api_error import ValidationError, StateError
from common.scripts import get_week_date_range, utc_instant_range
from .base_service import BaseService
from .conflict_service import ConflictDetector, ResourceKind, ScheduleWarning, TimeInterval


class AppointmentService(BaseService):
    """Direct (non-recurring) bookings and their status lifecycle."""

    async def load_provider(self, provider_id: str, *, lock: bool = False) -> Provider:
        """
        Fetch a bookable provider. With `lock`, the row is held FOR UPDATE
        so concurrent bookings for the same provider serialize on it.
        """
        provider = await self.repo.get_or_raise(
            Provider,
            provider_id,
            code="PROVIDER_NOT_FOUND",
            label="Provider",
            for_update=lock,
        )
        if not provider.is_active:
            raise ValidationError(
                f"Provider {provider_id} is not active", code="PROVIDER_INACTIVE"
            )
        return provider

    async def load_chair(self, chair_id: Optional[str]) -> Optional[Chair]:
        if chair_id is None:
            return None
        chair = await self.repo.get_or_raise(
            Chair, chair_id, code="CHAIR_NOT_FOUND", label="Chair"
        )
        if not chair.is_active:
            raise ValidationError(f"Chair {chair_id} is not active", code="CHAIR_INACTIVE")
        return chair

    async def book(self, data: AppointmentCreate) -> tuple[Appointment, list[ScheduleWarning]]:
        await self.repo.get_or_raise(
            Patient, data.patient_id, code="PATIENT_NOT_FOUND", label="Patient"
        )
        provider = await self.load_provider(data.provider_id, lock=True)
        await self.load_chair(data.chair_id)

        interval = TimeInterval.from_duration(
            data.start_time.astimezone(timezone.utc), data.duration
        )
        if interval.start < self.clock():
            raise ValidationError(
                "Appointments cannot be booked in the past", code="APPOINTMENT_IN_PAST"
            )

        detector = ConflictDetector(self.db, self.ctx.clinic_id)
        warnings = await detector.ensure_available(provider, data.chair_id, interval)

        appointment = self.repo.add(
            Appointment(
                appointment_id=DbBaseModel.generate_uuid(),
                patient_id=data.patient_id,
                provider_id=provider.provider_id,
                chair_id=data.chair_id,
                start_time=interval.start,
                end_time=interval.end,
                duration=data.duration,
                status=AppointmentStatus.SCHEDULED,
                source=AppointmentSource.DIRECT,
                appointment_type=data.appointment_type,
                notes=data.notes,
                booked_by=self.ctx.actor_id,
            )
        )
        await self.commit("Appointment")

        self.logger.info(
            "Appointment booked",
            appointment_id=appointment.appointment_id,
            provider_id=provider.provider_id,
            start_time=interval.start.isoformat(),
            warnings=len(warnings),
        )
        await self.record(
            "appointment.booked",
            "appointment",
            appointment.appointment_id,
            provider_id=provider.provider_id,
            start_time=interval.start,
        )
        return appointment, warnings

    async def get_appointment(self, appointment_id: str) -> Appointment:
        return await self.repo.get_or_raise(
            Appointment, appointment_id, code="APPOINTMENT_NOT_FOUND", label="Appointment"
        )

    async def list_appointments(
        self,
        *,
        page: int,
        page_size: int,
        provider_id: Optional[str] = None,
        chair_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        week_of: Optional[date] = None,
    ) -> Page[Appointment]:
        if week_of is not None:
            date_from, date_to = get_week_date_range(week_of)
        lower, upper = utc_instant_range(date_from, date_to)

        stmt = self.repo.select(Appointment)
        if provider_id:
            stmt = stmt.where(Appointment.provider_id == provider_id)
        if chair_id:
            stmt = stmt.where(Appointment.chair_id == chair_id)
        if patient_id:
            stmt = stmt.where(Appointment.patient_id == patient_id)
        if status:
            stmt = stmt.where(Appointment.status == status)
        if lower:
            stmt = stmt.where(Appointment.start_time >= lower)
        if upper:
            stmt = stmt.where(Appointment.start_time < upper)

        stmt = stmt.order_by(Appointment.start_time).execution_options(
            logging_token="AppointmentService.list_appointments"
        )
        return await self.repo.paginate(stmt, page, page_size)

    async def change_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        reason: Optional[str] = None,
    ) -> Appointment:
        appointment = await self.get_appointment(appointment_id)
        current = appointment.status

        if new_status not in APPOINTMENT_TRANSITIONS[current]:
            self.logger.warning(
                "Rejected appointment transition",
                appointment_id=appointment_id,
                from_status=current.value,
                to_status=new_status.value,
            )
            raise StateError(
                f"Cannot move appointment from {current.value} to {new_status.value}"
            )

        appointment.status = new_status
        if new_status == AppointmentStatus.CANCELLED:
            appointment.cancelled_at = self.clock()
            appointment.cancelled_by = self.ctx.actor_id
            appointment.cancellation_reason = reason

        await self.commit("Appointment")
        self.logger.info(
            "Appointment status changed",
            appointment_id=appointment_id,
            from_status=current.value,
            to_status=new_status.value,
        )
        await self.record(
            "appointment.status_changed",
            "appointment",
            appointment_id,
            from_status=current.value,
            to_status=new_status.value,
            reason=reason,
        )
        return appointment

    async def check_conflicts(
        self,
        provider_id: Optional[str],
        chair_id: Optional[str],
        interval: TimeInterval,
        exclude_appointment_id: Optional[str] = None,
    ) -> tuple[list[Appointment], list[ScheduleWarning]]:
        """Read-only: every blocking booking plus advisory warnings."""
        if provider_id is None and chair_id is None:
            raise ValidationError("provider_id or chair_id is required")

        detector = ConflictDetector(self.db, self.ctx.clinic_id)
        conflicts: list[Appointment] = []
        warnings: list[ScheduleWarning] = []

        if provider_id:
            provider = await self.load_provider(provider_id)
            conflicts += await detector.find_conflicts(
                ResourceKind.PROVIDER, provider_id, interval, exclude_appointment_id
            )
            warnings = await detector.cross_location_warnings(provider, interval)
        if chair_id:
            await self.load_chair(chair_id)
            seen = {appointment.appointment_id for appointment in conflicts}
            conflicts += [
                appointment
                for appointment in await detector.find_conflicts(
                    ResourceKind.CHAIR, chair_id, interval, exclude_appointment_id
                )
                if appointment.appointment_id not in seen
            ]

        return sorted(conflicts, key=lambda a: a.start_time), warnings


__all__ = ["AppointmentService"]
