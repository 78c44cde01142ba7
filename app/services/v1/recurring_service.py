# app/services/v1/recurring_service.py
from datetime import datetime
from typing import Optional
from sqlalchemy import Select

from app.db.models import (
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    DbBaseModel,
    OccurrenceStatus,
    Patient,
    RecurringOccurrence,
    RecurringSeries,
    SeriesStatus,
)
from app.db.repository import Page
from app.db.schemas import (
    CancelScope,
    OccurrenceChanges,
    RecurringSeriesCreate,
    RecurringSeriesUpdate,
    UpdateScope,
)
from common.api_error import (
    CannotModifyPast,
    OccurrenceInPast,
    OccurrenceNotFound,
    SeriesCancelled,
    SeriesCompleted,
    StateError,
    ValidationError,
)
from common.scripts import combine_utc
from .appointment_service import AppointmentService
from .conflict_service import ConflictDetector, ScheduleWarning, TimeInterval
from .recurrence import RecurrenceRule, generate_occurrence_dates

# Manual status moves allowed through update_occurrence
OCCURRENCE_TRANSITIONS: dict[OccurrenceStatus, set[OccurrenceStatus]] = {
    OccurrenceStatus.PENDING: {OccurrenceStatus.SKIPPED, OccurrenceStatus.CANCELLED},
    OccurrenceStatus.SKIPPED: {OccurrenceStatus.PENDING, OccurrenceStatus.CANCELLED},
}


def occurrence_start(occurrence: RecurringOccurrence) -> datetime:
    return combine_utc(occurrence.scheduled_date, occurrence.scheduled_time)


class RecurringSeriesService(AppointmentService):
    """
    Recurring series lifecycle: rule expansion into PENDING occurrences,
    on-demand materialization into bookings, scoped edits and cancellation.
    """

    # -- helpers -----------------------------------------------------------

    async def _load_series(self, series_id: str) -> RecurringSeries:
        return await self.repo.get_or_raise(
            RecurringSeries,
            series_id,
            code="SERIES_NOT_FOUND",
            label="Recurring series",
        )

    @staticmethod
    def _ensure_active(series: RecurringSeries) -> None:
        if series.status == SeriesStatus.CANCELLED:
            raise SeriesCancelled(series.series_id)
        if series.status == SeriesStatus.COMPLETED:
            raise SeriesCompleted(series.series_id)

    def _occurrences_stmt(self, series_id: str) -> Select[tuple[RecurringOccurrence]]:
        return (
            self.repo.select(RecurringOccurrence)
            .where(RecurringOccurrence.series_id == series_id)
            .order_by(RecurringOccurrence.occurrence_number)
        )

    async def _occurrences(
        self,
        series_id: str,
        status: Optional[OccurrenceStatus] = None,
    ) -> list[RecurringOccurrence]:
        stmt = self._occurrences_stmt(series_id)
        if status is not None:
            stmt = stmt.where(RecurringOccurrence.status == status)
        result = await self.db.execute(
            stmt.execution_options(logging_token="RecurringSeriesService.occurrences")
        )
        return list(result.scalars().all())

    async def _occurrence(
        self,
        series_id: str,
        occurrence_number: int,
        status: Optional[OccurrenceStatus] = None,
    ) -> RecurringOccurrence:
        stmt = self._occurrences_stmt(series_id).where(
            RecurringOccurrence.occurrence_number == occurrence_number
        )
        if status is not None:
            stmt = stmt.where(RecurringOccurrence.status == status)
        occurrence = (await self.db.execute(stmt)).scalar_one_or_none()
        if occurrence is None:
            raise OccurrenceNotFound(series_id, occurrence_number)
        return occurrence

    def _rule(self, series: RecurringSeries) -> RecurrenceRule:
        rule = RecurrenceRule.from_series(series)
        rule.validate(self.settings.max_occurrences)
        return rule

    def _append_occurrences(self, series: RecurringSeries) -> list[RecurringOccurrence]:
        """
        Expand the series rule and add occurrences numbered beyond
        `occurrences_created`. Existing occurrences are never touched.
        """
        dates = generate_occurrence_dates(
            self._rule(series),
            max_occurrences_cap=self.settings.max_occurrences,
            max_span_days=self.settings.max_span_days,
        )
        already = series.occurrences_created or 0
        created = [
            self.repo.add(
                RecurringOccurrence(
                    occurrence_id=DbBaseModel.generate_uuid(),
                    series_id=series.series_id,
                    occurrence_number=number,
                    scheduled_date=day,
                    scheduled_time=series.preferred_time,
                    status=OccurrenceStatus.PENDING,
                    is_modified=False,
                )
            )
            for number, day in enumerate(dates, start=1)
            if number > already
        ]
        if created:
            series.occurrences_created = already + len(created)
            series.last_generated_date = dates[-1]
        return created

    # -- series ------------------------------------------------------------

    async def create_series(
        self, data: RecurringSeriesCreate
    ) -> tuple[RecurringSeries, list[RecurringOccurrence]]:
        await self.repo.get_or_raise(
            Patient, data.patient_id, code="PATIENT_NOT_FOUND", label="Patient"
        )
        await self.load_provider(data.provider_id)
        await self.load_chair(data.chair_id)

        series = RecurringSeries(
            series_id=DbBaseModel.generate_uuid(),
            name=data.name,
            patient_id=data.patient_id,
            provider_id=data.provider_id,
            chair_id=data.chair_id,
            appointment_type=data.appointment_type,
            duration=data.duration,
            preferred_time=data.preferred_time,
            notes=data.notes,
            pattern=data.pattern,
            interval=data.interval,
            days_of_week=[day.value for day in data.days_of_week] if data.days_of_week else None,
            preferred_day_of_week=data.preferred_day_of_week,
            day_of_month=data.day_of_month,
            week_of_month=data.week_of_month,
            start_date=data.start_date,
            end_date=data.end_date,
            max_occurrences=data.max_occurrences,
            status=SeriesStatus.ACTIVE,
            occurrences_created=0,
            created_by=self.ctx.actor_id,
        )
        self.repo.add(series)
        occurrences = self._append_occurrences(series)
        if not occurrences:
            raise ValidationError(
                "Recurrence rule produces no occurrences", code="EMPTY_SERIES"
            )

        await self.commit("Recurring series")
        self.logger.info(
            "Recurring series created",
            series_id=series.series_id,
            pattern=series.pattern.value,
            occurrences=len(occurrences),
        )
        await self.record(
            "recurring_series.created",
            "recurring_series",
            series.series_id,
            pattern=series.pattern.value,
            occurrences=len(occurrences),
        )
        return series, occurrences

    async def get_series(self, series_id: str) -> tuple[RecurringSeries, list[RecurringOccurrence]]:
        series = await self._load_series(series_id)
        return series, await self._occurrences(series_id)

    async def list_series(
        self,
        *,
        page: int,
        page_size: int,
        status: Optional[SeriesStatus] = None,
        patient_id: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> Page[RecurringSeries]:
        stmt = self.repo.select(RecurringSeries)
        if status:
            stmt = stmt.where(RecurringSeries.status == status)
        if patient_id:
            stmt = stmt.where(RecurringSeries.patient_id == patient_id)
        if provider_id:
            stmt = stmt.where(RecurringSeries.provider_id == provider_id)
        stmt = stmt.order_by(RecurringSeries.created_at.desc()).execution_options(
            logging_token="RecurringSeriesService.list_series"
        )
        return await self.repo.paginate(stmt, page, page_size)

    async def list_occurrences(
        self,
        series_id: str,
        status: Optional[OccurrenceStatus] = None,
    ) -> list[RecurringOccurrence]:
        await self._load_series(series_id)
        return await self._occurrences(series_id, status)

    async def update_series(self, series_id: str, data: RecurringSeriesUpdate) -> RecurringSeries:
        series = await self._load_series(series_id)
        self._ensure_active(series)
        fields = data.model_dump(exclude_unset=True)

        if "end_date" in fields:
            end_date = fields["end_date"]
            if (
                end_date is not None
                and series.last_generated_date is not None
                and end_date < series.last_generated_date
            ):
                raise ValidationError(
                    "end_date cannot precede occurrences already generated",
                    code="BOUNDS_TOO_NARROW",
                )
        if fields.get("max_occurrences") is not None:
            if fields["max_occurrences"] < series.occurrences_created:
                raise ValidationError(
                    "max_occurrences cannot be lower than occurrences already generated",
                    code="BOUNDS_TOO_NARROW",
                )

        for name, value in fields.items():
            setattr(series, name, value)
        # Bounds must still describe a valid, finite rule
        self._rule(series)

        await self.commit("Recurring series")
        self.logger.info("Recurring series updated", series_id=series_id, fields=sorted(fields))
        await self.record(
            "recurring_series.updated",
            "recurring_series",
            series_id,
            fields=sorted(fields),
        )
        return series

    async def generate_occurrences(self, series_id: str) -> tuple[RecurringSeries, list[RecurringOccurrence]]:
        series = await self._load_series(series_id)
        self._ensure_active(series)

        created = self._append_occurrences(series)
        await self.commit("Recurring series")

        self.logger.info(
            "Occurrences generated",
            series_id=series_id,
            created=len(created),
            total=series.occurrences_created,
        )
        if created:
            await self.record(
                "recurring_series.generated",
                "recurring_series",
                series_id,
                created=len(created),
            )
        return series, created

    # -- occurrences -------------------------------------------------------

    async def materialize(
        self, series_id: str, occurrence_number: int
    ) -> tuple[RecurringOccurrence, Appointment, list[ScheduleWarning]]:
        """
        Turn one PENDING occurrence into a booking.

        Raises:
            SeriesCancelled / SeriesCompleted: Series is terminal
            OccurrenceNotFound: No PENDING occurrence with that number
            OccurrenceInPast: The occurrence already started
            ResourceConflict: Provider or chair is taken
            ConcurrentModification: Another request changed the occurrence first
        """
        series = await self._load_series(series_id)
        self._ensure_active(series)
        occurrence = await self._occurrence(
            series_id, occurrence_number, OccurrenceStatus.PENDING
        )

        starts_at = occurrence_start(occurrence)
        if starts_at < self.clock():
            raise OccurrenceInPast(occurrence_number)

        provider = await self.load_provider(series.provider_id, lock=True)
        interval = TimeInterval.from_duration(starts_at, series.duration)
        detector = ConflictDetector(self.db, self.ctx.clinic_id)
        warnings = await detector.ensure_available(provider, series.chair_id, interval)

        appointment = self.repo.add(
            Appointment(
                appointment_id=DbBaseModel.generate_uuid(),
                patient_id=series.patient_id,
                provider_id=series.provider_id,
                chair_id=series.chair_id,
                start_time=interval.start,
                end_time=interval.end,
                duration=series.duration,
                status=AppointmentStatus.SCHEDULED,
                source=AppointmentSource.RECURRING,
                appointment_type=series.appointment_type,
                notes=series.notes,
                booked_by=self.ctx.actor_id,
            )
        )
        await self.flush("Appointment")

        occurrence.status = OccurrenceStatus.SCHEDULED
        occurrence.appointment_id = appointment.appointment_id
        await self.commit("Occurrence")

        self.logger.info(
            "Occurrence materialized",
            series_id=series_id,
            occurrence_number=occurrence_number,
            appointment_id=appointment.appointment_id,
        )
        await self.record(
            "recurring_occurrence.materialized",
            "recurring_occurrence",
            occurrence.occurrence_id,
            series_id=series_id,
            occurrence_number=occurrence_number,
            appointment_id=appointment.appointment_id,
        )
        return occurrence, appointment, warnings

    def _check_changes(self, scope: UpdateScope, changes: OccurrenceChanges) -> dict[str, object]:
        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("No changes supplied")
        if "scheduled_date" in fields and scope != UpdateScope.THIS:
            raise ValidationError(
                "scheduled_date can only change with scope 'this'", code="INVALID_SCOPE"
            )
        if changes.template_fields() and scope != UpdateScope.SERIES:
            raise ValidationError(
                "provider, chair, duration, type and notes change with scope 'series' only",
                code="INVALID_SCOPE",
            )
        if changes.status == OccurrenceStatus.SCHEDULED:
            raise ValidationError(
                "Occurrences become SCHEDULED only by materializing them",
                code="INVALID_STATUS",
            )
        if fields.get("scheduled_date", True) is None or fields.get("scheduled_time", True) is None:
            raise ValidationError("scheduled_date and scheduled_time cannot be cleared")
        if "status" in fields and changes.status is None:
            raise ValidationError("status cannot be cleared")
        return fields

    async def _apply_template(self, series: RecurringSeries, changes: OccurrenceChanges) -> None:
        template = changes.template_fields()
        if template.get("provider_id"):
            await self.load_provider(template["provider_id"])
        elif "provider_id" in template:
            raise ValidationError("provider_id cannot be cleared")
        if template.get("chair_id"):
            await self.load_chair(template["chair_id"])
        if "duration" in template and template["duration"] is None:
            raise ValidationError("duration cannot be cleared")
        for name, value in template.items():
            setattr(series, name, value)
        if changes.scheduled_time is not None:
            series.preferred_time = changes.scheduled_time

    def _apply_changes(
        self,
        occurrence: RecurringOccurrence,
        changes: OccurrenceChanges,
        fields: dict[str, object],
        now: datetime,
    ) -> None:
        if "scheduled_date" in fields:
            occurrence.scheduled_date = changes.scheduled_date  # type: ignore[assignment]
        if "scheduled_time" in fields:
            occurrence.scheduled_time = changes.scheduled_time  # type: ignore[assignment]

        if changes.status is not None and changes.status != occurrence.status:
            if changes.status not in OCCURRENCE_TRANSITIONS.get(occurrence.status, set()):
                raise StateError(
                    f"Cannot move occurrence #{occurrence.occurrence_number} from "
                    f"{occurrence.status.value} to {changes.status.value}"
                )
            occurrence.status = changes.status
            if changes.status == OccurrenceStatus.PENDING:
                occurrence.skipped_reason = None
        if "skipped_reason" in fields and occurrence.status == OccurrenceStatus.SKIPPED:
            occurrence.skipped_reason = changes.skipped_reason

        if occurrence_start(occurrence) < now:
            raise OccurrenceInPast(occurrence.occurrence_number)

        occurrence.is_modified = True
        occurrence.modified_at = now
        occurrence.modified_by = self.ctx.actor_id

    async def update_occurrence(
        self,
        series_id: str,
        occurrence_number: int,
        scope: UpdateScope,
        changes: OccurrenceChanges,
    ) -> tuple[RecurringSeries, list[RecurringOccurrence]]:
        """
        Apply `changes` to one occurrence (scope 'this'), or to it and every
        other PENDING occurrence that has not started yet ('future',
        'series'). Scope 'series' also rewrites the series template.
        """
        series = await self._load_series(series_id)
        self._ensure_active(series)
        fields = self._check_changes(scope, changes)
        now = self.clock()

        target = await self._occurrence(series_id, occurrence_number)
        if target.status == OccurrenceStatus.CANCELLED:
            raise StateError(
                f"Occurrence #{occurrence_number} is cancelled", code="OCCURRENCE_CANCELLED"
            )
        if target.status == OccurrenceStatus.SCHEDULED or occurrence_start(target) < now:
            raise CannotModifyPast()

        if scope == UpdateScope.THIS:
            targets = [target]
        else:
            # The target may be SKIPPED; everything else must still be PENDING
            others = [
                occurrence
                for occurrence in await self._occurrences(series_id, OccurrenceStatus.PENDING)
                if occurrence is not target and occurrence_start(occurrence) >= now
            ]
            targets = sorted([target, *others], key=lambda o: o.occurrence_number)

        if scope == UpdateScope.SERIES:
            await self._apply_template(series, changes)

        for occurrence in targets:
            self._apply_changes(occurrence, changes, fields, now)

        await self.commit("Occurrence")
        self.logger.info(
            "Occurrences updated",
            series_id=series_id,
            occurrence_number=occurrence_number,
            scope=scope.value,
            updated=len(targets),
        )
        await self.record(
            "recurring_occurrence.updated",
            "recurring_series",
            series_id,
            occurrence_number=occurrence_number,
            scope=scope.value,
            fields=sorted(fields),
            updated=[occurrence.occurrence_number for occurrence in targets],
        )
        return series, targets

    # -- cancellation ------------------------------------------------------

    async def cancel_series(
        self,
        series_id: str,
        scope: CancelScope,
        reason: Optional[str] = None,
    ) -> tuple[RecurringSeries, int, int]:
        """
        Returns the series with the number of occurrences and bookings
        cancelled.
        """
        series = await self._load_series(series_id)
        self._ensure_active(series)
        now = self.clock()
        occurrences = await self._occurrences(series_id)

        cancelled_occurrences = 0
        cancelled_appointments = 0

        if scope == CancelScope.FUTURE:
            for occurrence in occurrences:
                if (
                    occurrence.status == OccurrenceStatus.PENDING
                    and occurrence_start(occurrence) >= now
                ):
                    occurrence.status = OccurrenceStatus.CANCELLED
                    cancelled_occurrences += 1
            series.status = SeriesStatus.COMPLETED
        else:
            linked_ids = [
                occurrence.appointment_id
                for occurrence in occurrences
                if occurrence.status == OccurrenceStatus.SCHEDULED and occurrence.appointment_id
            ]
            appointments: dict[str, Appointment] = {}
            if linked_ids:
                result = await self.db.execute(
                    self.repo.select(Appointment).where(
                        Appointment.appointment_id.in_(linked_ids)
                    )
                )
                appointments = {a.appointment_id: a for a in result.scalars().all()}

            for occurrence in occurrences:
                if occurrence.status in (OccurrenceStatus.PENDING, OccurrenceStatus.SKIPPED):
                    occurrence.status = OccurrenceStatus.CANCELLED
                    cancelled_occurrences += 1
                    continue
                if occurrence.status != OccurrenceStatus.SCHEDULED:
                    continue
                appointment = appointments.get(occurrence.appointment_id or "")
                if appointment is None or appointment.start_time < now:
                    continue
                if appointment.status in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
                    appointment.status = AppointmentStatus.CANCELLED
                    appointment.cancelled_at = now
                    appointment.cancelled_by = self.ctx.actor_id
                    appointment.cancellation_reason = reason or "Recurring series cancelled"
                    cancelled_appointments += 1
                elif appointment.status != AppointmentStatus.CANCELLED:
                    # Visits already under way or finished stay linked
                    continue
                occurrence.status = OccurrenceStatus.CANCELLED
                cancelled_occurrences += 1

            series.status = SeriesStatus.CANCELLED
            series.cancelled_at = now
            series.cancelled_by = self.ctx.actor_id
            series.cancellation_reason = reason

        await self.commit("Recurring series")
        self.logger.info(
            "Recurring series cancelled",
            series_id=series_id,
            scope=scope.value,
            cancelled_occurrences=cancelled_occurrences,
            cancelled_appointments=cancelled_appointments,
        )
        await self.record(
            "recurring_series.cancelled",
            "recurring_series",
            series_id,
            scope=scope.value,
            reason=reason,
            cancelled_occurrences=cancelled_occurrences,
            cancelled_appointments=cancelled_appointments,
        )
        return series, cancelled_occurrences, cancelled_appointments


__all__ = ["RecurringSeriesService", "OCCURRENCE_TRANSITIONS", "occurrence_start"]
