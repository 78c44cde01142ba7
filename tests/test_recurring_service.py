from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select

from app.db.models import (
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    DayOfWeek,
    OccurrenceStatus,
    RecurrencePattern,
    RecurringOccurrence,
    SeriesStatus,
)
from app.db.schemas import (
    AppointmentCreate,
    CancelScope,
    OccurrenceChanges,
    RecurringSeriesCreate,
    RecurringSeriesUpdate,
    UpdateScope,
)
from app.services.v1 import AppointmentService, RecurringSeriesService
from common.api_error import (
    CannotModifyPast,
    ConcurrentModification,
    NotFoundError,
    OccurrenceInPast,
    OccurrenceNotFound,
    ResourceConflict,
    SeriesCancelled,
    SeriesCompleted,
    StateError,
    ValidationError,
)

from .conftest import CLINIC_A, CLINIC_B, insert_appointment


def weekly_mondays(seed, **overrides) -> RecurringSeriesCreate:
    fields = dict(
        patient_id=seed.patient_id,
        provider_id=seed.provider_id,
        chair_id=seed.chair_id,
        duration=60,
        preferred_time="09:00",
        pattern=RecurrencePattern.WEEKLY,
        days_of_week=[DayOfWeek.MONDAY],
        start_date=date(2026, 1, 5),
        max_occurrences=10,
    )
    fields.update(overrides)
    return RecurringSeriesCreate(**fields)


@pytest.fixture
def service(session, make_service) -> RecurringSeriesService:
    return make_service(RecurringSeriesService, session)


@pytest.fixture
async def series(service, seed):
    created, _ = await service.create_series(weekly_mondays(seed))
    return created


async def booking_count(db_manager) -> int:
    async with db_manager.session() as s:
        return (await s.execute(select(func.count()).select_from(Appointment))).scalar_one()


async def test_create_series_generates_ten_pending_mondays(service, seed):
    series, occurrences = await service.create_series(weekly_mondays(seed))

    assert series.status == SeriesStatus.ACTIVE
    assert series.occurrences_created == 10
    assert series.last_generated_date == date(2026, 3, 9)
    assert [o.occurrence_number for o in occurrences] == list(range(1, 11))
    assert all(o.status == OccurrenceStatus.PENDING for o in occurrences)
    assert all(o.scheduled_date.weekday() == 0 for o in occurrences)
    assert all(o.appointment_id is None for o in occurrences)


async def test_create_series_rejects_unknown_patient_and_foreign_provider(service, seed):
    with pytest.raises(NotFoundError) as exc_info:
        await service.create_series(weekly_mondays(seed, patient_id="missing"))
    assert exc_info.value.code == "PATIENT_NOT_FOUND"

    with pytest.raises(NotFoundError) as exc_info:
        await service.create_series(weekly_mondays(seed, provider_id=seed.other_clinic_provider_id))
    assert exc_info.value.code == "PROVIDER_NOT_FOUND"


async def test_create_series_requires_a_bound(service, seed):
    with pytest.raises(ValidationError):
        await service.create_series(weekly_mondays(seed, max_occurrences=None))


async def test_materialize_books_exactly_once(service, series, db_manager):
    occurrence, appointment, warnings = await service.materialize(series.series_id, 1)

    assert occurrence.status == OccurrenceStatus.SCHEDULED
    assert occurrence.appointment_id == appointment.appointment_id
    assert appointment.source == AppointmentSource.RECURRING
    assert appointment.start_time == datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    assert appointment.duration == 60
    assert warnings == []

    with pytest.raises(OccurrenceNotFound):
        await service.materialize(series.series_id, 1)
    assert await booking_count(db_manager) == 1


async def test_second_session_loses_the_race(series, db_manager, make_service):
    async with db_manager.session_maker() as first, db_manager.session_maker() as second:
        racer = make_service(RecurringSeriesService, second)
        # The loser has already seen the occurrence as PENDING
        stale = (
            await second.execute(
                select(RecurringOccurrence).where(
                    RecurringOccurrence.series_id == series.series_id,
                    RecurringOccurrence.occurrence_number == 1,
                )
            )
        ).scalar_one()
        assert stale.status == OccurrenceStatus.PENDING

        await make_service(RecurringSeriesService, first).materialize(series.series_id, 1)

        with pytest.raises(OccurrenceNotFound):
            await racer.materialize(series.series_id, 1)

    assert await booking_count(db_manager) == 1


async def test_interleaved_materialize_books_once(series, db_manager, make_service):
    async with db_manager.session_maker() as first, db_manager.session_maker() as second:
        winner = make_service(RecurringSeriesService, first)
        loser = make_service(RecurringSeriesService, second)
        load_provider = loser.load_provider

        async def winner_commits_in_between(provider_id, *, lock=False):
            # The loser has already read occurrence 1 as PENDING
            await winner.materialize(series.series_id, 1)
            return await load_provider(provider_id, lock=lock)

        loser.load_provider = winner_commits_in_between

        with pytest.raises(ResourceConflict):
            await loser.materialize(series.series_id, 1)

    assert await booking_count(db_manager) == 1


async def test_stale_occurrence_write_is_rejected(series, db_manager, make_service):
    async with db_manager.session_maker() as first, db_manager.session_maker() as second:
        stmt = select(RecurringOccurrence).where(
            RecurringOccurrence.series_id == series.series_id,
            RecurringOccurrence.occurrence_number == 2,
        )
        mine = (await first.execute(stmt)).scalar_one()
        theirs = (await second.execute(stmt)).scalar_one()

        mine.status = OccurrenceStatus.SKIPPED
        await first.commit()

        theirs.status = OccurrenceStatus.CANCELLED
        with pytest.raises(ConcurrentModification):
            await make_service(RecurringSeriesService, second).commit("Occurrence")


async def test_materialize_rejects_past_occurrence(service, series, clock):
    clock.now = datetime(2026, 1, 13, 8, 0, tzinfo=timezone.utc)

    with pytest.raises(OccurrenceInPast):
        await service.materialize(series.series_id, 2)

    # Occurrence 3 (Jan 19) is still ahead
    occurrence, _, _ = await service.materialize(series.series_id, 3)
    assert occurrence.status == OccurrenceStatus.SCHEDULED


async def test_materialize_conflict_leaves_occurrence_pending(service, series, seed, session, db_manager):
    blocker = await insert_appointment(
        session,
        clinic_id=CLINIC_A,
        patient_id=seed.patient_id,
        provider_id=seed.provider_id,
        start=datetime(2026, 1, 12, 9, 30, tzinfo=timezone.utc),
    )

    with pytest.raises(ResourceConflict) as exc_info:
        await service.materialize(series.series_id, 2)
    assert exc_info.value.details["conflicting_appointment_id"] == blocker.appointment_id

    async with db_manager.session() as s:
        status = (
            await s.execute(
                select(RecurringOccurrence.status).where(
                    RecurringOccurrence.series_id == series.series_id,
                    RecurringOccurrence.occurrence_number == 2,
                )
            )
        ).scalar_one()
    assert status == OccurrenceStatus.PENDING


async def test_materialize_warns_about_other_location(service, series, seed, session):
    await insert_appointment(
        session,
        clinic_id=CLINIC_B,
        patient_id=seed.other_clinic_patient_id,
        provider_id=seed.other_clinic_provider_id,
        start=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
    )

    _, _, warnings = await service.materialize(series.series_id, 1)

    assert [w.code for w in warnings] == ["CROSS_LOCATION_OVERLAP"]


async def test_cancel_future_after_three_scheduled(service, series):
    for number in (1, 2, 3):
        await service.materialize(series.series_id, number)

    cancelled_series, n_occurrences, n_appointments = await service.cancel_series(
        series.series_id, CancelScope.FUTURE
    )

    assert cancelled_series.status == SeriesStatus.COMPLETED
    assert n_occurrences == 7
    assert n_appointments == 0
    occurrences = await service.list_occurrences(series.series_id)
    assert [o.status for o in occurrences[:3]] == [OccurrenceStatus.SCHEDULED] * 3
    assert [o.status for o in occurrences[3:]] == [OccurrenceStatus.CANCELLED] * 7


async def test_cancel_all_cascades_to_upcoming_bookings(service, series):
    _, appointment, _ = await service.materialize(series.series_id, 1)

    cancelled_series, n_occurrences, n_appointments = await service.cancel_series(
        series.series_id, CancelScope.ALL, reason="Moved away"
    )

    assert cancelled_series.status == SeriesStatus.CANCELLED
    assert cancelled_series.cancelled_by == "user-1"
    assert cancelled_series.cancelled_at is not None
    assert cancelled_series.cancellation_reason == "Moved away"
    assert n_occurrences == 10
    assert n_appointments == 1

    booked = await AppointmentService(service.db, service.ctx).get_appointment(appointment.appointment_id)
    assert booked.status == AppointmentStatus.CANCELLED
    assert booked.cancellation_reason == "Moved away"
    occurrences = await service.list_occurrences(series.series_id)
    assert {o.status for o in occurrences} == {OccurrenceStatus.CANCELLED}


@pytest.mark.parametrize(
    "visit_status",
    [AppointmentStatus.IN_PROGRESS, AppointmentStatus.NO_SHOW],
)
async def test_cancel_all_keeps_occurrence_of_visit_under_way(service, series, visit_status):
    _, appointment, _ = await service.materialize(series.series_id, 1)
    await service.change_status(appointment.appointment_id, visit_status)

    _, n_occurrences, n_appointments = await service.cancel_series(series.series_id, CancelScope.ALL)

    assert n_occurrences == 9
    assert n_appointments == 0
    occurrences = await service.list_occurrences(series.series_id)
    assert occurrences[0].status == OccurrenceStatus.SCHEDULED
    assert occurrences[0].appointment_id == appointment.appointment_id
    booked = await service.get_appointment(appointment.appointment_id)
    assert booked.status == visit_status


async def test_cancel_all_closes_occurrence_of_cancelled_booking(service, series):
    _, appointment, _ = await service.materialize(series.series_id, 1)
    await service.change_status(appointment.appointment_id, AppointmentStatus.CANCELLED)

    _, n_occurrences, n_appointments = await service.cancel_series(series.series_id, CancelScope.ALL)

    assert n_occurrences == 10
    assert n_appointments == 0
    occurrences = await service.list_occurrences(series.series_id)
    assert {o.status for o in occurrences} == {OccurrenceStatus.CANCELLED}


async def test_terminal_series_rejects_further_actions(service, series, seed):
    await service.cancel_series(series.series_id, CancelScope.ALL)

    with pytest.raises(SeriesCancelled):
        await service.materialize(series.series_id, 2)
    with pytest.raises(SeriesCancelled):
        await service.generate_occurrences(series.series_id)
    with pytest.raises(SeriesCancelled):
        await service.cancel_series(series.series_id, CancelScope.FUTURE)

    completed, _ = await service.create_series(weekly_mondays(seed, preferred_time="14:00"))
    await service.cancel_series(completed.series_id, CancelScope.FUTURE)
    with pytest.raises(SeriesCompleted):
        await service.update_series(completed.series_id, RecurringSeriesUpdate(name="Renamed"))


async def test_update_this_moves_one_occurrence(service, series):
    updated_series, updated = await service.update_occurrence(
        series.series_id,
        2,
        UpdateScope.THIS,
        OccurrenceChanges(scheduled_date=date(2026, 1, 13), scheduled_time="11:30"),
    )

    assert [o.occurrence_number for o in updated] == [2]
    assert updated[0].scheduled_date == date(2026, 1, 13)
    assert updated[0].scheduled_time == "11:30"
    assert updated[0].is_modified
    assert updated[0].modified_by == "user-1"
    assert updated_series.preferred_time == "09:00"

    others = [o for o in await service.list_occurrences(series.series_id) if o.occurrence_number != 2]
    assert not any(o.is_modified for o in others)


async def test_update_future_touches_only_upcoming_pending(service, series, clock):
    await service.materialize(series.series_id, 3)
    clock.now = datetime(2026, 1, 6, 8, 0, tzinfo=timezone.utc)

    _, updated = await service.update_occurrence(
        series.series_id,
        4,
        UpdateScope.FUTURE,
        OccurrenceChanges(scheduled_time="10:00"),
    )

    # 1 is in the past and 3 is booked
    assert [o.occurrence_number for o in updated] == [2, 4, 5, 6, 7, 8, 9, 10]
    assert all(o.scheduled_time == "10:00" for o in updated)


async def test_update_future_restores_skipped_target(service, series):
    await service.update_occurrence(
        series.series_id,
        4,
        UpdateScope.THIS,
        OccurrenceChanges(status=OccurrenceStatus.SKIPPED, skipped_reason="Holiday"),
    )

    _, updated = await service.update_occurrence(
        series.series_id,
        4,
        UpdateScope.FUTURE,
        OccurrenceChanges(status=OccurrenceStatus.PENDING),
    )

    assert [o.occurrence_number for o in updated] == list(range(1, 11))
    restored = updated[3]
    assert restored.occurrence_number == 4
    assert restored.status == OccurrenceStatus.PENDING
    assert restored.skipped_reason is None
    assert restored.is_modified

    occurrence, _, _ = await service.materialize(series.series_id, 4)
    assert occurrence.status == OccurrenceStatus.SCHEDULED


async def test_update_series_scope_rewrites_template(service, series, seed):
    updated_series, updated = await service.update_occurrence(
        series.series_id,
        1,
        UpdateScope.SERIES,
        OccurrenceChanges(provider_id=seed.second_provider_id, duration=45, scheduled_time="13:00"),
    )

    assert updated_series.provider_id == seed.second_provider_id
    assert updated_series.duration == 45
    assert updated_series.preferred_time == "13:00"
    assert len(updated) == 10

    _, appointment, _ = await service.materialize(series.series_id, 1)
    assert appointment.provider_id == seed.second_provider_id
    assert appointment.start_time == datetime(2026, 1, 5, 13, 0, tzinfo=timezone.utc)
    assert appointment.duration == 45


async def test_update_rejects_scheduled_and_past_targets(service, series, clock):
    await service.materialize(series.series_id, 2)

    with pytest.raises(CannotModifyPast):
        await service.update_occurrence(
            series.series_id, 2, UpdateScope.THIS, OccurrenceChanges(scheduled_time="10:00")
        )

    clock.now = datetime(2026, 1, 6, 8, 0, tzinfo=timezone.utc)
    with pytest.raises(CannotModifyPast):
        await service.update_occurrence(
            series.series_id, 1, UpdateScope.THIS, OccurrenceChanges(scheduled_time="10:00")
        )


@pytest.mark.parametrize(
    "scope, changes",
    [
        (UpdateScope.FUTURE, OccurrenceChanges(scheduled_date=date(2026, 1, 20))),
        (UpdateScope.THIS, OccurrenceChanges(duration=30)),
        (UpdateScope.THIS, OccurrenceChanges(status=OccurrenceStatus.SCHEDULED)),
        (UpdateScope.THIS, OccurrenceChanges()),
    ],
)
async def test_update_rejects_invalid_change_sets(service, series, scope, changes):
    with pytest.raises(ValidationError):
        await service.update_occurrence(series.series_id, 3, scope, changes)


async def test_skip_and_restore_occurrence(service, series):
    _, (skipped,) = await service.update_occurrence(
        series.series_id,
        4,
        UpdateScope.THIS,
        OccurrenceChanges(status=OccurrenceStatus.SKIPPED, skipped_reason="Holiday"),
    )
    assert skipped.status == OccurrenceStatus.SKIPPED
    assert skipped.skipped_reason == "Holiday"

    with pytest.raises(OccurrenceNotFound):
        await service.materialize(series.series_id, 4)

    _, (restored,) = await service.update_occurrence(
        series.series_id,
        4,
        UpdateScope.THIS,
        OccurrenceChanges(status=OccurrenceStatus.PENDING),
    )
    assert restored.status == OccurrenceStatus.PENDING
    assert restored.skipped_reason is None


async def test_cancelled_occurrence_cannot_be_revived(service, series):
    await service.update_occurrence(
        series.series_id, 5, UpdateScope.THIS, OccurrenceChanges(status=OccurrenceStatus.CANCELLED)
    )

    with pytest.raises(StateError) as exc_info:
        await service.update_occurrence(
            series.series_id, 5, UpdateScope.THIS, OccurrenceChanges(status=OccurrenceStatus.PENDING)
        )
    assert exc_info.value.code == "OCCURRENCE_CANCELLED"


async def test_raising_bound_appends_without_renumbering(service, seed):
    series, _ = await service.create_series(weekly_mondays(seed, max_occurrences=5))
    await service.update_occurrence(
        series.series_id, 2, UpdateScope.THIS, OccurrenceChanges(scheduled_time="15:00")
    )

    await service.update_series(series.series_id, RecurringSeriesUpdate(max_occurrences=8))
    _, created = await service.generate_occurrences(series.series_id)

    assert [o.occurrence_number for o in created] == [6, 7, 8]
    occurrences = await service.list_occurrences(series.series_id)
    assert len(occurrences) == 8
    assert occurrences[1].scheduled_time == "15:00"

    _, created_again = await service.generate_occurrences(series.series_id)
    assert created_again == []


async def test_bounds_cannot_shrink_below_generated(service, series):
    with pytest.raises(ValidationError) as exc_info:
        await service.update_series(series.series_id, RecurringSeriesUpdate(max_occurrences=3))
    assert exc_info.value.code == "BOUNDS_TOO_NARROW"

    with pytest.raises(ValidationError) as exc_info:
        await service.update_series(series.series_id, RecurringSeriesUpdate(end_date=date(2026, 2, 1)))
    assert exc_info.value.code == "BOUNDS_TOO_NARROW"


async def test_series_is_invisible_to_other_clinic(series, session, make_service):
    outsider = make_service(RecurringSeriesService, session, clinic_id=CLINIC_B)

    with pytest.raises(NotFoundError) as exc_info:
        await outsider.get_series(series.series_id)
    assert exc_info.value.code == "SERIES_NOT_FOUND"


async def test_direct_booking_blocks_materialization(session, make_service, series, seed):
    booking = make_service(AppointmentService, session)
    await booking.book(
        AppointmentCreate(
            patient_id=seed.minor_patient_id,
            provider_id=seed.provider_id,
            start_time=datetime(2026, 1, 19, 8, 30, tzinfo=timezone.utc),
            duration=60,
        )
    )
    service = make_service(RecurringSeriesService, session)

    with pytest.raises(ResourceConflict):
        await service.materialize(series.series_id, 3)
