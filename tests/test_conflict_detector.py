from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.db.models import AppointmentStatus, Provider
from app.services.v1 import ConflictDetector, ResourceKind, TimeInterval
from common.api_error import ResourceConflict, ValidationError

from .conftest import CLINIC_A, CLINIC_B, insert_appointment

NINE = datetime(2026, 1, 12, 9, 0, tzinfo=timezone.utc)


def slot(start: datetime, minutes: int = 60) -> TimeInterval:
    return TimeInterval.from_duration(start, minutes)


async def _provider(session, provider_id: str) -> Provider:
    return (await session.execute(select(Provider).where(Provider.provider_id == provider_id))).scalar_one()


def test_interval_rejects_empty_or_inverted_range():
    with pytest.raises(ValidationError) as exc_info:
        TimeInterval(NINE, NINE)
    assert exc_info.value.code == "INVALID_INTERVAL"

    with pytest.raises(ValidationError):
        TimeInterval(NINE, NINE - timedelta(minutes=1))


def test_touching_intervals_do_not_overlap():
    assert not slot(NINE).overlaps(slot(NINE + timedelta(hours=1)))
    assert slot(NINE).overlaps(slot(NINE + timedelta(minutes=59)))


async def test_back_to_back_bookings_are_free(session, seed):
    await insert_appointment(
        session,
        clinic_id=CLINIC_A,
        patient_id=seed.patient_id,
        provider_id=seed.provider_id,
        start=NINE,
    )
    detector = ConflictDetector(session, CLINIC_A)

    assert not await detector.has_conflict(
        ResourceKind.PROVIDER, seed.provider_id, slot(NINE + timedelta(hours=1))
    )
    assert not await detector.has_conflict(
        ResourceKind.PROVIDER, seed.provider_id, slot(NINE - timedelta(hours=1))
    )


async def test_overlap_is_reported_for_provider_and_chair(session, seed):
    existing = await insert_appointment(
        session,
        clinic_id=CLINIC_A,
        patient_id=seed.patient_id,
        provider_id=seed.provider_id,
        chair_id=seed.chair_id,
        start=NINE,
    )
    detector = ConflictDetector(session, CLINIC_A)
    overlapping = slot(NINE + timedelta(minutes=30))

    conflicts = await detector.find_conflicts(ResourceKind.PROVIDER, seed.provider_id, overlapping)
    assert [a.appointment_id for a in conflicts] == [existing.appointment_id]
    assert await detector.has_conflict(ResourceKind.CHAIR, seed.chair_id, overlapping)

    # The chair is still taken even with a different provider
    provider2 = await _provider(session, seed.second_provider_id)
    with pytest.raises(ResourceConflict) as exc_info:
        await detector.ensure_available(provider2, seed.chair_id, overlapping)
    assert exc_info.value.details["resource"] == "chair"
    assert exc_info.value.details["conflicting_appointment_id"] == existing.appointment_id


@pytest.mark.parametrize(
    "status",
    [AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW],
)
async def test_non_blocking_statuses_are_ignored(session, seed, status):
    await insert_appointment(
        session,
        clinic_id=CLINIC_A,
        patient_id=seed.patient_id,
        provider_id=seed.provider_id,
        start=NINE,
        status=status,
    )
    detector = ConflictDetector(session, CLINIC_A)

    assert not await detector.has_conflict(ResourceKind.PROVIDER, seed.provider_id, slot(NINE))


async def test_soft_deleted_bookings_are_ignored(session, seed):
    appointment = await insert_appointment(
        session,
        clinic_id=CLINIC_A,
        patient_id=seed.patient_id,
        provider_id=seed.provider_id,
        start=NINE,
    )
    appointment.mark_deleted("user-1")
    await session.commit()
    detector = ConflictDetector(session, CLINIC_A)

    assert not await detector.has_conflict(ResourceKind.PROVIDER, seed.provider_id, slot(NINE))


async def test_excluded_booking_does_not_conflict_with_itself(session, seed):
    appointment = await insert_appointment(
        session,
        clinic_id=CLINIC_A,
        patient_id=seed.patient_id,
        provider_id=seed.provider_id,
        start=NINE,
    )
    detector = ConflictDetector(session, CLINIC_A)

    assert not await detector.has_conflict(
        ResourceKind.PROVIDER,
        seed.provider_id,
        slot(NINE + timedelta(minutes=15)),
        exclude_booking_id=appointment.appointment_id,
    )


async def test_other_clinic_booking_is_a_warning_only(session, seed):
    await insert_appointment(
        session,
        clinic_id=CLINIC_B,
        patient_id=seed.other_clinic_patient_id,
        provider_id=seed.other_clinic_provider_id,
        start=NINE,
    )
    detector = ConflictDetector(session, CLINIC_A)
    provider = await _provider(session, seed.provider_id)

    assert not await detector.has_conflict(ResourceKind.PROVIDER, seed.provider_id, slot(NINE))
    warnings = await detector.ensure_available(provider, None, slot(NINE + timedelta(minutes=30)))

    assert len(warnings) == 1
    assert warnings[0].code == "CROSS_LOCATION_OVERLAP"
    assert warnings[0].clinic_id == CLINIC_B


async def test_other_clinic_does_not_see_this_clinics_bookings(session, seed):
    await insert_appointment(
        session,
        clinic_id=CLINIC_A,
        patient_id=seed.patient_id,
        provider_id=seed.provider_id,
        start=NINE,
    )
    detector = ConflictDetector(session, CLINIC_B)

    assert await detector.find_conflicts(ResourceKind.PROVIDER, seed.provider_id, slot(NINE)) == []
