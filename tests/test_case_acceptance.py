import pytest
from sqlalchemy import func, select

from app.db.models import (
    AcceptanceStatus,
    AuditLog,
    CaseAcceptance,
    TreatmentPlan,
    TreatmentPlanStatus,
    derive_acceptance_status,
)
from app.db.schemas import CaseAcceptanceCreate, CaseAcceptanceSign, CaseAcceptanceUpdate
from app.services.v1 import AuditSink, CaseAcceptanceService
from common.api_error import (
    AcceptanceFinalized,
    NotFoundError,
    StateError,
    ValidationError,
)

from .conftest import CLINIC_B, START_OF_TESTS


@pytest.fixture
def service(session, make_service) -> CaseAcceptanceService:
    return make_service(CaseAcceptanceService, session)


def for_adult(seed, **fields) -> CaseAcceptanceCreate:
    return CaseAcceptanceCreate(patient_id=seed.patient_id, treatment_plan_id=seed.plan_id, **fields)


async def plan_status(db_manager, plan_id: str) -> TreatmentPlanStatus:
    async with db_manager.session() as s:
        return (
            await s.execute(select(TreatmentPlan.status).where(TreatmentPlan.plan_id == plan_id))
        ).scalar_one()


@pytest.mark.parametrize(
    "signature, consent, agreement, expected",
    [
        (None, False, False, AcceptanceStatus.PENDING),
        ("   ", False, False, AcceptanceStatus.PENDING),
        ("Ada Adult", False, False, AcceptanceStatus.PARTIALLY_SIGNED),
        (None, True, False, AcceptanceStatus.PARTIALLY_SIGNED),
        (None, False, True, AcceptanceStatus.PARTIALLY_SIGNED),
        ("Ada Adult", True, False, AcceptanceStatus.PARTIALLY_SIGNED),
        ("Ada Adult", True, True, AcceptanceStatus.FULLY_SIGNED),
    ],
)
def test_status_is_derived_from_signatures(signature, consent, agreement, expected):
    assert derive_acceptance_status(signature, consent, agreement) == expected


async def test_partial_consent_is_partially_signed(service, seed, db_manager):
    acceptance = await service.create(for_adult(seed, informed_consent_signed=True))

    assert acceptance.status == AcceptanceStatus.PARTIALLY_SIGNED
    assert acceptance.informed_consent_date == START_OF_TESTS
    assert acceptance.financial_agreement_date is None
    assert acceptance.accepted_date is None
    assert not acceptance.patient_is_minor
    assert await plan_status(db_manager, seed.plan_id) == TreatmentPlanStatus.PRESENTED


async def test_signing_last_piece_accepts_the_plan(service, seed, db_manager):
    acceptance = await service.create(
        for_adult(
            seed,
            selected_option_id=seed.option_id,
            informed_consent_signed=True,
            financial_agreement_signed=True,
        )
    )
    assert acceptance.status == AcceptanceStatus.PARTIALLY_SIGNED

    signed = await service.sign(acceptance.acceptance_id, CaseAcceptanceSign(patient_signature="Ada Adult"))

    assert signed.status == AcceptanceStatus.FULLY_SIGNED
    assert signed.patient_signed_date == START_OF_TESTS
    assert signed.accepted_date == START_OF_TESTS
    assert await plan_status(db_manager, seed.plan_id) == TreatmentPlanStatus.ACCEPTED


async def test_create_fully_signed_accepts_plan_immediately(service, seed, db_manager):
    acceptance = await service.create(
        for_adult(
            seed,
            patient_signature="Ada Adult",
            informed_consent_signed=True,
            financial_agreement_signed=True,
        )
    )

    assert acceptance.status == AcceptanceStatus.FULLY_SIGNED
    assert acceptance.accepted_date == START_OF_TESTS
    assert await plan_status(db_manager, seed.plan_id) == TreatmentPlanStatus.ACCEPTED


async def test_finalized_acceptance_rejects_changes(service, seed):
    acceptance = await service.create(
        for_adult(
            seed,
            patient_signature="Ada Adult",
            informed_consent_signed=True,
            financial_agreement_signed=True,
            notes="original",
        )
    )

    with pytest.raises(AcceptanceFinalized):
        await service.update(acceptance.acceptance_id, CaseAcceptanceUpdate(notes="changed"))
    with pytest.raises(AcceptanceFinalized):
        await service.sign(acceptance.acceptance_id, CaseAcceptanceSign(patient_signature="Again"))
    with pytest.raises(AcceptanceFinalized):
        await service.delete(acceptance.acceptance_id)

    reloaded = await service.get_acceptance(acceptance.acceptance_id)
    assert reloaded.notes == "original"
    assert reloaded.status == AcceptanceStatus.FULLY_SIGNED


async def test_finalized_acceptance_can_still_be_withdrawn(service, seed, db_manager):
    acceptance = await service.create(
        for_adult(
            seed,
            patient_signature="Ada Adult",
            informed_consent_signed=True,
            financial_agreement_signed=True,
        )
    )

    withdrawn = await service.update(
        acceptance.acceptance_id,
        CaseAcceptanceUpdate(status=AcceptanceStatus.WITHDRAWN, withdrawal_reason="Second opinion"),
    )

    assert withdrawn.status == AcceptanceStatus.WITHDRAWN
    assert withdrawn.withdrawal_reason == "Second opinion"
    # The plan keeps its accepted state
    assert await plan_status(db_manager, seed.plan_id) == TreatmentPlanStatus.ACCEPTED


async def test_minor_without_guardian_persists_nothing(service, seed, db_manager):
    with pytest.raises(ValidationError) as exc_info:
        await service.create(
            CaseAcceptanceCreate(
                patient_id=seed.minor_patient_id,
                treatment_plan_id=seed.minor_plan_id,
                informed_consent_signed=True,
            )
        )
    assert exc_info.value.code == "GUARDIAN_REQUIRED"

    async with db_manager.session() as s:
        count = (await s.execute(select(func.count()).select_from(CaseAcceptance))).scalar_one()
    assert count == 0


async def test_minor_with_guardian_keeps_guardian(service, seed):
    acceptance = await service.create(
        CaseAcceptanceCreate(
            patient_id=seed.minor_patient_id,
            treatment_plan_id=seed.minor_plan_id,
            guardian_name="Mia Minor",
            guardian_relation="Mother",
        )
    )
    assert acceptance.patient_is_minor

    with pytest.raises(ValidationError) as exc_info:
        await service.update(acceptance.acceptance_id, CaseAcceptanceUpdate(guardian_name="  "))
    assert exc_info.value.code == "GUARDIAN_REQUIRED"


async def test_plan_must_belong_to_patient(service, seed):
    with pytest.raises(ValidationError) as exc_info:
        await service.create(
            CaseAcceptanceCreate(patient_id=seed.patient_id, treatment_plan_id=seed.minor_plan_id)
        )
    assert exc_info.value.code == "PLAN_PATIENT_MISMATCH"

    with pytest.raises(NotFoundError):
        await service.create(
            CaseAcceptanceCreate(patient_id=seed.patient_id, treatment_plan_id=seed.other_clinic_plan_id)
        )


async def test_option_must_belong_to_plan(service, seed):
    acceptance = await service.create(for_adult(seed))

    with pytest.raises(ValidationError) as exc_info:
        await service.update(acceptance.acceptance_id, CaseAcceptanceUpdate(selected_option_id="nope"))
    assert exc_info.value.code == "INVALID_OPTION"


async def test_status_override_lasts_one_update(service, seed):
    acceptance = await service.create(for_adult(seed, informed_consent_signed=True))

    overridden = await service.update(
        acceptance.acceptance_id, CaseAcceptanceUpdate(status=AcceptanceStatus.PENDING)
    )
    assert overridden.status == AcceptanceStatus.PENDING

    rederived = await service.update(acceptance.acceptance_id, CaseAcceptanceUpdate(notes="called"))
    assert rederived.status == AcceptanceStatus.PARTIALLY_SIGNED


async def test_fully_signed_override_needs_signatures(service, seed):
    acceptance = await service.create(for_adult(seed, informed_consent_signed=True))

    with pytest.raises(ValidationError) as exc_info:
        await service.update(
            acceptance.acceptance_id, CaseAcceptanceUpdate(status=AcceptanceStatus.FULLY_SIGNED)
        )
    assert exc_info.value.code == "INVALID_STATUS_OVERRIDE"


async def test_withdrawn_acceptance_is_closed(service, seed):
    acceptance = await service.create(for_adult(seed))

    withdrawn = await service.withdraw(acceptance.acceptance_id, "Changed mind")
    assert withdrawn.status == AcceptanceStatus.WITHDRAWN
    assert withdrawn.withdrawn_at == START_OF_TESTS

    with pytest.raises(StateError) as exc_info:
        await service.update(acceptance.acceptance_id, CaseAcceptanceUpdate(notes="late"))
    assert exc_info.value.code == "ACCEPTANCE_WITHDRAWN"
    with pytest.raises(StateError):
        await service.withdraw(acceptance.acceptance_id)


async def test_delete_hides_open_acceptance(service, seed):
    acceptance = await service.create(for_adult(seed))

    await service.delete(acceptance.acceptance_id)

    with pytest.raises(NotFoundError) as exc_info:
        await service.get_acceptance(acceptance.acceptance_id)
    assert exc_info.value.code == "CASE_ACCEPTANCE_NOT_FOUND"


async def test_list_filters_on_effective_status(service, seed):
    partial = await service.create(for_adult(seed, informed_consent_signed=True))
    pending = await service.create(for_adult(seed))
    withdrawn = await service.create(for_adult(seed, financial_agreement_signed=True))
    await service.withdraw(withdrawn.acceptance_id)

    async def ids(status):
        page = await service.list_acceptances(page=1, page_size=20, status=status)
        return {a.acceptance_id for a in page.items}

    assert await ids(AcceptanceStatus.PARTIALLY_SIGNED) == {partial.acceptance_id}
    assert await ids(AcceptanceStatus.PENDING) == {pending.acceptance_id}
    assert await ids(AcceptanceStatus.WITHDRAWN) == {withdrawn.acceptance_id}
    assert len(await ids(None)) == 3


async def test_other_clinic_cannot_read_acceptance(service, seed, session, make_service):
    acceptance = await service.create(for_adult(seed))
    outsider = make_service(CaseAcceptanceService, session, clinic_id=CLINIC_B)

    with pytest.raises(NotFoundError):
        await outsider.get_acceptance(acceptance.acceptance_id)


async def test_changes_are_audited_after_commit(session, make_service, seed, db_manager):
    service = make_service(CaseAcceptanceService, session, audit=AuditSink(db_manager))

    acceptance = await service.create(for_adult(seed, informed_consent_signed=True))

    async with db_manager.session() as s:
        rows = (await s.execute(select(AuditLog))).scalars().all()
    assert [(r.action, r.entity_id, r.actor_id) for r in rows] == [
        ("case_acceptance.created", acceptance.acceptance_id, "user-1")
    ]
    assert rows[0].details["status"] == "PARTIALLY_SIGNED"
