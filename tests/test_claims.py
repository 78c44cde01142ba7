from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.db.models import ClaimStatus, ClaimStatusHistory, ClaimType
from app.db.schemas import (
    ClaimAdjudicateRequest,
    ClaimAppealRequest,
    ClaimCreate,
    ClaimItemInput,
    ClaimResubmitRequest,
    ClaimSubmitRequest,
    ClaimUpdate,
    ClaimVoidRequest,
)
from app.services.v1 import ClaimService
from common.api_error import (
    ClaimLocked,
    ImmutableRecordError,
    NotFoundError,
    StateError,
    ValidationError,
)

from .conftest import CLINIC_B

SERVICE_DAY = date(2025, 12, 18)


@pytest.fixture
def service(session, make_service) -> ClaimService:
    return make_service(ClaimService, session)


def crown_claim(seed, **overrides) -> ClaimCreate:
    fields = dict(
        patient_id=seed.patient_id,
        treatment_plan_id=seed.plan_id,
        payer_name="Delta Dental",
        service_date=SERVICE_DAY,
        items=[
            ClaimItemInput(
                procedure_code="D2740",
                description="Porcelain crown",
                service_date=SERVICE_DAY,
                tooth_numbers=["14"],
                billed_amount=Decimal("1200.00"),
            ),
            ClaimItemInput(
                procedure_code="D0220",
                service_date=SERVICE_DAY,
                quantity=2,
                billed_amount=Decimal("35.50"),
            ),
        ],
    )
    fields.update(overrides)
    return ClaimCreate(**fields)


def denied() -> ClaimAdjudicateRequest:
    return ClaimAdjudicateRequest(outcome=ClaimStatus.DENIED, denial_code="CO-16")


def paid(amount: str = "900.00") -> ClaimAdjudicateRequest:
    return ClaimAdjudicateRequest(outcome=ClaimStatus.PAID, paid_amount=Decimal(amount))


def history(claim) -> list[tuple]:
    return [(h.sequence, h.from_status, h.to_status) for h in claim.status_history]


async def test_create_numbers_claims_per_clinic(service, seed, session, make_service):
    first = await service.create(crown_claim(seed))
    second = await service.create(crown_claim(seed))
    other = await make_service(ClaimService, session, clinic_id=CLINIC_B).create(
        crown_claim(seed, patient_id=seed.other_clinic_patient_id, treatment_plan_id=None)
    )

    assert first.claim_number == "CLM-2026-00001"
    assert second.claim_number == "CLM-2026-00002"
    assert other.claim_number == "CLM-2026-00001"


async def test_create_starts_as_draft_with_totals(service, seed):
    claim = await service.create(crown_claim(seed))

    assert claim.status == ClaimStatus.DRAFT
    assert claim.claim_type == ClaimType.ORIGINAL
    assert claim.billed_amount == Decimal("1271.00")
    assert [item.line_number for item in claim.items] == [1, 2]
    assert history(claim) == [(1, None, ClaimStatus.DRAFT)]


async def test_create_checks_patient_and_plan(service, seed):
    with pytest.raises(NotFoundError) as exc_info:
        await service.create(crown_claim(seed, patient_id=seed.other_clinic_patient_id))
    assert exc_info.value.code == "PATIENT_NOT_FOUND"

    with pytest.raises(ValidationError) as exc_info:
        await service.create(crown_claim(seed, treatment_plan_id=seed.minor_plan_id))
    assert exc_info.value.code == "PLAN_PATIENT_MISMATCH"


async def test_submit_then_pay_records_every_transition(service, seed, clock):
    claim = await service.create(crown_claim(seed))
    await service.update(claim.claim_id, ClaimUpdate(status=ClaimStatus.READY))

    submitted = await service.submit(claim.claim_id, ClaimSubmitRequest(note="Batch 7"))
    assert submitted.status == ClaimStatus.SUBMITTED
    assert submitted.submitted_at == clock.now
    assert submitted.filing_date == clock.now.date()

    settled = await service.adjudicate(claim.claim_id, paid("900.00"))

    assert settled.status == ClaimStatus.PAID
    assert settled.paid_amount == Decimal("900.00")
    assert history(settled) == [
        (1, None, ClaimStatus.DRAFT),
        (2, ClaimStatus.DRAFT, ClaimStatus.READY),
        (3, ClaimStatus.READY, ClaimStatus.SUBMITTED),
        (4, ClaimStatus.SUBMITTED, ClaimStatus.PAID),
    ]
    assert settled.status_history[2].note == "Batch 7"


async def test_paid_claim_is_locked(service, seed):
    claim = await service.create(crown_claim(seed))
    await service.submit(claim.claim_id, ClaimSubmitRequest())
    await service.adjudicate(claim.claim_id, paid())

    with pytest.raises(ClaimLocked):
        await service.update(claim.claim_id, ClaimUpdate(notes="too late"))
    with pytest.raises(ClaimLocked):
        await service.void(claim.claim_id, ClaimVoidRequest())
    with pytest.raises(ClaimLocked):
        await service.appeal(claim.claim_id, ClaimAppealRequest(appeal_reason="Underpaid"))
    with pytest.raises(ClaimLocked):
        await service.delete(claim.claim_id)


async def test_submitted_claim_only_takes_payer_fields(service, seed):
    claim = await service.create(crown_claim(seed))
    await service.submit(claim.claim_id, ClaimSubmitRequest())

    with pytest.raises(StateError) as exc_info:
        await service.update(claim.claim_id, ClaimUpdate(notes="edit"))
    assert exc_info.value.code == "CLAIM_NOT_EDITABLE"

    updated = await service.update(
        claim.claim_id, ClaimUpdate(payer_claim_id="PAYER-123", allowed_amount=Decimal("1000.00"))
    )
    assert updated.payer_claim_id == "PAYER-123"
    assert updated.allowed_amount == Decimal("1000.00")
    assert updated.status == ClaimStatus.SUBMITTED


async def test_draft_items_can_be_replaced(service, seed):
    claim = await service.create(crown_claim(seed))

    updated = await service.update(
        claim.claim_id,
        ClaimUpdate(
            items=[
                ClaimItemInput(
                    procedure_code="D2750",
                    service_date=SERVICE_DAY,
                    billed_amount=Decimal("1350.00"),
                )
            ]
        ),
    )

    assert [(i.line_number, i.procedure_code) for i in updated.items] == [(1, "D2750")]
    assert updated.billed_amount == Decimal("1350.00")


async def test_appeal_requires_denial_and_reason(service, seed):
    claim = await service.create(crown_claim(seed))
    await service.submit(claim.claim_id, ClaimSubmitRequest())

    with pytest.raises(StateError):
        await service.appeal(claim.claim_id, ClaimAppealRequest(appeal_reason="Premature"))

    await service.adjudicate(claim.claim_id, denied())
    with pytest.raises(ValidationError) as exc_info:
        await service.appeal(claim.claim_id, ClaimAppealRequest(appeal_reason="   "))
    assert exc_info.value.code == "APPEAL_REASON_REQUIRED"

    appealed = await service.appeal(
        claim.claim_id, ClaimAppealRequest(appeal_reason="Narrative attached")
    )
    assert appealed.status == ClaimStatus.APPEALED
    assert appealed.appeal_reason == "Narrative attached"

    decided = await service.adjudicate(claim.claim_id, paid("1200.00"))
    assert decided.status == ClaimStatus.PAID


async def test_resubmit_copies_lines_and_closes_original(service, seed):
    claim = await service.create(crown_claim(seed))
    await service.submit(claim.claim_id, ClaimSubmitRequest())
    await service.adjudicate(claim.claim_id, denied())

    original, corrected = await service.resubmit(
        claim.claim_id, ClaimResubmitRequest(correction_notes="Added x-ray")
    )

    assert original.status == ClaimStatus.CLOSED
    assert history(original)[-1] == (4, ClaimStatus.DENIED, ClaimStatus.CLOSED)
    assert corrected.status == ClaimStatus.DRAFT
    assert corrected.claim_type == ClaimType.CORRECTED
    assert corrected.original_claim_id == original.claim_id
    assert corrected.claim_number == "CLM-2026-00002"
    assert corrected.correction_notes == "Added x-ray"
    assert history(corrected) == [(1, None, ClaimStatus.DRAFT)]

    def lines(c):
        return [(i.line_number, i.procedure_code, i.quantity, i.billed_amount) for i in c.items]

    assert lines(corrected) == lines(original)
    assert {i.item_id for i in corrected.items}.isdisjoint({i.item_id for i in original.items})
    assert corrected.billed_amount == original.billed_amount


async def test_resubmit_only_from_denied_or_appealed(service, seed):
    claim = await service.create(crown_claim(seed))

    with pytest.raises(StateError):
        await service.resubmit(claim.claim_id, ClaimResubmitRequest())


async def test_status_history_is_append_only(service, seed, session):
    claim = await service.create(crown_claim(seed))
    entry = (
        await session.execute(
            select(ClaimStatusHistory).where(ClaimStatusHistory.claim_id == claim.claim_id)
        )
    ).scalar_one()

    entry.note = "rewritten"
    with pytest.raises(ImmutableRecordError):
        await session.flush()
    await session.rollback()
    await session.refresh(entry)
    assert entry.note == "Claim created"

    await session.delete(entry)
    with pytest.raises(ImmutableRecordError):
        await session.flush()


async def test_void_and_delete_rules(service, seed):
    draft = await service.create(crown_claim(seed))
    ready = await service.create(crown_claim(seed))
    await service.update(ready.claim_id, ClaimUpdate(status=ClaimStatus.READY))

    with pytest.raises(StateError) as exc_info:
        await service.delete(ready.claim_id)
    assert exc_info.value.code == "CANNOT_DELETE"

    voided = await service.void(ready.claim_id, ClaimVoidRequest(reason="Duplicate"))
    assert voided.status == ClaimStatus.VOID
    with pytest.raises(ClaimLocked):
        await service.submit(ready.claim_id, ClaimSubmitRequest())

    await service.delete(draft.claim_id)
    with pytest.raises(NotFoundError) as exc_info:
        await service.get_claim(draft.claim_id)
    assert exc_info.value.code == "CLAIM_NOT_FOUND"

    # Deleted numbers are not reused
    third = await service.create(crown_claim(seed))
    assert third.claim_number == "CLM-2026-00003"


async def test_list_filters_by_status(service, seed):
    draft = await service.create(crown_claim(seed))
    submitted = await service.create(crown_claim(seed))
    await service.submit(submitted.claim_id, ClaimSubmitRequest())

    page = await service.list_claims(page=1, page_size=10, status=ClaimStatus.SUBMITTED)
    assert [c.claim_id for c in page.items] == [submitted.claim_id]

    everything = await service.list_claims(page=1, page_size=10)
    assert {c.claim_id for c in everything.items} == {draft.claim_id, submitted.claim_id}
    assert everything.total == 2


async def test_numbering_continues_past_five_digits(service, seed, session):
    claim = await service.create(crown_claim(seed))
    claim.claim_number = "CLM-2026-99999"
    await session.commit()

    first = await service.create(crown_claim(seed))
    second = await service.create(crown_claim(seed))

    assert first.claim_number == "CLM-2026-100000"
    assert second.claim_number == "CLM-2026-100001"
