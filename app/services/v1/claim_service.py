# app/services/v1/claim_service.py
from datetime import datetime
from typing import Iterable, Optional
from sqlalchemy import Integer, cast, func
from sqlalchemy.orm import selectinload

from app.db.models import (
    ClaimItem,
    ClaimStatus,
    ClaimStatusHistory,
    ClaimType,
    DbBaseModel,
    InsuranceClaim,
    Patient,
    TreatmentPlan,
    claim_total,
)
from app.db.repository import Page
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
from common.api_error import ClaimLocked, NotFoundError, StateError, ValidationError
from .base_service import BaseService

# Fields PATCH may still change once a claim left DRAFT/READY
PAYER_BOOKKEEPING_FIELDS = frozenset({"payer_claim_id", "allowed_amount"})


class ClaimService(BaseService):
    """
    Insurance claim and preauthorization lifecycle.

    DRAFT/READY -> SUBMITTED -> PAID | DENIED; DENIED -> APPEALED -> PAID |
    DENIED; DENIED/APPEALED -> CLOSED by a corrected resubmission; any
    non-terminal claim -> VOID. Every transition appends a history row in
    the same transaction as the status change.
    """

    # -- helpers -----------------------------------------------------------

    async def load_claim(self, claim_id: str, *, refresh: bool = False) -> InsuranceClaim:
        """
        Claim with its items and status history loaded. `refresh` overwrites
        already-loaded instances, used to return state after a commit.
        """
        stmt = (
            self.repo.select(InsuranceClaim)
            .where(InsuranceClaim.claim_id == claim_id)
            .options(
                selectinload(InsuranceClaim.items),
                selectinload(InsuranceClaim.status_history),
            )
            .execution_options(logging_token="ClaimService.load_claim")
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        claim = (await self.db.execute(stmt)).scalar_one_or_none()
        if claim is None:
            raise NotFoundError(f"Claim {claim_id} not found", code="CLAIM_NOT_FOUND")
        return claim

    async def _next_claim_number(self, year: int) -> str:
        prefix = f"CLM-{year}-"
        # Compared as integers; the suffix may outgrow its five-digit padding
        sequence = cast(func.substr(InsuranceClaim.claim_number, len(prefix) + 1), Integer)
        stmt = (
            self.repo.select(InsuranceClaim, include_deleted=True)
            .where(InsuranceClaim.claim_number.like(f"{prefix}%"))
            .with_only_columns(func.max(sequence))
        )
        last = (await self.db.execute(stmt)).scalar()
        return f"{prefix}{(last or 0) + 1:05d}"

    async def _append_history(
        self,
        claim: InsuranceClaim,
        from_status: Optional[ClaimStatus],
        to_status: ClaimStatus,
        now: datetime,
        note: Optional[str] = None,
    ) -> ClaimStatusHistory:
        stmt = (
            self.repo.select(ClaimStatusHistory)
            .where(ClaimStatusHistory.claim_id == claim.claim_id)
            .with_only_columns(func.max(ClaimStatusHistory.sequence))
        )
        last = (await self.db.execute(stmt)).scalar() or 0
        entry = ClaimStatusHistory(
            history_id=DbBaseModel.generate_uuid(),
            claim_id=claim.claim_id,
            sequence=last + 1,
            from_status=from_status,
            to_status=to_status,
            actor_id=self.ctx.actor_id,
            changed_at=now,
            note=note,
        )
        self.repo.add(entry)
        await self.flush("Claim history")
        return entry

    async def _transition(
        self,
        claim: InsuranceClaim,
        to_status: ClaimStatus,
        now: datetime,
        note: Optional[str] = None,
    ) -> None:
        from_status = claim.status
        claim.status = to_status
        claim.updated_by = self.ctx.actor_id
        await self._append_history(claim, from_status, to_status, now, note)

    @staticmethod
    def _require_status(
        claim: InsuranceClaim, allowed: Iterable[ClaimStatus], action: str
    ) -> None:
        if claim.status.is_terminal:
            raise ClaimLocked(claim.claim_number, claim.status.value)
        if claim.status not in allowed:
            raise StateError(
                f"Cannot {action} claim {claim.claim_number} in status {claim.status.value}"
            )

    @staticmethod
    def _build_items(inputs: list[ClaimItemInput]) -> list[ClaimItem]:
        return [
            ClaimItem(
                item_id=DbBaseModel.generate_uuid(),
                line_number=line_number,
                **item.model_dump(),
            )
            for line_number, item in enumerate(inputs, start=1)
        ]

    async def _check_patient_and_plan(
        self, patient_id: str, treatment_plan_id: Optional[str]
    ) -> None:
        await self.repo.get_or_raise(
            Patient, patient_id, code="PATIENT_NOT_FOUND", label="Patient"
        )
        if treatment_plan_id is None:
            return
        plan = await self.repo.get_or_raise(
            TreatmentPlan,
            treatment_plan_id,
            code="TREATMENT_PLAN_NOT_FOUND",
            label="Treatment plan",
        )
        if plan.patient_id != patient_id:
            raise ValidationError(
                "Treatment plan belongs to a different patient", code="PLAN_PATIENT_MISMATCH"
            )

    async def _done(
        self, claim: InsuranceClaim, action: str, **details: object
    ) -> InsuranceClaim:
        """Commit, log, audit and return the claim as stored."""
        await self.commit("Claim")
        self.logger.info(
            f"Claim {action}",
            claim_id=claim.claim_id,
            claim_number=claim.claim_number,
            status=claim.status.value,
        )
        await self.record(
            f"claim.{action}",
            "insurance_claim",
            claim.claim_id,
            claim_number=claim.claim_number,
            status=claim.status.value,
            **details,
        )
        return await self.load_claim(claim.claim_id, refresh=True)

    # -- reads -------------------------------------------------------------

    async def get_claim(self, claim_id: str) -> InsuranceClaim:
        return await self.load_claim(claim_id)

    async def list_claims(
        self,
        *,
        page: int,
        page_size: int,
        status: Optional[ClaimStatus] = None,
        claim_type: Optional[ClaimType] = None,
        patient_id: Optional[str] = None,
    ) -> Page[InsuranceClaim]:
        stmt = self.repo.select(InsuranceClaim)
        if status:
            stmt = stmt.where(InsuranceClaim.status == status)
        if claim_type:
            stmt = stmt.where(InsuranceClaim.claim_type == claim_type)
        if patient_id:
            stmt = stmt.where(InsuranceClaim.patient_id == patient_id)
        stmt = stmt.order_by(InsuranceClaim.created_at.desc()).execution_options(
            logging_token="ClaimService.list_claims"
        )
        return await self.repo.paginate(stmt, page, page_size)

    # -- writes ------------------------------------------------------------

    async def create(self, data: ClaimCreate) -> InsuranceClaim:
        await self._check_patient_and_plan(data.patient_id, data.treatment_plan_id)

        now = self.clock()
        items = self._build_items(data.items)
        claim = InsuranceClaim(
            claim_id=DbBaseModel.generate_uuid(),
            claim_number=await self._next_claim_number(now.year),
            claim_type=data.claim_type,
            patient_id=data.patient_id,
            treatment_plan_id=data.treatment_plan_id,
            payer_name=data.payer_name,
            npi=data.npi,
            preauth_number=data.preauth_number,
            service_date=data.service_date,
            notes=data.notes,
            status=ClaimStatus.DRAFT,
            billed_amount=claim_total(items),
            created_by=self.ctx.actor_id,
        )
        claim.items = items
        self.repo.add(claim)
        await self.flush("Claim")
        await self._append_history(claim, None, ClaimStatus.DRAFT, now, "Claim created")

        return await self._done(claim, "created", billed_amount=claim.billed_amount)

    async def update(self, claim_id: str, data: ClaimUpdate) -> InsuranceClaim:
        claim = await self.load_claim(claim_id)
        if claim.status.is_terminal:
            raise ClaimLocked(claim.claim_number, claim.status.value)

        fields = data.model_dump(exclude_unset=True)
        if not claim.status.is_editable:
            rejected = sorted(set(fields) - PAYER_BOOKKEEPING_FIELDS)
            if rejected:
                raise StateError(
                    f"Claim {claim.claim_number} is {claim.status.value}; "
                    f"only payer_claim_id and allowed_amount can change",
                    code="CLAIM_NOT_EDITABLE",
                    details={"fields": rejected},
                )

        now = self.clock()
        new_status = fields.pop("status", None)
        item_inputs = fields.pop("items", None)
        for required in ("payer_name", "service_date"):
            if required in fields and fields[required] is None:
                raise ValidationError(f"{required} cannot be cleared")

        for name, value in fields.items():
            setattr(claim, name, value)

        if item_inputs is not None:
            # Old lines go first so line numbers can be reused
            claim.items.clear()
            await self.flush("Claim")
            claim.items.extend(self._build_items(data.items or []))
            claim.billed_amount = claim_total(claim.items)

        claim.updated_by = self.ctx.actor_id
        if new_status is not None and new_status != claim.status:
            await self._transition(claim, new_status, now)

        return await self._done(claim, "updated", fields=sorted(data.model_fields_set))

    async def submit(self, claim_id: str, data: ClaimSubmitRequest) -> InsuranceClaim:
        claim = await self.load_claim(claim_id)
        self._require_status(claim, (ClaimStatus.DRAFT, ClaimStatus.READY), "submit")

        now = self.clock()
        claim.submission_method = data.submission_method
        claim.submitted_at = now
        claim.submitted_by = self.ctx.actor_id
        claim.filing_date = now.date()
        await self._transition(claim, ClaimStatus.SUBMITTED, now, data.note)

        return await self._done(
            claim, "submitted", submission_method=data.submission_method.value
        )

    async def adjudicate(self, claim_id: str, data: ClaimAdjudicateRequest) -> InsuranceClaim:
        """Record the payer's decision on a submitted or appealed claim."""
        claim = await self.load_claim(claim_id)
        self._require_status(
            claim, (ClaimStatus.SUBMITTED, ClaimStatus.APPEALED), "adjudicate"
        )

        now = self.clock()
        if data.payer_claim_id is not None:
            claim.payer_claim_id = data.payer_claim_id
        if data.allowed_amount is not None:
            claim.allowed_amount = data.allowed_amount

        if data.outcome == ClaimStatus.PAID:
            claim.paid_amount = data.paid_amount
            claim.paid_at = now
            note = f"Paid {data.paid_amount}"
        else:
            claim.denial_code = data.denial_code
            claim.denial_reason = data.denial_reason
            note = " - ".join(part for part in (data.denial_code, data.denial_reason) if part)
        await self._transition(claim, data.outcome, now, note)

        return await self._done(claim, "adjudicated", outcome=data.outcome.value)

    async def appeal(self, claim_id: str, data: ClaimAppealRequest) -> InsuranceClaim:
        claim = await self.load_claim(claim_id)
        self._require_status(claim, (ClaimStatus.DENIED,), "appeal")

        reason = data.appeal_reason.strip()
        if not reason:
            raise ValidationError("appeal_reason is required", code="APPEAL_REASON_REQUIRED")

        claim.appeal_reason = reason
        await self._transition(claim, ClaimStatus.APPEALED, self.clock(), reason)
        return await self._done(claim, "appealed")

    async def resubmit(
        self, claim_id: str, data: ClaimResubmitRequest
    ) -> tuple[InsuranceClaim, InsuranceClaim]:
        """
        Replace a denied claim with a CORRECTED draft. The original is
        closed; its lines are copied (or replaced by `data.items`) onto the
        new claim and never modified.
        """
        original = await self.load_claim(claim_id)
        self._require_status(
            original, (ClaimStatus.DENIED, ClaimStatus.APPEALED), "resubmit"
        )

        now = self.clock()
        if data.items:
            items = self._build_items(data.items)
        else:
            items = [
                ClaimItem(item_id=DbBaseModel.generate_uuid(), **item.copy_fields())
                for item in original.items
            ]

        corrected = InsuranceClaim(
            claim_id=DbBaseModel.generate_uuid(),
            claim_number=await self._next_claim_number(now.year),
            claim_type=ClaimType.CORRECTED,
            patient_id=original.patient_id,
            treatment_plan_id=original.treatment_plan_id,
            payer_name=original.payer_name,
            npi=original.npi,
            preauth_number=original.preauth_number,
            service_date=original.service_date,
            notes=original.notes,
            correction_notes=data.correction_notes,
            original_claim_id=original.claim_id,
            status=ClaimStatus.DRAFT,
            billed_amount=claim_total(items),
            created_by=self.ctx.actor_id,
        )
        corrected.items = items
        self.repo.add(corrected)
        await self.flush("Claim")

        await self._append_history(
            corrected,
            None,
            ClaimStatus.DRAFT,
            now,
            f"Corrected claim for {original.claim_number}",
        )
        await self._transition(
            original,
            ClaimStatus.CLOSED,
            now,
            f"Replaced by corrected claim {corrected.claim_number}",
        )

        await self.commit("Claim")
        self.logger.info(
            "Claim resubmitted",
            claim_id=original.claim_id,
            corrected_claim_id=corrected.claim_id,
            corrected_claim_number=corrected.claim_number,
        )
        await self.record(
            "claim.resubmitted",
            "insurance_claim",
            original.claim_id,
            claim_number=original.claim_number,
            corrected_claim_id=corrected.claim_id,
            corrected_claim_number=corrected.claim_number,
        )
        return (
            await self.load_claim(original.claim_id, refresh=True),
            await self.load_claim(corrected.claim_id, refresh=True),
        )

    async def void(self, claim_id: str, data: ClaimVoidRequest) -> InsuranceClaim:
        claim = await self.load_claim(claim_id)
        if claim.status.is_terminal:
            raise ClaimLocked(claim.claim_number, claim.status.value)

        await self._transition(claim, ClaimStatus.VOID, self.clock(), data.reason)
        return await self._done(claim, "voided", reason=data.reason)

    async def delete(self, claim_id: str) -> None:
        claim = await self.load_claim(claim_id)
        if claim.status.is_terminal:
            raise ClaimLocked(claim.claim_number, claim.status.value)
        if claim.status != ClaimStatus.DRAFT:
            raise StateError(
                f"Only DRAFT claims can be deleted; {claim.claim_number} is {claim.status.value}",
                code="CANNOT_DELETE",
            )

        claim.mark_deleted(self.ctx.actor_id, self.clock())
        await self.commit("Claim")
        self.logger.info("Claim deleted", claim_id=claim_id, claim_number=claim.claim_number)
        await self.record(
            "claim.deleted", "insurance_claim", claim_id, claim_number=claim.claim_number
        )


__all__ = ["ClaimService", "PAYER_BOOKKEEPING_FIELDS"]
