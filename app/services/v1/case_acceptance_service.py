# app/services/v1/case_acceptance_service.py
from datetime import datetime
from typing import Any, Optional

from app.db.models import (
    AcceptanceStatus,
    CaseAcceptance,
    DbBaseModel,
    Patient,
    TreatmentOption,
    TreatmentPlan,
    TreatmentPlanStatus,
)
from app.db.repository import Page
from app.db.schemas import (
    CaseAcceptanceCreate,
    CaseAcceptanceSign,
    CaseAcceptanceUpdate,
)
from common.api_error import AcceptanceFinalized, StateError, ValidationError
from common.scripts import age_on
from .base_service import BaseService

# Columns that cannot hold NULL; an explicit null in a request means "leave as is"
_REQUIRED_FLAGS = frozenset(
    {
        "informed_consent_signed",
        "financial_agreement_signed",
        "hipaa_acknowledged",
        "photo_release_consent",
    }
)

_CLOSED_PLAN_STATUSES = (TreatmentPlanStatus.CANCELLED, TreatmentPlanStatus.COMPLETED)


class CaseAcceptanceService(BaseService):
    """
    Consent and signature collection for a treatment plan.

    Status is never stored directly: it is derived from the signature flags,
    unless withdrawn or overridden by an explicit status on update.
    """

    async def _load(self, acceptance_id: str) -> CaseAcceptance:
        return await self.repo.get_or_raise(
            CaseAcceptance,
            acceptance_id,
            code="CASE_ACCEPTANCE_NOT_FOUND",
            label="Case acceptance",
        )

    async def _check_option(self, plan_id: str, option_id: Optional[str]) -> None:
        if option_id is None:
            return
        option = await self.db.get(TreatmentOption, option_id)
        if option is None or option.plan_id != plan_id:
            raise ValidationError(
                "Selected option does not belong to the treatment plan",
                code="INVALID_OPTION",
            )

    @staticmethod
    def _ensure_open(acceptance: CaseAcceptance) -> None:
        if acceptance.is_withdrawn:
            raise StateError(
                "Case acceptance has been withdrawn", code="ACCEPTANCE_WITHDRAWN"
            )
        if acceptance.is_finalized:
            raise AcceptanceFinalized()

    def _apply_fields(
        self, acceptance: CaseAcceptance, fields: dict[str, Any], now: datetime
    ) -> None:
        """Copy request fields and stamp the date that goes with each flag or signature."""
        for name, value in fields.items():
            if name in _REQUIRED_FLAGS and value is None:
                continue
            setattr(acceptance, name, value)

        if "informed_consent_signed" in fields and fields["informed_consent_signed"] is not None:
            acceptance.informed_consent_date = now if acceptance.informed_consent_signed else None
        if "financial_agreement_signed" in fields and fields["financial_agreement_signed"] is not None:
            acceptance.financial_agreement_date = (
                now if acceptance.financial_agreement_signed else None
            )
        if "patient_signature" in fields:
            acceptance.patient_signed_date = now if acceptance.patient_signature else None
        if "guardian_signature" in fields:
            acceptance.guardian_signed_date = now if acceptance.guardian_signature else None
        if "witnessed_by_id" in fields:
            acceptance.witnessed_date = now if acceptance.witnessed_by_id else None

    async def _accept_plan_if_signed(
        self,
        acceptance: CaseAcceptance,
        status_before: AcceptanceStatus,
        now: datetime,
    ) -> bool:
        """
        On the transition into FULLY_SIGNED, stamp the acceptance and move
        its treatment plan to ACCEPTED inside the current transaction.
        """
        if status_before == AcceptanceStatus.FULLY_SIGNED:
            return False
        if acceptance.status != AcceptanceStatus.FULLY_SIGNED:
            return False

        acceptance.accepted_date = now
        plan = await self.repo.get_or_raise(
            TreatmentPlan,
            acceptance.treatment_plan_id,
            code="TREATMENT_PLAN_NOT_FOUND",
            label="Treatment plan",
        )
        plan.status = TreatmentPlanStatus.ACCEPTED
        plan.accepted_date = now
        self.logger.info(
            "Treatment plan accepted",
            acceptance_id=acceptance.acceptance_id,
            plan_id=plan.plan_id,
        )
        return True

    async def create(self, data: CaseAcceptanceCreate) -> CaseAcceptance:
        patient = await self.repo.get_or_raise(
            Patient, data.patient_id, code="PATIENT_NOT_FOUND", label="Patient"
        )
        plan = await self.repo.get_or_raise(
            TreatmentPlan,
            data.treatment_plan_id,
            code="TREATMENT_PLAN_NOT_FOUND",
            label="Treatment plan",
        )
        if plan.patient_id != patient.patient_id:
            raise ValidationError(
                "Treatment plan belongs to a different patient", code="PLAN_PATIENT_MISMATCH"
            )
        if plan.status in _CLOSED_PLAN_STATUSES:
            raise StateError(f"Treatment plan is {plan.status.value}")
        await self._check_option(plan.plan_id, data.selected_option_id)

        now = self.clock()
        is_minor = age_on(patient.date_of_birth, now.date()) < self.settings.minor_age_years
        if is_minor and not data.guardian_name:
            raise ValidationError(
                f"guardian_name is required for patients under {self.settings.minor_age_years}",
                code="GUARDIAN_REQUIRED",
            )

        acceptance = CaseAcceptance(
            acceptance_id=DbBaseModel.generate_uuid(),
            treatment_plan_id=plan.plan_id,
            patient_id=patient.patient_id,
            patient_is_minor=is_minor,
            informed_consent_signed=False,
            financial_agreement_signed=False,
            hipaa_acknowledged=False,
            photo_release_consent=False,
            created_by=self.ctx.actor_id,
        )
        self._apply_fields(
            acceptance,
            data.model_dump(exclude_unset=True, exclude={"patient_id", "treatment_plan_id"}),
            now,
        )
        self.repo.add(acceptance)
        accepted = await self._accept_plan_if_signed(acceptance, AcceptanceStatus.PENDING, now)

        await self.commit("Case acceptance")
        self.logger.info(
            "Case acceptance created",
            acceptance_id=acceptance.acceptance_id,
            status=acceptance.status.value,
            patient_is_minor=is_minor,
        )
        await self.record(
            "case_acceptance.created",
            "case_acceptance",
            acceptance.acceptance_id,
            status=acceptance.status.value,
            plan_accepted=accepted,
        )
        return acceptance

    async def get_acceptance(self, acceptance_id: str) -> CaseAcceptance:
        return await self._load(acceptance_id)

    async def list_acceptances(
        self,
        *,
        page: int,
        page_size: int,
        status: Optional[AcceptanceStatus] = None,
        patient_id: Optional[str] = None,
        treatment_plan_id: Optional[str] = None,
    ) -> Page[CaseAcceptance]:
        stmt = self.repo.select(CaseAcceptance)
        if status:
            stmt = stmt.where(CaseAcceptance.status == status.value)
        if patient_id:
            stmt = stmt.where(CaseAcceptance.patient_id == patient_id)
        if treatment_plan_id:
            stmt = stmt.where(CaseAcceptance.treatment_plan_id == treatment_plan_id)
        stmt = stmt.order_by(CaseAcceptance.created_at.desc()).execution_options(
            logging_token="CaseAcceptanceService.list_acceptances"
        )
        return await self.repo.paginate(stmt, page, page_size)

    async def update(self, acceptance_id: str, data: CaseAcceptanceUpdate) -> CaseAcceptance:
        """
        Partial update. An explicit `status` applies to this update only:
        WITHDRAWN withdraws, FULLY_SIGNED must agree with the signatures,
        PENDING / PARTIALLY_SIGNED are kept as an override.
        """
        acceptance = await self._load(acceptance_id)
        fields = data.model_dump(exclude_unset=True)
        requested = fields.pop("status", None)
        withdrawal_reason = fields.pop("withdrawal_reason", None)

        if acceptance.is_withdrawn:
            raise StateError(
                "Case acceptance has been withdrawn", code="ACCEPTANCE_WITHDRAWN"
            )
        if acceptance.is_finalized:
            if requested == AcceptanceStatus.WITHDRAWN and not fields:
                return await self._withdraw(acceptance, withdrawal_reason)
            raise AcceptanceFinalized()

        if acceptance.patient_is_minor and "guardian_name" in fields and not fields["guardian_name"]:
            raise ValidationError(
                "guardian_name cannot be removed for a minor patient",
                code="GUARDIAN_REQUIRED",
            )
        if "selected_option_id" in fields:
            await self._check_option(acceptance.treatment_plan_id, fields["selected_option_id"])

        now = self.clock()
        status_before = acceptance.status
        self._apply_fields(acceptance, fields, now)
        acceptance.updated_by = self.ctx.actor_id

        if requested == AcceptanceStatus.WITHDRAWN:
            return await self._withdraw(acceptance, withdrawal_reason)
        if requested == AcceptanceStatus.FULLY_SIGNED:
            if acceptance.derived_status != AcceptanceStatus.FULLY_SIGNED:
                raise ValidationError(
                    "FULLY_SIGNED requires patient signature, informed consent "
                    "and financial agreement",
                    code="INVALID_STATUS_OVERRIDE",
                )
            acceptance.status_override = None
        else:
            acceptance.status_override = requested

        accepted = await self._accept_plan_if_signed(acceptance, status_before, now)
        await self.commit("Case acceptance")

        self.logger.info(
            "Case acceptance updated",
            acceptance_id=acceptance_id,
            status=acceptance.status.value,
            fields=sorted(fields),
        )
        await self.record(
            "case_acceptance.updated",
            "case_acceptance",
            acceptance_id,
            fields=sorted(fields),
            status=acceptance.status.value,
            plan_accepted=accepted,
        )
        return acceptance

    async def sign(self, acceptance_id: str, data: CaseAcceptanceSign) -> CaseAcceptance:
        acceptance = await self._load(acceptance_id)
        self._ensure_open(acceptance)

        now = self.clock()
        status_before = acceptance.status
        self._apply_fields(acceptance, data.model_dump(exclude_none=True), now)
        acceptance.status_override = None
        acceptance.updated_by = self.ctx.actor_id

        accepted = await self._accept_plan_if_signed(acceptance, status_before, now)
        await self.commit("Case acceptance")

        self.logger.info(
            "Case acceptance signed",
            acceptance_id=acceptance_id,
            status=acceptance.status.value,
        )
        await self.record(
            "case_acceptance.signed",
            "case_acceptance",
            acceptance_id,
            status=acceptance.status.value,
            plan_accepted=accepted,
        )
        return acceptance

    async def _withdraw(self, acceptance: CaseAcceptance, reason: Optional[str]) -> CaseAcceptance:
        acceptance.withdrawn_at = self.clock()
        acceptance.withdrawn_by = self.ctx.actor_id
        acceptance.withdrawal_reason = reason
        acceptance.updated_by = self.ctx.actor_id
        await self.commit("Case acceptance")

        self.logger.info("Case acceptance withdrawn", acceptance_id=acceptance.acceptance_id)
        await self.record(
            "case_acceptance.withdrawn",
            "case_acceptance",
            acceptance.acceptance_id,
            reason=reason,
        )
        return acceptance

    async def withdraw(self, acceptance_id: str, reason: Optional[str] = None) -> CaseAcceptance:
        acceptance = await self._load(acceptance_id)
        if acceptance.is_withdrawn:
            raise StateError(
                "Case acceptance has already been withdrawn", code="ACCEPTANCE_WITHDRAWN"
            )
        return await self._withdraw(acceptance, reason)

    async def delete(self, acceptance_id: str) -> None:
        acceptance = await self._load(acceptance_id)
        if acceptance.is_finalized:
            raise AcceptanceFinalized("Fully signed case acceptances cannot be deleted")

        acceptance.mark_deleted(self.ctx.actor_id, self.clock())
        await self.commit("Case acceptance")

        self.logger.info("Case acceptance deleted", acceptance_id=acceptance_id)
        await self.record("case_acceptance.deleted", "case_acceptance", acceptance_id)


__all__ = ["CaseAcceptanceService"]
