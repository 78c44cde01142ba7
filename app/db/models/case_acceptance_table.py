# app/db/models/case_acceptance_table.py
from __future__ import annotations
from typing import Optional
from enum import Enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    String,
    Integer,
    Boolean,
    Numeric,
    ForeignKey,
    Text,
    JSON,
    case,
    and_,
    or_,
    cast,
    literal,
    Enum as sqlalchemy_Enum,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql.elements import ColumnElement
from .db_base_model import DbBaseModel, ClinicScopedMixin, SoftDeleteMixin, UTCDateTime


class AcceptanceStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_SIGNED = "PARTIALLY_SIGNED"
    FULLY_SIGNED = "FULLY_SIGNED"
    WITHDRAWN = "WITHDRAWN"


def derive_acceptance_status(
    patient_signature: Optional[str],
    informed_consent_signed: bool,
    financial_agreement_signed: bool,
) -> AcceptanceStatus:
    """
    Status implied by the signature flags alone.

    All three collected -> FULLY_SIGNED, some -> PARTIALLY_SIGNED,
    none -> PENDING.
    """
    collected = (
        bool(patient_signature and patient_signature.strip()),
        bool(informed_consent_signed),
        bool(financial_agreement_signed),
    )
    if all(collected):
        return AcceptanceStatus.FULLY_SIGNED
    if any(collected):
        return AcceptanceStatus.PARTIALLY_SIGNED
    return AcceptanceStatus.PENDING


class CaseAcceptance(ClinicScopedMixin, SoftDeleteMixin, DbBaseModel):
    __tablename__ = "case_acceptances"

    acceptance_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )

    treatment_plan_id: Mapped[str] = mapped_column(
        ForeignKey("treatment_plans.plan_id"), nullable=False, index=True
    )
    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.patient_id"), nullable=False, index=True
    )
    selected_option_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("treatment_options.option_id"), nullable=True
    )

    # Consents
    informed_consent_signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    informed_consent_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    financial_agreement_signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    financial_agreement_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    hipaa_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    photo_release_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Financial terms
    total_treatment_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    down_payment: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    monthly_payment: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    payment_plan_months: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    insurance_estimate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    patient_responsibility: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Signatures
    patient_signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    patient_signed_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    guardian_signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    guardian_signed_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    guardian_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    guardian_relation: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    witnessed_by_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    witnessed_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Captured at creation; not re-evaluated as the patient ages
    patient_is_minor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    document_urls: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    special_conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    accepted_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Explicit caller-supplied status, cleared on the next update without one
    status_override: Mapped[Optional[AcceptanceStatus]] = mapped_column(
        sqlalchemy_Enum(AcceptanceStatus, name="acceptance_status"), nullable=True
    )

    withdrawn_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    withdrawn_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    withdrawal_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def derived_status(self) -> AcceptanceStatus:
        return derive_acceptance_status(
            self.patient_signature,
            self.informed_consent_signed,
            self.financial_agreement_signed,
        )

    @hybrid_property
    def status(self) -> AcceptanceStatus:
        if self.withdrawn_at is not None:
            return AcceptanceStatus.WITHDRAWN
        if self.status_override is not None:
            return self.status_override
        return self.derived_status

    @status.inplace.expression
    @classmethod
    def _status_expression(cls) -> ColumnElement[str]:
        has_signature = and_(
            cls.patient_signature.is_not(None), cls.patient_signature != ""
        )
        consent = cls.informed_consent_signed.is_(True)
        agreement = cls.financial_agreement_signed.is_(True)
        return case(
            (cls.withdrawn_at.is_not(None), literal(AcceptanceStatus.WITHDRAWN.value)),
            (cls.status_override.is_not(None), cast(cls.status_override, String)),
            (
                and_(has_signature, consent, agreement),
                literal(AcceptanceStatus.FULLY_SIGNED.value),
            ),
            (
                or_(has_signature, consent, agreement),
                literal(AcceptanceStatus.PARTIALLY_SIGNED.value),
            ),
            else_=literal(AcceptanceStatus.PENDING.value),
        )

    @property
    def is_finalized(self) -> bool:
        return self.status == AcceptanceStatus.FULLY_SIGNED

    @property
    def is_withdrawn(self) -> bool:
        return self.withdrawn_at is not None


__all__ = ["AcceptanceStatus", "CaseAcceptance", "derive_acceptance_status"]
