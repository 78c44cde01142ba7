# app/db/models/claim_table.py
from __future__ import annotations
from typing import Optional, Any
from enum import Enum
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import (
    String,
    Integer,
    Numeric,
    Date,
    ForeignKey,
    Text,
    JSON,
    UniqueConstraint,
    Enum as sqlalchemy_Enum,
    event,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column, Mapper
from sqlalchemy.engine import Connection
from .db_base_model import DbBaseModel, ClinicScopedMixin, SoftDeleteMixin, UTCDateTime
from common.api_error import ImmutableRecordError


class ClaimStatus(str, Enum):
    DRAFT = "DRAFT"
    READY = "READY"
    SUBMITTED = "SUBMITTED"
    DENIED = "DENIED"
    APPEALED = "APPEALED"
    PAID = "PAID"
    VOID = "VOID"
    CLOSED = "CLOSED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_CLAIM_STATUSES

    @property
    def is_editable(self) -> bool:
        return self in (ClaimStatus.DRAFT, ClaimStatus.READY)


TERMINAL_CLAIM_STATUSES = frozenset({ClaimStatus.PAID, ClaimStatus.VOID, ClaimStatus.CLOSED})


class ClaimType(str, Enum):
    ORIGINAL = "ORIGINAL"
    CORRECTED = "CORRECTED"
    PREAUTHORIZATION = "PREAUTHORIZATION"


class SubmissionMethod(str, Enum):
    ELECTRONIC = "ELECTRONIC"
    PAPER = "PAPER"
    PORTAL = "PORTAL"


CENT = Decimal("0.01")


def to_money(value: Decimal | float | int) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class InsuranceClaim(ClinicScopedMixin, SoftDeleteMixin, DbBaseModel):
    __tablename__ = "insurance_claims"
    __table_args__ = (
        UniqueConstraint("clinic_id", "claim_number", name="uq_claims_clinic_number"),
    )

    claim_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )

    claim_number: Mapped[str] = mapped_column(String(20), nullable=False)

    claim_type: Mapped[ClaimType] = mapped_column(
        sqlalchemy_Enum(ClaimType, name="claim_type"),
        nullable=False,
        default=ClaimType.ORIGINAL,
    )

    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.patient_id"), nullable=False, index=True
    )
    treatment_plan_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("treatment_plans.plan_id"), nullable=True
    )

    payer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    payer_claim_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    npi: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    preauth_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    filing_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    status: Mapped[ClaimStatus] = mapped_column(
        sqlalchemy_Enum(ClaimStatus, name="claim_status"),
        nullable=False,
        default=ClaimStatus.DRAFT,
        index=True,
    )

    submission_method: Mapped[Optional[SubmissionMethod]] = mapped_column(
        sqlalchemy_Enum(SubmissionMethod, name="submission_method"), nullable=True
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    submitted_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    billed_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    allowed_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    paid_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    denial_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    denial_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    appeal_reason: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    correction_notes: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    original_claim_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("insurance_claims.claim_id"), nullable=True
    )

    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    items: Mapped[list["ClaimItem"]] = relationship(
        "ClaimItem",
        back_populates="claim",
        order_by="ClaimItem.line_number",
        cascade="all, delete-orphan",
        lazy="raise",
    )
    status_history: Mapped[list["ClaimStatusHistory"]] = relationship(
        "ClaimStatusHistory",
        order_by="ClaimStatusHistory.sequence",
        lazy="raise",
        viewonly=True,
    )


class ClaimItem(DbBaseModel):
    __tablename__ = "insurance_claim_items"
    __table_args__ = (
        UniqueConstraint("claim_id", "line_number", name="uq_claim_items_line"),
    )

    item_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )
    claim_id: Mapped[str] = mapped_column(
        ForeignKey("insurance_claims.claim_id"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    procedure_code: Mapped[str] = mapped_column(String(10), nullable=False)
    modifier: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    tooth_numbers: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    billed_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    claim: Mapped["InsuranceClaim"] = relationship(
        "InsuranceClaim", back_populates="items", lazy="raise"
    )

    @property
    def line_total(self) -> Decimal:
        return to_money(Decimal(self.billed_amount) * self.quantity)

    def copy_fields(self) -> dict[str, Any]:
        """Column values for cloning this line onto another claim."""
        return {
            "line_number": self.line_number,
            "procedure_code": self.procedure_code,
            "modifier": self.modifier,
            "description": self.description,
            "service_date": self.service_date,
            "quantity": self.quantity,
            "tooth_numbers": list(self.tooth_numbers) if self.tooth_numbers else None,
            "billed_amount": self.billed_amount,
        }


class ClaimStatusHistory(ClinicScopedMixin, DbBaseModel):
    """One row per claim transition. Insert-only."""

    __tablename__ = "insurance_claim_status_history"

    history_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )
    claim_id: Mapped[str] = mapped_column(
        ForeignKey("insurance_claims.claim_id"), nullable=False, index=True
    )
    # Ordering within a claim; timestamps can tie inside one transaction
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[Optional[ClaimStatus]] = mapped_column(
        sqlalchemy_Enum(ClaimStatus, name="claim_status"), nullable=True
    )
    to_status: Mapped[ClaimStatus] = mapped_column(
        sqlalchemy_Enum(ClaimStatus, name="claim_status"), nullable=False
    )
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)


def claim_total(items: list[ClaimItem]) -> Decimal:
    """Sum of billed amount x quantity across lines, in cents."""
    return to_money(sum((item.line_total for item in items), Decimal("0")))


@event.listens_for(ClaimStatusHistory, "before_update")
def _reject_history_update(
    mapper: Mapper[Any], connection: Connection, target: ClaimStatusHistory
) -> None:
    raise ImmutableRecordError("Claim status history")


@event.listens_for(ClaimStatusHistory, "before_delete")
def _reject_history_delete(
    mapper: Mapper[Any], connection: Connection, target: ClaimStatusHistory
) -> None:
    raise ImmutableRecordError("Claim status history")


__all__ = [
    "ClaimStatus",
    "ClaimType",
    "SubmissionMethod",
    "InsuranceClaim",
    "ClaimItem",
    "ClaimStatusHistory",
    "TERMINAL_CLAIM_STATUSES",
    "claim_total",
    "to_money",
]
