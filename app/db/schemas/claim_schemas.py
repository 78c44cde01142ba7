# app/db/schemas/claim_schemas.py
from decimal import Decimal
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from datetime import date, datetime
from typing import Optional
from ..models import ClaimStatus, ClaimType, SubmissionMethod


class ClaimItemInput(BaseModel):
    procedure_code: str = Field(..., min_length=1, max_length=10)
    modifier: Optional[str] = Field(None, max_length=5)
    description: Optional[str] = Field(None, max_length=500)
    service_date: date
    quantity: int = Field(1, ge=1, le=99)
    tooth_numbers: Optional[list[str]] = None
    billed_amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)


class ClaimCreate(BaseModel):
    patient_id: str
    payer_name: str = Field(..., min_length=1, max_length=200)
    claim_type: ClaimType = ClaimType.ORIGINAL
    service_date: date
    treatment_plan_id: Optional[str] = None
    npi: Optional[str] = Field(None, pattern=r"^\d{10}$")
    preauth_number: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=2000)
    items: list[ClaimItemInput] = Field(..., min_length=1)

    @field_validator("claim_type")
    @classmethod
    def reject_corrected(cls, v: ClaimType) -> ClaimType:
        if v == ClaimType.CORRECTED:
            raise ValueError("Corrected claims are created by resubmitting a denied claim")
        return v


class ClaimUpdate(BaseModel):
    """
    Draft/Ready claims accept every field; later non-terminal states only
    take the payer bookkeeping fields.
    """

    payer_name: Optional[str] = Field(None, min_length=1, max_length=200)
    service_date: Optional[date] = None
    npi: Optional[str] = Field(None, pattern=r"^\d{10}$")
    preauth_number: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=2000)
    items: Optional[list[ClaimItemInput]] = Field(None, min_length=1)
    status: Optional[ClaimStatus] = None
    payer_claim_id: Optional[str] = Field(None, max_length=50)
    allowed_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)

    @field_validator("status")
    @classmethod
    def only_draft_or_ready(cls, v: Optional[ClaimStatus]) -> Optional[ClaimStatus]:
        if v is not None and v not in (ClaimStatus.DRAFT, ClaimStatus.READY):
            raise ValueError("status can only be set to DRAFT or READY; use the claim actions")
        return v


class ClaimSubmitRequest(BaseModel):
    submission_method: SubmissionMethod = SubmissionMethod.ELECTRONIC
    note: Optional[str] = Field(None, max_length=2000)


class ClaimAdjudicateRequest(BaseModel):
    """Payer response (EOB/ERA) for a submitted or appealed claim."""

    outcome: ClaimStatus
    paid_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    allowed_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    payer_claim_id: Optional[str] = Field(None, max_length=50)
    denial_code: Optional[str] = Field(None, max_length=20)
    denial_reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_outcome_fields(self) -> "ClaimAdjudicateRequest":
        if self.outcome not in (ClaimStatus.PAID, ClaimStatus.DENIED):
            raise ValueError("outcome must be PAID or DENIED")
        if self.outcome == ClaimStatus.PAID and self.paid_amount is None:
            raise ValueError("paid_amount is required when outcome is PAID")
        if self.outcome == ClaimStatus.DENIED and not (self.denial_code or self.denial_reason):
            raise ValueError("denial_code or denial_reason is required when outcome is DENIED")
        return self


class ClaimAppealRequest(BaseModel):
    appeal_reason: str = Field(..., min_length=1, max_length=2000)


class ClaimResubmitRequest(BaseModel):
    correction_notes: Optional[str] = Field(None, max_length=2000)
    items: Optional[list[ClaimItemInput]] = Field(None, min_length=1)


class ClaimVoidRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class ClaimItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: str
    line_number: int
    procedure_code: str
    modifier: Optional[str]
    description: Optional[str]
    service_date: date
    quantity: int
    tooth_numbers: Optional[list[str]]
    billed_amount: Decimal


class ClaimStatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    from_status: Optional[ClaimStatus]
    to_status: ClaimStatus
    actor_id: str
    changed_at: datetime
    note: Optional[str]


class ClaimSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    claim_id: str
    claim_number: str
    claim_type: ClaimType
    patient_id: str
    payer_name: str
    service_date: date
    filing_date: Optional[date]
    status: ClaimStatus
    billed_amount: Decimal
    paid_amount: Optional[Decimal]
    original_claim_id: Optional[str]
    created_at: datetime


class ClaimResponse(ClaimSummaryResponse):
    treatment_plan_id: Optional[str]
    payer_claim_id: Optional[str]
    npi: Optional[str]
    preauth_number: Optional[str]
    submission_method: Optional[SubmissionMethod]
    submitted_at: Optional[datetime]
    submitted_by: Optional[str]
    allowed_amount: Optional[Decimal]
    paid_at: Optional[datetime]
    denial_code: Optional[str]
    denial_reason: Optional[str]
    appeal_reason: Optional[str]
    correction_notes: Optional[str]
    notes: Optional[str]
    updated_at: datetime
    items: list[ClaimItemResponse]
    status_history: list[ClaimStatusHistoryResponse]


class ClaimResubmitResult(BaseModel):
    original: ClaimResponse
    corrected: ClaimResponse


__all__ = [
    "ClaimItemInput",
    "ClaimCreate",
    "ClaimUpdate",
    "ClaimSubmitRequest",
    "ClaimAdjudicateRequest",
    "ClaimAppealRequest",
    "ClaimResubmitRequest",
    "ClaimVoidRequest",
    "ClaimItemResponse",
    "ClaimStatusHistoryResponse",
    "ClaimSummaryResponse",
    "ClaimResponse",
    "ClaimResubmitResult",
]
