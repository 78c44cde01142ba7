# app/db/schemas/case_acceptance_schemas.py
from decimal import Decimal
from pydantic import BaseModel, Field, ConfigDict, field_validator
from datetime import datetime
from typing import Optional
from ..models import AcceptanceStatus


def _blank_to_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class CaseAcceptanceFields(BaseModel):
    """Fields settable at creation and through updates."""

    selected_option_id: Optional[str] = None

    informed_consent_signed: Optional[bool] = None
    financial_agreement_signed: Optional[bool] = None
    hipaa_acknowledged: Optional[bool] = None
    photo_release_consent: Optional[bool] = None

    total_treatment_cost: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    down_payment: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    monthly_payment: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    payment_plan_months: Optional[int] = Field(None, ge=1, le=60)
    insurance_estimate: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    patient_responsibility: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)

    patient_signature: Optional[str] = None
    guardian_signature: Optional[str] = None
    guardian_name: Optional[str] = Field(None, max_length=200)
    guardian_relation: Optional[str] = Field(None, max_length=50)
    witnessed_by_id: Optional[str] = None

    document_urls: Optional[list[str]] = None
    special_conditions: Optional[str] = Field(None, max_length=2000)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("patient_signature", "guardian_signature", "guardian_name")
    @classmethod
    def strip_blank(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)


class CaseAcceptanceCreate(CaseAcceptanceFields):
    treatment_plan_id: str
    patient_id: str


class CaseAcceptanceUpdate(CaseAcceptanceFields):
    # Explicit status wins over the derived one for this update only
    status: Optional[AcceptanceStatus] = None
    withdrawal_reason: Optional[str] = Field(None, max_length=1000)


class CaseAcceptanceSign(BaseModel):
    patient_signature: str = Field(..., min_length=1)
    guardian_signature: Optional[str] = None
    witnessed_by_id: Optional[str] = None

    @field_validator("patient_signature")
    @classmethod
    def require_signature(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("patient_signature cannot be blank")
        return v.strip()

    @field_validator("guardian_signature")
    @classmethod
    def strip_blank(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)


class CaseAcceptanceWithdraw(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class CaseAcceptanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    acceptance_id: str
    treatment_plan_id: str
    patient_id: str
    selected_option_id: Optional[str]
    status: AcceptanceStatus
    status_override: Optional[AcceptanceStatus]

    informed_consent_signed: bool
    informed_consent_date: Optional[datetime]
    financial_agreement_signed: bool
    financial_agreement_date: Optional[datetime]
    hipaa_acknowledged: bool
    photo_release_consent: bool

    total_treatment_cost: Optional[Decimal]
    down_payment: Optional[Decimal]
    monthly_payment: Optional[Decimal]
    payment_plan_months: Optional[int]
    insurance_estimate: Optional[Decimal]
    patient_responsibility: Optional[Decimal]

    patient_signature: Optional[str]
    patient_signed_date: Optional[datetime]
    guardian_signature: Optional[str]
    guardian_signed_date: Optional[datetime]
    guardian_name: Optional[str]
    guardian_relation: Optional[str]
    witnessed_by_id: Optional[str]
    witnessed_date: Optional[datetime]
    patient_is_minor: bool

    document_urls: Optional[list[str]]
    special_conditions: Optional[str]
    notes: Optional[str]
    accepted_date: Optional[datetime]
    withdrawn_at: Optional[datetime]
    withdrawal_reason: Optional[str]
    created_at: datetime
    updated_at: datetime


__all__ = [
    "CaseAcceptanceFields",
    "CaseAcceptanceCreate",
    "CaseAcceptanceUpdate",
    "CaseAcceptanceSign",
    "CaseAcceptanceWithdraw",
    "CaseAcceptanceResponse",
]
