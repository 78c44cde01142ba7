# app/db/models/treatment_plan_table.py
from __future__ import annotations
from typing import Optional
from enum import Enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Integer, Numeric, ForeignKey, Enum as sqlalchemy_Enum
from sqlalchemy.orm import relationship, Mapped, mapped_column
from .db_base_model import DbBaseModel, ClinicScopedMixin, SoftDeleteMixin, UTCDateTime


class TreatmentPlanStatus(str, Enum):
    DRAFT = "DRAFT"
    PRESENTED = "PRESENTED"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TreatmentPlan(ClinicScopedMixin, SoftDeleteMixin, DbBaseModel):
    __tablename__ = "treatment_plans"

    plan_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )

    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.patient_id"), nullable=False, index=True
    )

    plan_name: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[TreatmentPlanStatus] = mapped_column(
        sqlalchemy_Enum(TreatmentPlanStatus, name="treatment_plan_status"),
        nullable=False,
        default=TreatmentPlanStatus.DRAFT,
    )

    accepted_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    options: Mapped[list["TreatmentOption"]] = relationship(
        "TreatmentOption",
        back_populates="plan",
        order_by="TreatmentOption.option_number",
        lazy="raise",
    )


class TreatmentOption(DbBaseModel):
    """One alternative the patient can choose from within a plan."""

    __tablename__ = "treatment_options"

    option_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )

    plan_id: Mapped[str] = mapped_column(
        ForeignKey("treatment_plans.plan_id"), nullable=False, index=True
    )

    option_number: Mapped[int] = mapped_column(Integer, nullable=False)
    option_name: Mapped[str] = mapped_column(String(200), nullable=False)
    estimated_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    plan: Mapped["TreatmentPlan"] = relationship(
        "TreatmentPlan", back_populates="options", lazy="raise"
    )


__all__ = ["TreatmentPlanStatus", "TreatmentPlan", "TreatmentOption"]
