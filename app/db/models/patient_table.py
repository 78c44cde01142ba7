# app/db/models/patient_table.py
from __future__ import annotations
from datetime import date
from typing import Optional
from sqlalchemy import String, Date
from sqlalchemy.orm import Mapped, mapped_column
from .db_base_model import DbBaseModel, ClinicScopedMixin, SoftDeleteMixin


class Patient(ClinicScopedMixin, SoftDeleteMixin, DbBaseModel):
    __tablename__ = "patients"

    patient_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Drives the minor/guardian rule on case acceptance
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)

    contact_info: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


__all__ = ["Patient"]
