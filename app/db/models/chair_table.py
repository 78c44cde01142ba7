# app/db/models/chair_table.py
from __future__ import annotations
from sqlalchemy import String, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from .db_base_model import DbBaseModel, ClinicScopedMixin, SoftDeleteMixin


class Chair(ClinicScopedMixin, SoftDeleteMixin, DbBaseModel):
    """Operatory chair; booked like a provider but never shared across clinics."""

    __tablename__ = "chairs"
    __table_args__ = (UniqueConstraint("clinic_id", "name", name="uq_chairs_clinic_name"),)

    chair_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )

    name: Mapped[str] = mapped_column(String(50), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


__all__ = ["Chair"]
