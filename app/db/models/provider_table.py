# app/db/models/provider_table.py
from __future__ import annotations
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from .db_base_model import DbBaseModel, ClinicScopedMixin, SoftDeleteMixin


class Provider(ClinicScopedMixin, SoftDeleteMixin, DbBaseModel):
    """A bookable clinician at one clinic location."""

    __tablename__ = "providers"

    provider_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )

    # Same person across locations shares this id
    staff_user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    specialty: Mapped[str | None] = mapped_column(String(50), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


__all__ = ["Provider"]
