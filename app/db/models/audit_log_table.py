# app/db/models/audit_log_table.py
from __future__ import annotations
from typing import Any, Optional
from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column
from .db_base_model import DbBaseModel, ClinicScopedMixin


class AuditLog(ClinicScopedMixin, DbBaseModel):
    """Who did what to which record. Written after the change committed."""

    __tablename__ = "audit_logs"

    audit_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=DbBaseModel.generate_uuid,
    )
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)


__all__ = ["AuditLog"]
