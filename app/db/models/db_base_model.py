# app/db/models/db_base_model.py
from __future__ import annotations
from enum import Enum
from typing import Optional
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import DateTime, String, Enum as sqlalchemy_Enum
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone
from uuid import uuid4

from common.scripts import utc_now


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp stored as UTC.

    SQLite drops tzinfo on the way in and out; values are normalised to UTC
    before binding and re-tagged as UTC when loaded, so comparisons behave
    the same on both backends.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: Optional[datetime], dialect: Dialect
    ) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(
        self, value: Optional[datetime], dialect: Dialect
    ) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class RecordState(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class DbBaseModel(DeclarativeBase):
    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    @staticmethod
    def generate_uuid() -> str:
        return str(uuid4())

    def __repr__(self) -> str:
        pk = ", ".join(
            f"{col.key}={getattr(self, col.key, None)!r}"
            for col in self.__mapper__.primary_key
        )
        return f"<{type(self).__name__} {pk}>"


class ClinicScopedMixin:
    """Rows owned by exactly one clinic (tenant)."""

    clinic_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)


class SoftDeleteMixin:
    """
    Explicit lifecycle marker; rows are never removed, only hidden.
    """

    record_state: Mapped[RecordState] = mapped_column(
        sqlalchemy_Enum(RecordState, name="record_state"),
        nullable=False,
        default=RecordState.ACTIVE,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    @property
    def is_visible(self) -> bool:
        return self.record_state == RecordState.ACTIVE

    def mark_deleted(self, actor_id: str, at: Optional[datetime] = None) -> None:
        self.record_state = RecordState.DELETED
        self.deleted_at = at or utc_now()
        self.deleted_by = actor_id


__all__ = [
    "DbBaseModel",
    "UTCDateTime",
    "RecordState",
    "ClinicScopedMixin",
    "SoftDeleteMixin",
]
