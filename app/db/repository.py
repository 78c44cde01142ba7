# app/db/repository.py
"""
Tenant-scoped data access.

Every tenant-owned read goes through ScopedRepository.select(), which adds
the clinic filter and hides soft-deleted rows. Services never build a bare
select() for tenant data.
"""

from dataclasses import dataclass
from math import ceil
from typing import Any, Generic, Optional, Sequence, TypeVar
from sqlalchemy import select, func, Select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.interfaces import ORMOption

from common.api_error import NotFoundError
from .models import DbBaseModel, SoftDeleteMixin, RecordState

T = TypeVar("T", bound=DbBaseModel)


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return ceil(self.total / self.page_size) if self.page_size else 0


class ScopedRepository:
    """Query builder bound to one clinic."""

    def __init__(self, db: AsyncSession, clinic_id: str):
        self.db = db
        self.clinic_id = clinic_id

    def select(self, model: type[T], *, include_deleted: bool = False) -> Select[tuple[T]]:
        stmt = select(model).where(model.clinic_id == self.clinic_id)  # type: ignore[attr-defined]
        if not include_deleted and issubclass(model, SoftDeleteMixin):
            stmt = stmt.where(model.record_state == RecordState.ACTIVE)
        return stmt

    async def get(
        self,
        model: type[T],
        entity_id: str,
        *,
        for_update: bool = False,
        options: Sequence[ORMOption] = (),
    ) -> Optional[T]:
        pk = model.__mapper__.primary_key[0]
        stmt = (
            self.select(model)
            .where(pk == entity_id)
            .options(*options)
            .execution_options(logging_token=f"ScopedRepository.get.{model.__name__}")
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_raise(
        self,
        model: type[T],
        entity_id: str,
        *,
        code: Optional[str] = None,
        label: Optional[str] = None,
        for_update: bool = False,
        options: Sequence[ORMOption] = (),
    ) -> T:
        """
        Same as get() but raises NotFoundError. Rows of another clinic are
        reported exactly like missing rows.
        """
        entity = await self.get(model, entity_id, for_update=for_update, options=options)
        if entity is None:
            name = label or model.__name__
            raise NotFoundError(
                f"{name} {entity_id} not found",
                code=code or "NOT_FOUND",
            )
        return entity

    def add(self, entity: T) -> T:
        entity.clinic_id = self.clinic_id  # type: ignore[attr-defined]
        self.db.add(entity)
        return entity

    async def paginate(self, stmt: Select[Any], page: int, page_size: int) -> Page[Any]:
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        total = (await self.db.execute(count_stmt)).scalar_one()
        rows = await self.db.execute(
            stmt.limit(page_size).offset((page - 1) * page_size)
        )
        return Page(
            items=list(rows.scalars().all()),
            total=int(total),
            page=page,
            page_size=page_size,
        )


__all__ = ["ScopedRepository", "Page"]
