# app/services/v1/base_service.py
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.db.repository import ScopedRepository
from common.api_error import ConflictError, ConcurrentModification
from common.config import SchedulingConfig
from common.logger import get_app_logger
from common.scripts import Clock, utc_now

if TYPE_CHECKING:
    from .audit_service import AuditSink

logger = get_app_logger(__name__)


@dataclass(frozen=True)
class ServiceContext:
    """Who is acting, and on behalf of which clinic."""

    clinic_id: str
    actor_id: str
    permissions: frozenset[str] = field(default_factory=frozenset)

    def is_authorized(self, permission: str) -> bool:
        return permission in self.permissions


class BaseService:
    """
    Shared plumbing for lifecycle services.

    Each mutating operation owns its transaction: it flushes as it goes,
    commits once at the end, and only then hands the change to the audit
    sink.
    """

    def __init__(
        self,
        db: AsyncSession,
        ctx: ServiceContext,
        *,
        audit: Optional["AuditSink"] = None,
        settings: Optional[SchedulingConfig] = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.ctx = ctx
        self.repo = ScopedRepository(db, ctx.clinic_id)
        self.audit = audit
        self.settings = settings or SchedulingConfig()
        self.clock = clock
        self.logger = logger.bind(
            service=type(self).__name__,
            clinic_id=ctx.clinic_id,
            actor_id=ctx.actor_id,
        )

    async def flush(self, entity: str = "Record") -> None:
        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise ConcurrentModification(entity) from exc
        except IntegrityError as exc:
            raise ConflictError(
                f"{entity} conflicts with an existing record", code="DUPLICATE"
            ) from exc

    async def commit(self, entity: str = "Record") -> None:
        await self.flush(entity)
        try:
            await self.db.commit()
        except StaleDataError as exc:
            raise ConcurrentModification(entity) from exc
        except IntegrityError as exc:
            raise ConflictError(
                f"{entity} conflicts with an existing record", code="DUPLICATE"
            ) from exc

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        **details: Any,
    ) -> None:
        if self.audit is not None:
            await self.audit.emit(self.ctx, action, entity_type, entity_id, details or None)


__all__ = ["ServiceContext", "BaseService"]
