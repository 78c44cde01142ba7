# app/services/v1/audit_service.py
from typing import TYPE_CHECKING, Any, Optional
from fastapi.encoders import jsonable_encoder

from app.db import DbManager
from app.db.models import AuditLog
from common.logger import get_app_logger

if TYPE_CHECKING:
    from .base_service import ServiceContext

logger = get_app_logger(__name__)


class AuditSink:
    """
    Best-effort audit trail.

    Writes happen in a separate session after the business transaction has
    committed. A failed write is logged and dropped; it never undoes or
    fails the change being audited.
    """

    def __init__(self, db_manager: DbManager):
        self._db_manager = db_manager

    async def emit(
        self,
        ctx: "ServiceContext",
        action: str,
        entity_type: str,
        entity_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            async with self._db_manager.session() as session:
                session.add(
                    AuditLog(
                        clinic_id=ctx.clinic_id,
                        actor_id=ctx.actor_id,
                        action=action,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        details=jsonable_encoder(details) if details else None,
                    )
                )
        except Exception as exc:
            logger.error(
                "Audit write failed",
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                clinic_id=ctx.clinic_id,
                error=f"{type(exc).__name__}: {exc}",
            )
            return

        logger.debug(
            "Audit recorded",
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
        )


__all__ = ["AuditSink"]
