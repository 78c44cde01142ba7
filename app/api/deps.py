# app/api/deps.py
from typing import Awaitable, Callable, Optional, TypeVar
from fastapi import Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from jwt.exceptions import PyJWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db, get_db_manager
from app.db.db_manager import DbManager
from app.services.v1 import AuditSink, BaseService, ServiceContext
from common.api_error import AuthenticationError, PermissionDeniedError
from common.config import AppConfig, SchedulingConfig, get_config

ServiceT = TypeVar("ServiceT", bound=BaseService)

bearer_scheme = HTTPBearer(auto_error=False)


def get_settings() -> AppConfig:
    return get_config()


def get_scheduling(settings: AppConfig = Depends(get_settings)) -> SchedulingConfig:
    return settings.scheduling


def get_audit_sink(db_manager: DbManager = Depends(get_db_manager)) -> AuditSink:
    return AuditSink(db_manager)


async def get_request_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: AppConfig = Depends(get_settings),
) -> ServiceContext:
    """
    Decode the bearer token into the acting user and their clinic.

    The token is issued by the external identity provider; this service
    only verifies it.
    """
    if credentials is None:
        raise AuthenticationError("Missing bearer token")

    auth = settings.auth
    try:
        payload = jwt.decode(
            credentials.credentials,
            auth.jwt_secret.get_secret_value(),
            algorithms=[auth.jwt_algorithm.value],
            audience=auth.jwt_audience,
            options={"require": ["sub"]},
        )
    except PyJWTError as exc:
        raise AuthenticationError("Could not validate credentials") from exc

    actor_id = payload.get("sub")
    clinic_id = payload.get("clinic_id")
    permissions = payload.get("permissions") or []
    if not isinstance(clinic_id, str) or not clinic_id:
        raise AuthenticationError("Token is not bound to a clinic")
    if not isinstance(permissions, list):
        raise AuthenticationError("Malformed permissions claim")

    # Picked up by the request logging middleware
    request.state.clinic_id = clinic_id
    return ServiceContext(
        clinic_id=clinic_id,
        actor_id=str(actor_id),
        permissions=frozenset(str(p) for p in permissions),
    )


def require_permission(permission: str) -> Callable[..., Awaitable[ServiceContext]]:
    """
    Usage:
        ctx: ServiceContext = Depends(require_permission("booking:write"))
    """

    async def dependency(
        ctx: ServiceContext = Depends(get_request_context),
    ) -> ServiceContext:
        if not ctx.is_authorized(permission):
            raise PermissionDeniedError(f"Missing permission: {permission}")
        return ctx

    return dependency


def service_provider(
    service_cls: type[ServiceT], permission: str
) -> Callable[..., Awaitable[ServiceT]]:
    """Build `service_cls` for the caller's clinic once `permission` is checked."""

    async def dependency(
        ctx: ServiceContext = Depends(require_permission(permission)),
        db: AsyncSession = Depends(get_db),
        audit: AuditSink = Depends(get_audit_sink),
        settings: SchedulingConfig = Depends(get_scheduling),
    ) -> ServiceT:
        return service_cls(db, ctx, audit=audit, settings=settings)

    return dependency


class Pagination:
    def __init__(
        self,
        page: int = Query(1, ge=1),
        page_size: Optional[int] = Query(None, ge=1),
        settings: SchedulingConfig = Depends(get_scheduling),
    ):
        self.page = page
        self.page_size = min(page_size or settings.default_page_size, settings.max_page_size)


__all__ = [
    "bearer_scheme",
    "get_settings",
    "get_scheduling",
    "get_audit_sink",
    "get_request_context",
    "require_permission",
    "service_provider",
    "Pagination",
]
