# app/db/deps.py
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import AsyncGenerator

from .db_manager import DbManager


def get_db_manager(request: Request) -> DbManager:
    """
    The manager created during lifespan, pulled from app.state so several
    app instances (tests) can each carry their own.
    """
    manager = getattr(request.app.state, "db_manager", None)
    if not manager:
        raise RuntimeError(
            "DbManager not found in app.state. Ensure lifespan is configured."
        )
    return manager


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """One transactional session per request."""
    async with get_db_manager(request).session() as session:
        yield session


__all__ = ["get_db", "get_db_manager"]
