# app/db/db_manager.py
"""
Database manager focused on connection management and session handling.
Schema migrations are handled separately via Alembic CLI.

Design principles:
- Fail fast: invalid configuration crashes on startup
- Explicit over implicit: no auto-migrations
- One transactional session per unit of work
"""

import time
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
    AsyncEngine,
)
from sqlalchemy import text, event
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Any, Optional, Union
from common import DatabaseConfig, logger, request_timer_context_var


class DbManager:
    """
    Database connection and session manager.

    Usage:
        # Startup
        db_manager = DbManager.from_config(config.database)
        await db_manager.verify_connection()

        # Runtime
        async with db_manager.session() as session:
            result = await session.execute(...)

        # Shutdown
        await db_manager.dispose()
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        pool_pre_ping: bool = True,
        echo: bool = False,
        connect_args: Optional[dict[str, Any]] = None,
    ):
        """
        Args:
            url: Async database URL (postgresql+asyncpg:// or sqlite+aiosqlite://)
            pool_size: Number of persistent connections
            max_overflow: Additional connections beyond pool_size
            pool_timeout: Seconds to wait for connection from pool
            pool_recycle: Recycle connections after N seconds
            pool_pre_ping: Test connections before using
            echo: Log all SQL statements
            connect_args: Driver-specific connection arguments (SSL, etc.)
        """
        self._validate_url(url)

        self._config: dict[str, Union[str, int]] = {
            "url": url.split("@")[-1],
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "pool_recycle": pool_recycle,
        }

        self.engine: AsyncEngine = create_async_engine(
            url=url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=pool_pre_ping,
            connect_args=connect_args or {},
        )
        self._install_timing_hooks()

        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        self._verified = False

        logger.info(
            f"DbManager initialized: pool_size={pool_size}, "
            f"max_overflow={max_overflow}, pre_ping={pool_pre_ping}"
        )

    @classmethod
    def from_config(cls, config: DatabaseConfig, **kwargs: Any) -> "DbManager":
        """
        Create DbManager from DatabaseConfig, including asyncpg SSL setup.

        Example:
            db_manager = DbManager.from_config(config.database)
        """
        connect_args = kwargs.pop("connect_args", {})

        if config.ssl_mode and config.driver.value == "asyncpg":
            import ssl as ssl_module

            ssl_mode = config.ssl_mode.value
            if ssl_mode == "disable":
                connect_args["ssl"] = False
            elif config.requires_ssl():
                ssl_context = ssl_module.create_default_context()
                if config.ssl_ca_path:
                    ssl_context.load_verify_locations(cafile=str(config.ssl_ca_path))
                if config.ssl_cert_path and config.ssl_key_path:
                    ssl_context.load_cert_chain(
                        certfile=str(config.ssl_cert_path),
                        keyfile=str(config.ssl_key_path),
                    )
                if ssl_mode == "verify-full":
                    ssl_context.check_hostname = True
                    ssl_context.verify_mode = ssl_module.CERT_REQUIRED
                else:
                    ssl_context.check_hostname = False
                    if ssl_mode == "require":
                        ssl_context.verify_mode = ssl_module.CERT_NONE
                connect_args["ssl"] = ssl_context

        return cls(
            url=config.get_connection_url(include_password=True),
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            connect_args=connect_args,
            **kwargs,
        )

    @staticmethod
    def _validate_url(url: str) -> None:
        if not url or not url.startswith(
            ("postgresql+asyncpg://", "postgresql+psycopg://", "sqlite+aiosqlite://")
        ):
            raise ValueError(
                f"Invalid database URL. Expected postgresql+asyncpg://, "
                f"postgresql+psycopg:// or sqlite+aiosqlite://, got: {url[:20]}..."
            )

    def _install_timing_hooks(self) -> None:
        """
        Feed SQL execution time and statement count into the RequestTimer
        of the current request, if there is one.
        """
        sync_engine = self.engine.sync_engine

        @event.listens_for(sync_engine, "before_cursor_execute")
        def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]
            conn.info.setdefault("query_start_time", []).append(time.perf_counter())

        @event.listens_for(sync_engine, "after_cursor_execute")
        def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]
            started = conn.info["query_start_time"].pop()
            timer = request_timer_context_var.get()
            if timer is not None:
                timer.add("sql", (time.perf_counter() - started) * 1000)
                timer.increment("query_count")

    async def verify_connection(self) -> None:
        """
        Verify database connection on startup.

        Raises:
            ConnectionError: If connection fails
        """
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            self._verified = True
            logger.info("Database connection verified", target=self._config["url"])
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise ConnectionError(f"Failed to connect to database: {e}") from e

    async def verify_migrations_current(self) -> str:
        """
        Check that Alembic has stamped the database.

        Returns:
            Current migration revision

        Raises:
            RuntimeError: If no revision has been applied
        """
        async with self.engine.connect() as conn:
            has_table = await conn.run_sync(
                lambda sync_conn: sync_conn.dialect.has_table(sync_conn, "alembic_version")
            )
            if not has_table:
                raise RuntimeError(
                    "alembic_version table not found. "
                    "Have you run 'alembic upgrade head'?"
                )
            result = await conn.execute(text("SELECT version_num FROM alembic_version"))
            current_version = result.scalar()

        if not current_version:
            raise RuntimeError("No Alembic revision applied. Run 'alembic upgrade head'.")
        logger.info(f"Current migration version: {current_version}")
        return str(current_version)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional database session.

        Commits on success, rolls back on exception. Services may commit
        earlier themselves; the final commit is then a no-op.

        Raises:
            Exception: Re-raises any exception after rollback
        """
        session = self.session_maker()
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning(f"Session rolled back: {type(e).__name__}: {e}")
            raise
        finally:
            await session.close()

    async def health_check(self) -> dict[str, Any]:
        """
        Connectivity check with pool metrics.

        Example:
            {"healthy": True, "response_time_ms": 5.2, "pool_status": "..."}
        """
        start = time.perf_counter()
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {"healthy": False, "error": type(e).__name__}

        return {
            "healthy": True,
            "response_time_ms": round((time.perf_counter() - start) * 1000, 2),
            "pool_status": self.engine.pool.status(),
        }

    async def dispose(self) -> None:
        """Dispose of all connections. Call on application shutdown."""
        await self.engine.dispose()
        logger.info("Database connections disposed")

    def get_config_snapshot(self) -> dict[str, Any]:
        return self._config.copy()


__all__ = ["DbManager"]
