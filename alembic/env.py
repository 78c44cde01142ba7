"""
Alembic environment configuration.

Builds its URL from the same DatabaseConfig the service uses, swapping the
async driver for its synchronous counterpart.
"""

from logging.config import fileConfig
from typing import Any
from sqlalchemy import engine_from_config, pool
from alembic import context
from dotenv import load_dotenv

from app.db.models import DbBaseModel
from common.config import DbDriver, DatabaseConfig, SslMode, get_config, initialize_config
from common.api_error import ConfigurationError

load_dotenv()
try:
    initialize_config()
except ConfigurationError as e:
    # Logging is not configured yet; this is a fatal startup error
    print(f"FATAL: Configuration error:\n{e}")
    raise SystemExit(1)

config = context.config
app_config = get_config()

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = DbBaseModel.metadata

_SYNC_DRIVERS = {
    DbDriver.ASYNCPG: "postgresql",  # psycopg2
    DbDriver.PSYCOPG: "postgresql+psycopg",
}


def _database() -> DatabaseConfig:
    if not app_config.database:
        raise RuntimeError("Database configuration not found in environment (set DB_DRIVER)")
    return app_config.database


def get_sync_url() -> str:
    """Synchronous URL for migrations; the app itself runs on the async driver."""
    db_config = _database()
    if db_config.driver.is_sqlite:
        return f"sqlite:///{db_config.name}"

    scheme = _SYNC_DRIVERS[db_config.driver]
    if db_config.username and db_config.password:
        auth = f"{db_config.username}:{db_config.password.get_secret_value()}@"
    elif db_config.username:
        auth = f"{db_config.username}@"
    else:
        auth = ""
    return f"{scheme}://{auth}{db_config.host}:{db_config.port}/{db_config.name}"


def get_connect_args() -> dict[str, Any]:
    """libpq-style SSL settings matching the application's."""
    db_config = _database()
    if db_config.driver.is_sqlite or not db_config.ssl_mode:
        return {}

    connect_args: dict[str, Any] = {"sslmode": db_config.ssl_mode.value}
    if db_config.ssl_mode in (SslMode.REQUIRE, SslMode.VERIFY_CA, SslMode.VERIFY_FULL):
        if db_config.ssl_ca_path:
            connect_args["sslrootcert"] = str(db_config.ssl_ca_path)
        if db_config.ssl_cert_path:
            connect_args["sslcert"] = str(db_config.ssl_cert_path)
        if db_config.ssl_key_path:
            connect_args["sslkey"] = str(db_config.ssl_key_path)
    return connect_args


def run_migrations_offline() -> None:
    """Emit SQL to the script output instead of executing it."""
    context.configure(
        url=get_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_database().driver.is_sqlite,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_sync_url()

    # NullPool: migrations are one-shot
    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args=get_connect_args(),
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=_database().driver.is_sqlite,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
