# common/config/app_config.py
"""
Complete application configuration with validation.

Everything is read from environment variables once at startup; the
resulting models are frozen.
"""

from typing import Optional, Any
from pydantic import BaseModel, Field, field_validator, model_validator, SecretStr
from .config_types import EnvLogLevel, DbDriver, SslMode, Environment, JwtAlgorithm
from .env_config import require_env, get_env, get_int_env
from .logging_config import LoggingConfig
from pathlib import Path


class DatabaseConfig(BaseModel):
    """
    Database connection settings.

    PostgreSQL drivers need host/port; for aiosqlite `name` is the file path.
    """

    host: Optional[str] = Field(default=None, min_length=1)
    port: Optional[int] = Field(default=None, gt=0, le=65535)
    name: str = Field(..., min_length=1, description="Database name or sqlite file")
    slow_query_threshold: float = Field(
        ..., description="SQL time (ms) above which a request is flagged as slow"
    )
    username: Optional[str] = Field(default=None, min_length=1)
    password: Optional[SecretStr] = Field(default=None)

    pool_size: int = Field(..., ge=1, le=100)
    max_overflow: int = Field(..., ge=0, le=100)
    pool_timeout: int = Field(..., ge=1, le=300)
    pool_recycle: int = Field(..., ge=300)

    ssl_mode: Optional[SslMode] = Field(default=None)
    ssl_cert_path: Optional[Path] = Field(default=None)
    ssl_key_path: Optional[Path] = Field(default=None)
    ssl_ca_path: Optional[Path] = Field(default=None)

    driver: DbDriver = Field(...)

    model_config = {"frozen": True}

    @field_validator("ssl_cert_path", "ssl_key_path", "ssl_ca_path")
    @classmethod
    def validate_ssl_paths(cls, v: Optional[Path]) -> Optional[Path]:
        if v is not None and not v.exists():
            raise ValueError(f"SSL file not found: {v}")
        return v

    @model_validator(mode="after")
    def validate_server_address(self) -> "DatabaseConfig":
        if not self.driver.is_sqlite and (self.host is None or self.port is None):
            raise ValueError(f"DB_HOST and DB_PORT are required for {self.driver.value}")
        return self

    def get_connection_url(self, include_password: bool = False) -> str:
        """
        Build the SQLAlchemy async URL.

        The password is masked unless `include_password` is set, so the
        default form is safe to log.
        """
        if self.driver.is_sqlite:
            return f"sqlite+aiosqlite:///{self.name}"

        if self.username:
            if include_password and self.password:
                auth = f"{self.username}:{self.password.get_secret_value()}@"
            elif self.password:
                auth = f"{self.username}:****@"
            else:
                auth = f"{self.username}@"
        else:
            auth = ""
        return f"postgresql+{self.driver.value}://{auth}{self.host}:{self.port}/{self.name}"

    def requires_ssl(self) -> bool:
        return self.ssl_mode in [
            SslMode.REQUIRE,
            SslMode.VERIFY_CA,
            SslMode.VERIFY_FULL,
        ]

    def to_dict_safe(self) -> dict[str, Any]:
        """Dump with the password masked (safe for logging)."""
        data = self.model_dump()
        if data.get("password"):
            data["password"] = "****"
        return data


class AuthConfig(BaseModel):
    """Bearer token verification settings."""

    jwt_secret: SecretStr
    jwt_algorithm: JwtAlgorithm = JwtAlgorithm.HS256
    jwt_audience: Optional[str] = None

    model_config = {"frozen": True}


class SchedulingConfig(BaseModel):
    """Limits for recurring series expansion and list endpoints."""

    max_occurrences: int = Field(default=52, ge=1, le=366)
    max_span_days: int = Field(default=730, ge=1, le=3660)
    minor_age_years: int = Field(default=18, ge=1, le=21)
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_page_sizes(self) -> "SchedulingConfig":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self


class AppConfig(BaseModel):
    """
    Complete application configuration.

    Invalid configuration fails fast at startup with every offending
    field listed.
    """

    app_title: str = Field(..., min_length=1)
    app_version: str = Field(..., pattern=r"^\d+\.\d+\.\d+$")
    environment: str = Field(..., pattern="^(development|staging|production)$")

    logging: LoggingConfig
    auth: AuthConfig
    scheduling: SchedulingConfig = SchedulingConfig()
    database: Optional[DatabaseConfig] = None

    model_config = {"frozen": True}

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION.value

    @model_validator(mode="after")
    def validate_production_settings(self) -> "AppConfig":
        if self.is_production:
            if self.database is None:
                raise ValueError("Database config required in production")
            if self.logging.log_level == EnvLogLevel.DEBUG:
                raise ValueError("DEBUG log level not allowed in production")
            if len(self.auth.jwt_secret.get_secret_value()) < 32:
                raise ValueError("AUTH_JWT_SECRET must be at least 32 characters in production")
        return self


def load_database_config(environment: Environment) -> Optional[DatabaseConfig]:
    """
    Load database configuration from environment.

    Returns None when DB_DRIVER is unset (database-less development runs).

    Required:
    - DB_DRIVER: asyncpg, psycopg or aiosqlite
    - DB_NAME: database name (sqlite: file path)
    - DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_TIMEOUT, DB_POOL_RECYCLE
    - SLOW_QUERY_THRESHOLD

    Required for PostgreSQL drivers:
    - DB_HOST, DB_PORT

    Optional (dev) / Required (prod):
    - DB_USER, DB_PASSWORD, DB_SSL_MODE

    Optional:
    - DB_SSL_CERT, DB_SSL_KEY, DB_SSL_CA
    """
    driver_str = get_env("DB_DRIVER")
    if not driver_str:
        return None

    try:
        driver = DbDriver(driver_str)
    except ValueError:
        valid_drivers = [d.value for d in DbDriver]
        raise ValueError(
            f"Invalid DB_DRIVER: {driver_str}. Must be one of: {valid_drivers}"
        )

    name = require_env("DB_NAME")
    pool_size_str = require_env("DB_POOL_SIZE")
    max_overflow_str = require_env("DB_MAX_OVERFLOW")
    pool_timeout_str = require_env("DB_POOL_TIMEOUT")
    pool_recycle_str = require_env("DB_POOL_RECYCLE")
    slow_query_threshold = float(require_env("SLOW_QUERY_THRESHOLD"))

    host = get_env("DB_HOST")
    port_str = get_env("DB_PORT")
    if not driver.is_sqlite:
        host = require_env("DB_HOST")
        port_str = require_env("DB_PORT")

    if environment.is_production and not driver.is_sqlite:
        username: Optional[str] = require_env("DB_USER")
        password_str: Optional[str] = require_env("DB_PASSWORD")
        ssl_mode_str: Optional[str] = require_env("DB_SSL_MODE")
    else:
        username = get_env("DB_USER")
        password_str = get_env("DB_PASSWORD")
        ssl_mode_str = get_env("DB_SSL_MODE")

    ssl_mode: Optional[SslMode] = None
    if ssl_mode_str:
        try:
            ssl_mode = SslMode(ssl_mode_str)
        except ValueError:
            valid_modes = [m.value for m in SslMode]
            raise ValueError(
                f"Invalid DB_SSL_MODE: {ssl_mode_str}. Must be one of: {valid_modes}"
            )

    ssl_paths: dict[str, Optional[Path]] = {}
    for field, env_key in (
        ("ssl_cert_path", "DB_SSL_CERT"),
        ("ssl_key_path", "DB_SSL_KEY"),
        ("ssl_ca_path", "DB_SSL_CA"),
    ):
        value = get_env(env_key)
        ssl_paths[field] = Path(value) if value else None

    return DatabaseConfig(
        host=host,
        port=int(port_str) if port_str else None,
        name=name,
        username=username,
        password=SecretStr(password_str) if password_str else None,
        pool_size=int(pool_size_str),
        max_overflow=int(max_overflow_str),
        pool_timeout=int(pool_timeout_str),
        pool_recycle=int(pool_recycle_str),
        ssl_mode=ssl_mode,
        driver=driver,
        slow_query_threshold=slow_query_threshold,
        **ssl_paths,
    )


def load_auth_config() -> AuthConfig:
    """
    Required:
    - AUTH_JWT_SECRET

    Optional:
    - AUTH_JWT_ALGORITHM (default HS256)
    - AUTH_JWT_AUDIENCE
    """
    algorithm_str = get_env("AUTH_JWT_ALGORITHM", JwtAlgorithm.HS256.value)
    try:
        algorithm = JwtAlgorithm(algorithm_str)
    except ValueError:
        valid = [a.value for a in JwtAlgorithm]
        raise ValueError(
            f"Invalid AUTH_JWT_ALGORITHM: {algorithm_str}. Must be one of: {valid}"
        )

    return AuthConfig(
        jwt_secret=SecretStr(require_env("AUTH_JWT_SECRET")),
        jwt_algorithm=algorithm,
        jwt_audience=get_env("AUTH_JWT_AUDIENCE"),
    )


def load_scheduling_config() -> SchedulingConfig:
    """
    All optional:
    - RECURRENCE_MAX_OCCURRENCES (52)
    - RECURRENCE_MAX_SPAN_DAYS (730)
    - MINOR_AGE_YEARS (18)
    - DEFAULT_PAGE_SIZE (20), MAX_PAGE_SIZE (100)
    """
    return SchedulingConfig(
        max_occurrences=get_int_env("RECURRENCE_MAX_OCCURRENCES", 52),
        max_span_days=get_int_env("RECURRENCE_MAX_SPAN_DAYS", 730),
        minor_age_years=get_int_env("MINOR_AGE_YEARS", 18),
        default_page_size=get_int_env("DEFAULT_PAGE_SIZE", 20),
        max_page_size=get_int_env("MAX_PAGE_SIZE", 100),
    )


def load_app_config() -> AppConfig:
    """
    Load complete application configuration.

    Raises:
        ValidationError: If configuration is invalid
        ConfigurationError: If required env vars are missing
    """
    from .logging_config import load_logging_config

    env_str = require_env("ENVIRONMENT")

    try:
        environment = Environment(env_str)
    except ValueError:
        valid_envs = [e.value for e in Environment]
        raise ValueError(
            f"Invalid ENVIRONMENT: {env_str}. Must be one of: {valid_envs}"
        )

    return AppConfig(
        app_title=require_env("APP_TITLE"),
        app_version=require_env("APP_VERSION"),
        environment=environment.value,
        logging=load_logging_config(),
        auth=load_auth_config(),
        scheduling=load_scheduling_config(),
        database=load_database_config(environment),
    )


__all__ = [
    "AppConfig",
    "AuthConfig",
    "DatabaseConfig",
    "SchedulingConfig",
    "load_app_config",
]
