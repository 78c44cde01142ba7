# common/config/config_types.py
"""Enumerations for values read from the environment."""

from enum import Enum
import logging


class EnvLogLevel(str, Enum):
    """
    Supported log levels.

    Values are plain strings so they serialize directly in JSON and logs.
    """

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def level(self) -> int:
        """Numeric level for the stdlib logging module."""
        return getattr(logging, self.value)

    def __str__(self) -> str:
        return self.value


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"

    @property
    def is_production(self) -> bool:
        return self == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self == Environment.DEVELOPMENT

    def __str__(self) -> str:
        return self.value


class DbDriver(str, Enum):
    """Supported async database drivers."""

    ASYNCPG = "asyncpg"
    PSYCOPG = "psycopg"
    AIOSQLITE = "aiosqlite"

    @property
    def is_sqlite(self) -> bool:
        return self == DbDriver.AIOSQLITE


class SslMode(str, Enum):
    """PostgreSQL SSL modes."""

    DISABLE = "disable"
    ALLOW = "allow"
    PREFER = "prefer"
    REQUIRE = "require"
    VERIFY_CA = "verify-ca"
    VERIFY_FULL = "verify-full"


class JwtAlgorithm(str, Enum):
    """Signing algorithms accepted for bearer tokens."""

    HS256 = "HS256"
    HS384 = "HS384"
    HS512 = "HS512"
    RS256 = "RS256"


__all__ = [
    "EnvLogLevel",
    "Environment",
    "DbDriver",
    "SslMode",
    "JwtAlgorithm",
]
