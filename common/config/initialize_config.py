# common/config/initialize_config.py
"""
Configuration initialization module.

Loads, validates and stores the application configuration once per process.
"""
from typing import Optional, List
from pydantic import ValidationError
from .app_config import AppConfig, load_app_config
from .structlog_config import configure_structlog
from common.api_error import ConfigurationError


class _ConfigState:
    """
    Process-wide holder for the validated configuration.
    """

    _instance: Optional["_ConfigState"] = None
    _config: Optional[AppConfig]

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._config = None
        return cls._instance

    @property
    def is_initialized(self) -> bool:
        return self._config is not None

    @property
    def config(self) -> AppConfig:
        if not self._config:
            raise RuntimeError(
                "Configuration not initialized. Call initialize_config() at startup."
            )
        return self._config

    def set_config(self, config: AppConfig) -> None:
        self._config = config


_state = _ConfigState()


def initialize_config() -> None:
    """
    Initialize and validate all application configuration.

    Must run once at startup before anything reads `get_config()`.
    Repeated calls in the same process are no-ops.

    Raises:
        ConfigurationError: If configuration is invalid or missing
    """
    if _state.is_initialized:
        return

    try:
        config = load_app_config()
        configure_structlog(
            config.logging.level_int, json_logs=config.is_production
        )
        _state.set_config(config)

    except ValidationError as e:
        errors: List[str] = []
        for error in e.errors():
            field = ".".join(str(x) for x in error["loc"])
            errors.append(f"{field}: {error['msg']}")

        raise ConfigurationError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {err}" for err in errors)
        ) from e
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def get_config() -> AppConfig:
    """
    Get validated application configuration.

    Raises:
        RuntimeError: If not initialized
    """
    return _state.config


__all__ = ["initialize_config", "get_config"]
