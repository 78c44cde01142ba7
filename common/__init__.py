from .context_vars import request_timer_context_var
from .config import DatabaseConfig, get_config
from .logger import logger, get_app_logger

__all__ = [
    "request_timer_context_var",
    "DatabaseConfig",
    "get_config",
    "logger",
    "get_app_logger",
]
