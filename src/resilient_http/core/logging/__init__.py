"""
Logging system for resilient-http.

Example:
    >>> from resilient_http.core.logging import LoggingConfig
    >>> from resilient_http import HTTPClient, ClientConfig
    >>>
    >>> config = ClientConfig.create(
    ...     logging=LoggingConfig.create(level="DEBUG", format="colored")
    ... )
    >>> client = HTTPClient(config=config)
"""

from .config import LoggingConfig, LogLevel, LogFormat
from .logger import HTTPClientLogger, DEFAULT_LOGGER_NAME
from .formatters import JSONFormatter, TextFormatter, ColoredFormatter, get_formatter
from .filters import ExtraFieldsFilter, set_log_fields, get_log_fields, reset_log_fields
from .handlers import build_handlers, create_console_handler, create_file_handler

__all__ = [
    # Config
    "LoggingConfig",
    "LogLevel",
    "LogFormat",
    # Logger
    "HTTPClientLogger",
    "DEFAULT_LOGGER_NAME",
    # Formatters
    "JSONFormatter",
    "TextFormatter",
    "ColoredFormatter",
    "get_formatter",
    # Filters
    "ExtraFieldsFilter",
    "set_log_fields",
    "get_log_fields",
    "reset_log_fields",
    # Handlers
    "create_console_handler",
    "create_file_handler",
    "build_handlers",
]
