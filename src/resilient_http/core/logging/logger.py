"""
Main logger for resilient-http.

Wraps a stdlib logger: key-value fields passed to the log methods are
merged with the fields of the current call, masked and attached to the
record as ``extra``.
"""

import itertools
import logging
from typing import Any, Dict, Optional

from .config import LoggingConfig, LogLevel
from .filters import ExtraFieldsFilter, get_log_fields
from .formatters import get_formatter
from .handlers import build_handlers
from ...utils.sanitizer import mask_sensitive_data

DEFAULT_LOGGER_NAME = "resilient_http"

# Suffix numbers of configured loggers: "<name>.client.<n>"
_client_ids = itertools.count(1)

# Field names that would overwrite LogRecord attributes
_RESERVED = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'message', 'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'asctime', 'taskName',
})


class HTTPClientLogger:
    """
    Logger used by the client and its transports.

    With ``config=None`` nothing is configured: records go to
    ``logging.getLogger(name)`` and the application decides where they
    end up. With a LoggingConfig the logger is a child of ``name``
    private to this instance (``<name>.client.<n>``): it gets its own
    handlers and does not propagate, so several configured clients never
    touch each other's output or the shared library logger.

    Example:
        >>> config = LoggingConfig.create(level="DEBUG", format="json")
        >>> logger = HTTPClientLogger(config)
        >>> logger.debug("request success", method="GET", proc_time=0.01)
    """

    def __init__(self, config: Optional[LoggingConfig] = None, name: str = DEFAULT_LOGGER_NAME):
        self.config = config
        self._closed = False
        self._owns_handlers = config is not None

        if config is None:
            self.name = name
            self._logger = logging.getLogger(name)
            return

        self.name = f"{name}.client.{next(_client_ids)}"
        self._logger = logging.getLogger(self.name)

        level = self._get_level(config.level)
        self._logger.setLevel(level)
        self._logger.propagate = False

        filters = []
        if config.extra_fields:
            filters.append(ExtraFieldsFilter(config.extra_fields))

        for handler in build_handlers(config, level, get_formatter(config.format.value), filters):
            self._logger.addHandler(handler)

    @staticmethod
    def _get_level(level: LogLevel) -> int:
        return getattr(logging, level.value)

    @property
    def max_logged_body(self) -> int:
        return self.config.max_logged_body if self.config else 4096

    def is_enabled_for(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _extra(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        fields = get_log_fields()
        fields.update(kwargs)
        # LogRecord attributes cannot be overwritten through extra
        extra = {
            (f"field_{key}" if key in _RESERVED else key): value
            for key, value in fields.items()
        }
        return mask_sensitive_data(extra)

    def _log(self, level: int, message: str, kwargs: Dict[str, Any], exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, message, extra=self._extra(kwargs), exc_info=exc_info)

    def debug(self, message: str, **kwargs: Any) -> None:
        """
        Log debug message.

        Example:
            >>> logger.debug("do request", method="GET", url="https://api.example.com")
        """
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """
        Example:
            >>> logger.warning("will retry", attempt=1, delay=0.5, error=err)
        """
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """
        Example:
            >>> logger.error("bad http status code", status_code=500, error=err)
        """
        self._log(logging.ERROR, message, kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log error with traceback; call from an exception handler."""
        self._log(logging.ERROR, message, kwargs, exc_info=True)

    def close(self) -> None:
        """
        Close handlers created from LoggingConfig. Idempotent.

        Records logged after close are dropped.
        """
        if self._closed:
            return
        self._closed = True
        if not self._owns_handlers:
            return

        for handler in self._logger.handlers[:]:
            try:
                handler.flush()
                handler.close()
            except (OSError, ValueError):
                pass
            self._logger.removeHandler(handler)
        self._logger.disabled = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
