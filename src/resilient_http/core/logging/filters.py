"""
Per-call log fields and log filters.

The client stores the fields of the current call (from its Context and
the log-context hook) in a context variable, so every log event issued
while the call runs carries them, including events written by transport
decorators that never see the Context. Context variables work for both
threads and asyncio tasks.
"""

import contextvars
import logging
from typing import Any, Dict, Mapping

_log_fields: contextvars.ContextVar = contextvars.ContextVar("resilient_http_log_fields", default=None)


def set_log_fields(fields: Mapping[str, Any]) -> contextvars.Token:
    """
    Set the log fields of the current call.

    Returns:
        Token for reset_log_fields()

    Example:
        >>> token = set_log_fields({"request_id": "req-1"})
        >>> try:
        ...     logger.info("Processing")  # includes request_id=req-1
        ... finally:
        ...     reset_log_fields(token)
    """
    return _log_fields.set(dict(fields))


def get_log_fields() -> Dict[str, Any]:
    """Log fields of the current call (empty outside of a call)."""
    fields = _log_fields.get()
    return dict(fields) if fields else {}


def reset_log_fields(token: contextvars.Token) -> None:
    _log_fields.reset(token)


class ExtraFieldsFilter(logging.Filter):
    """
    Adds static fields (service name, environment, ...) to every record.

    Example:
        >>> handler.addFilter(ExtraFieldsFilter({"service": "billing"}))
    """

    def __init__(self, extra_fields: Mapping[str, Any]):
        super().__init__()
        self.extra_fields = dict(extra_fields)

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.extra_fields.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
