"""
Console and rotating-file handlers built from LoggingConfig.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Sequence

from .config import LoggingConfig


def _attach(handler: logging.Handler, level: int, formatter: logging.Formatter,
            filters: Optional[Sequence[logging.Filter]]) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    for log_filter in filters or ():
        handler.addFilter(log_filter)
    return handler


def create_console_handler(
    level: int,
    formatter: logging.Formatter,
    filters: Optional[Sequence[logging.Filter]] = None,
) -> logging.StreamHandler:
    """Handler на stdout."""
    return _attach(logging.StreamHandler(sys.stdout), level, formatter, filters)


def create_file_handler(
    file_path: str,
    level: int,
    formatter: logging.Formatter,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    filters: Optional[Sequence[logging.Filter]] = None,
) -> RotatingFileHandler:
    """
    Handler с ротацией: client.log, client.log.1 ... client.log.<backup_count>.

    Родительская директория создается при необходимости.
    """
    Path(file_path).parent.mkdir(parents=True, exist_ok=True)
    rotating = RotatingFileHandler(
        file_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8',
    )
    return _attach(rotating, level, formatter, filters)


def build_handlers(
    config: LoggingConfig,
    level: int,
    formatter: logging.Formatter,
    filters: Optional[Sequence[logging.Filter]] = None,
) -> List[logging.Handler]:
    """Handlers, включенные в LoggingConfig (консоль, затем файл)."""
    handlers: List[logging.Handler] = []
    if config.enable_console:
        handlers.append(create_console_handler(level, formatter, filters))
    if config.enable_file and config.file_path:
        handlers.append(create_file_handler(
            config.file_path,
            level,
            formatter,
            max_bytes=config.max_bytes,
            backup_count=config.backup_count,
            filters=filters,
        ))
    return handlers
