"""
Pydantic settings for environment configuration.

Плоская структура полей: каждое поле читается из переменной
RESILIENT_HTTP_<ИМЯ_ПОЛЯ> (регистр не важен) или из .env файла.
"""

from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ...utils.sanitizer import mask_sensitive_data
from ..config import DEFAULT_MAX_DECOMPRESSED_SIZE, DEFAULT_TIMEOUT, ClientConfig, PoolConfig, RetryConfig
from ..logging import LoggingConfig
from ..options import set_bearer_token, set_user_agent
from ..retry_engine import (
    DEFAULT_RETRY_CLASSIFIER,
    RetryClassifier,
    StreamResetRetryClassifier,
)

ENV_PREFIX = "RESILIENT_HTTP_"

_CLASSIFIERS: Dict[str, RetryClassifier] = {
    "default": DEFAULT_RETRY_CLASSIFIER,
    "stream_reset": StreamResetRetryClassifier(),
}


def parse_backoffs(value: Any) -> Tuple[float, ...]:
    """
    "0.1, 0.5,1" -> (0.1, 0.5, 1.0). Пустая строка - без повторов.

    Raises:
        ValueError: элемент не число или отрицательный
    """
    if value is None:
        return ()
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",") if item.strip()]
    else:
        items = list(value)

    backoffs = tuple(float(item) for item in items)
    if any(b < 0 for b in backoffs):
        raise ValueError("retry backoffs must be non-negative")
    return backoffs


class ClientSettings(BaseSettings):
    """
    Конфигурация клиента из переменных окружения.

    Reads from:
    1. Explicit init arguments
    2. Environment variables (RESILIENT_HTTP_*)
    3. .env file
    4. Defaults

    Example .env file:
        RESILIENT_HTTP_TIMEOUT=5
        RESILIENT_HTTP_RETRY_BACKOFFS=0.1,0.5,1
        RESILIENT_HTTP_RETRY_CLASSIFIER=stream_reset
        RESILIENT_HTTP_USER_AGENT=billing-worker/1.4
        RESILIENT_HTTP_LOG_ENABLED=true
        RESILIENT_HTTP_LOG_FORMAT=json

    Usage:
        >>> settings = ClientSettings()
        >>> config = settings.to_config()
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, description="Attempt timeout in seconds")

    # Retry
    retry_backoffs: str = Field(default="", description="Comma separated delays, empty = no retry")
    retry_classifier: Literal["default", "stream_reset"] = Field(default="default")
    retry_jitter: float = Field(default=0.0, ge=0, le=1)

    # Transport
    decompress: bool = Field(default=True)
    max_decompressed_size: int = Field(default=DEFAULT_MAX_DECOMPRESSED_SIZE, gt=0)
    follow_redirects: bool = Field(default=True)
    pool_connections: int = Field(default=10, ge=1)
    pool_maxsize: int = Field(default=10, ge=1)
    pool_max_redirects: int = Field(default=30, ge=0)

    # Default request options
    user_agent: Optional[str] = None
    bearer_token: Optional[str] = None

    # Logging (выключено = логгер библиотеки без хендлеров)
    log_enabled: bool = Field(default=False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_format: Literal["json", "text", "colored"] = Field(default="text")
    log_enable_console: bool = Field(default=True)
    log_enable_file: bool = Field(default=False)
    log_file_path: Optional[str] = None
    log_max_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    log_backup_count: int = Field(default=5, ge=0)
    log_max_logged_body: int = Field(default=4096, ge=0)

    @field_validator('retry_backoffs', mode='before')
    @classmethod
    def normalize_backoffs(cls, v: Any) -> str:
        """Списки из YAML/JSON приводятся к той же строке, что и в env."""
        if isinstance(v, (int, float)):
            v = str(v)
        elif isinstance(v, (list, tuple)):
            v = ",".join(str(item) for item in v)
        if v is None:
            return ""
        parse_backoffs(v)
        return v

    @field_validator('log_level', mode='before')
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode='after')
    def validate_log_file(self) -> 'ClientSettings':
        if self.log_enabled and self.log_enable_file and not self.log_file_path:
            raise ValueError("log_file_path is required when log_enable_file=True")
        return self

    @property
    def backoffs(self) -> Tuple[float, ...]:
        return parse_backoffs(self.retry_backoffs)

    def to_retry_config(self) -> Optional[RetryConfig]:
        if not self.backoffs:
            return None
        return RetryConfig(
            backoffs=self.backoffs,
            classifier=_CLASSIFIERS[self.retry_classifier],
            jitter=self.retry_jitter,
        )

    def to_pool_config(self) -> PoolConfig:
        return PoolConfig(
            pool_connections=self.pool_connections,
            pool_maxsize=self.pool_maxsize,
            max_redirects=self.pool_max_redirects,
        )

    def to_logging_config(self) -> Optional[LoggingConfig]:
        if not self.log_enabled:
            return None
        return LoggingConfig.create(
            level=self.log_level,
            format=self.log_format,
            enable_console=self.log_enable_console,
            enable_file=self.log_enable_file,
            file_path=self.log_file_path,
            max_bytes=self.log_max_bytes,
            backup_count=self.log_backup_count,
            max_logged_body=self.log_max_logged_body,
        )

    def to_config(self) -> ClientConfig:
        """Собрать ClientConfig."""
        default_options = []
        if self.user_agent:
            default_options.append(set_user_agent(self.user_agent))
        if self.bearer_token:
            default_options.append(set_bearer_token(self.bearer_token))

        return ClientConfig(
            default_options=tuple(default_options),
            timeout=self.timeout,
            retry=self.to_retry_config(),
            decompress=self.decompress,
            max_decompressed_size=self.max_decompressed_size,
            follow_redirects=self.follow_redirects,
            pool=self.to_pool_config(),
            logging=self.to_logging_config(),
        )

    def summary(self) -> Dict[str, Any]:
        """Настройки для вывода в лог, секреты замаскированы."""
        return mask_sensitive_data(self.model_dump())
