"""
Система конфигурации для resilient-http.

Все конфиги immutable (frozen dataclasses): клиент читает их без
блокировок, поэтому менять конфигурацию во время использования нельзя -
вместо этого создается новый конфиг через with_*().
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Sequence, Tuple, TYPE_CHECKING

from .context import Context
from .exceptions import ConfigurationError
from .options import PreparedCall, RequestOption
from .retry_engine import (
    DEFAULT_RETRY_CLASSIFIER,
    Retrier,
    RetryClassifier,
    SingleAttempt,
)

if TYPE_CHECKING:
    from .logging import LoggingConfig

DEFAULT_TIMEOUT = 15.0
DEFAULT_MAX_DECOMPRESSED_SIZE = 500 * 1024 * 1024  # 500MB

LogContextFunc = Callable[[Context, PreparedCall], Context]

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RETRY CONFIG
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class RetryConfig:
    """
    Конфигурация retry стратегии.

    Args:
        backoffs: Задержки между попытками (сек); их количество = максимум повторов
        classifier: Классификатор ошибок
        jitter: Случайный разброс задержки, доля от 0 до 1

    Examples:
        >>> RetryConfig(backoffs=(0.1, 0.5, 1.0))
        >>> RetryConfig(backoffs=exponential_backoff(5, 0.2), classifier=StreamResetRetryClassifier())
    """
    backoffs: Tuple[float, ...] = (0.1, 0.5, 1.0)
    classifier: RetryClassifier = DEFAULT_RETRY_CLASSIFIER
    jitter: float = 0.0

    def __post_init__(self):
        """Валидация."""
        object.__setattr__(self, 'backoffs', tuple(float(b) for b in self.backoffs))
        if any(b < 0 for b in self.backoffs):
            raise ConfigurationError("backoffs must be non-negative")
        if not 0 <= self.jitter <= 1:
            raise ConfigurationError("jitter must be between 0 and 1")
        if not isinstance(self.classifier, RetryClassifier):
            raise ConfigurationError("classifier must be a RetryClassifier")

    @property
    def max_attempts(self) -> int:
        """Максимум попыток (включая первую)."""
        return len(self.backoffs) + 1

    def build_retrier(self) -> Retrier:
        return Retrier(self.backoffs, self.classifier, self.jitter)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CONNECTION POOL CONFIG
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class PoolConfig:
    """
    Параметры пула соединений для встроенного транспорта.

    Args:
        pool_connections: Количество connection pools для кеширования
        pool_maxsize: Максимум соединений в пуле
        max_redirects: Максимум редиректов
    """
    pool_connections: int = 10
    pool_maxsize: int = 10
    max_redirects: int = 30

    def __post_init__(self):
        """Валидация."""
        if self.pool_connections <= 0:
            raise ConfigurationError("pool_connections must be positive")
        if self.pool_maxsize <= 0:
            raise ConfigurationError("pool_maxsize must be positive")
        if self.max_redirects < 0:
            raise ConfigurationError("max_redirects must be non-negative")

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# MAIN CONFIG
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class ClientConfig:
    """
    Главная конфигурация HTTPClient.

    Args:
        default_options: Опции, применяемые до опций каждого вызова
        timeout: Таймаут одной попытки (сек)
        transport: Транспорт (None = RequestsTransport с параметрами pool)
        retry: Конфигурация retry (None = одна попытка без повторов)
        log_context_func: (ctx, request) -> ctx, обогащает контекст логов вызова
        decompress: Распаковывать gzip/deflate ответы
        max_decompressed_size: Предел распакованного тела в байтах (защита от decompression bomb)
        follow_redirects: Следовать редиректам
        pool: Параметры пула встроенного транспорта
        logging: Конфигурация логирования (None = логгер библиотеки без хендлеров)

    Examples:
        >>> config = ClientConfig(timeout=5)
        >>> config = ClientConfig.create(timeout=5, backoffs=[0.1, 0.2])
    """
    default_options: Tuple[RequestOption, ...] = ()
    timeout: float = DEFAULT_TIMEOUT
    transport: Optional[Any] = None
    retry: Optional[RetryConfig] = None
    log_context_func: Optional[LogContextFunc] = None
    decompress: bool = True
    max_decompressed_size: int = DEFAULT_MAX_DECOMPRESSED_SIZE
    follow_redirects: bool = True
    pool: PoolConfig = field(default_factory=PoolConfig)
    logging: Optional['LoggingConfig'] = None

    def __post_init__(self):
        """Валидация и нормализация."""
        object.__setattr__(self, 'default_options', tuple(self.default_options))
        if self.timeout is None or self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")
        if self.max_decompressed_size <= 0:
            raise ConfigurationError("max_decompressed_size must be positive")
        for option in self.default_options:
            if not callable(option):
                raise ConfigurationError(f"request option must be callable, got {option!r}")

    @classmethod
    def create(
        cls,
        timeout: float = DEFAULT_TIMEOUT,
        backoffs: Optional[Sequence[float]] = None,
        classifier: Optional[RetryClassifier] = None,
        default_options: Sequence[RequestOption] = (),
        transport: Optional[Any] = None,
        log_context_func: Optional[LogContextFunc] = None,
        follow_redirects: bool = True,
        logging: Optional['LoggingConfig'] = None,
        **kwargs
    ) -> 'ClientConfig':
        """
        Удобный конструктор конфигурации.

        Args:
            timeout: Таймаут попытки (сек)
            backoffs: Задержки retry; None = без повторов
            classifier: Классификатор (только вместе с backoffs)
            default_options: Дефолтные опции запроса
            transport: Свой транспорт
            log_context_func: Функция обогащения контекста логов
            follow_redirects: Следовать редиректам
            logging: Конфигурация логирования

        Returns:
            ClientConfig instance

        Examples:
            >>> config = ClientConfig.create(timeout=5)
            >>> config = ClientConfig.create(backoffs=constant_backoff(3, 0.5))
        """
        retry = None
        if backoffs is not None:
            retry = RetryConfig(
                backoffs=tuple(backoffs),
                classifier=classifier or DEFAULT_RETRY_CLASSIFIER,
            )
        elif classifier is not None:
            raise ConfigurationError("classifier requires backoffs")

        return cls(
            default_options=tuple(default_options),
            timeout=timeout,
            transport=transport,
            retry=retry,
            log_context_func=log_context_func,
            follow_redirects=follow_redirects,
            logging=logging,
            **kwargs
        )

    def build_retrier(self) -> Retrier:
        """Retrier для одного вызова (одна попытка если retry не настроен)."""
        if self.retry is None:
            return SingleAttempt()
        return self.retry.build_retrier()

    def with_timeout(self, timeout: float) -> 'ClientConfig':
        """
        Создать новый конфиг с измененным timeout.

        Example:
            >>> new_config = config.with_timeout(60)
        """
        return replace(self, timeout=timeout)

    def with_retry(
        self,
        backoffs: Sequence[float],
        classifier: Optional[RetryClassifier] = None,
        jitter: float = 0.0,
    ) -> 'ClientConfig':
        """
        Создать новый конфиг с retry.

        Example:
            >>> new_config = config.with_retry([0.1, 0.2], StreamResetRetryClassifier())
        """
        retry = RetryConfig(
            backoffs=tuple(backoffs),
            classifier=classifier or DEFAULT_RETRY_CLASSIFIER,
            jitter=jitter,
        )
        return replace(self, retry=retry)

    def without_retry(self) -> 'ClientConfig':
        return replace(self, retry=None)

    def with_default_options(self, *options: RequestOption) -> 'ClientConfig':
        """
        Создать новый конфиг с заменой дефолтных опций.

        Example:
            >>> new_config = config.with_default_options(set_header("X-App", "demo"))
        """
        return replace(self, default_options=tuple(options))

    def with_log_context_func(self, func: Optional[LogContextFunc]) -> 'ClientConfig':
        return replace(self, log_context_func=func)

    def with_transport(self, transport: Any) -> 'ClientConfig':
        return replace(self, transport=transport)
