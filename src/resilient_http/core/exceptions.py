"""
Иерархия исключений resilient-http.

Классификация:
- OptionError - опция запроса упала до отправки, никогда не ретраится
- TransportError (temporary=True/False) - сетевые ошибки, ретраятся только временные
- HTTPError - ответ получен, но статус вне 2xx
- DecodeError / EncodeError / SinkError - ошибки обработки данных
- CancelledError - вызов прерван отменой или дедлайном
"""

from typing import Optional

import httpx
import requests

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BASE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class HTTPClientException(Exception):
    """Базовое исключение resilient-http."""

    temporary: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ДО ОТПРАВКИ
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class OptionError(HTTPClientException):
    """
    Опция запроса вернула ошибку.

    Запрос в сеть не отправлялся, поэтому retry не выполняется.
    """
    pass

class EncodeError(HTTPClientException):
    """Не удалось сериализовать тело запроса."""
    pass

class ConfigurationError(HTTPClientException):
    """Ошибка конфигурации."""
    pass

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ТРАНСПОРТ
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class TransportError(HTTPClientException):
    """
    Сетевая ошибка транспорта.

    Args:
        message: Сообщение об ошибке
        url: URL запроса
        temporary: Временная ли ошибка (кандидат на retry)
    """

    def __init__(self, message: str, url: Optional[str] = None, temporary: bool = False):
        self.url = url
        self.temporary = temporary
        full_message = message
        if url:
            full_message += f" (url: {url})"
        super().__init__(full_message)

class TimeoutError(TransportError):
    """
    Таймаут попытки.

    Args:
        message: Сообщение об ошибке
        url: URL запроса
        timeout: Значение таймаута (сек)
    """

    def __init__(self, message: str, url: Optional[str] = None, timeout: Optional[float] = None):
        self.timeout = timeout
        msg = message
        if timeout:
            msg += f" (timeout: {timeout}s)"
        super().__init__(msg, url, temporary=True)

class ConnectionError(TransportError):
    """
    Ошибка подключения.

    Примеры:
    - Connection refused
    - Connection reset
    - Network unreachable
    """

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message, url, temporary=True)

class ProxyError(TransportError):
    """Ошибка прокси."""
    pass

class InvalidRequestError(TransportError):
    """Запрос не может быть отправлен (битый URL, неподдерживаемая схема)."""
    pass

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ПРОТОКОЛ И ДАННЫЕ
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class HTTPError(HTTPClientException):
    """
    Ответ со статусом вне диапазона 200-299.

    Args:
        status_code: HTTP статус
        status_text: Строка статуса, например "404 Not Found"
        url: URL
    """

    def __init__(self, status_code: int, status_text: str = "", url: Optional[str] = None):
        self.status_code = status_code
        self.status_text = status_text or str(status_code)
        self.url = url

        msg = f"bad http status: {self.status_text}"
        if url:
            msg += f" for {url}"

        super().__init__(msg)

class DecodeError(HTTPClientException):
    """
    Ответ получен, но не может быть декодирован.

    Примеры:
    - Битый gzip
    - Невалидная кодировка
    - JSON/XML не соответствует целевому типу
    """
    pass

class DecompressionBombError(DecodeError):
    """
    Распакованное тело больше допустимого (max_decompressed_size).

    Args:
        compressed_size: Размер сжатых данных
        limit: Предел распакованного размера
        url: URL
    """

    def __init__(self, compressed_size: int, limit: int, url: str = ""):
        self.compressed_size = compressed_size
        self.limit = limit
        self.url = url
        super().__init__(
            f"Decompression bomb detected for {url}: "
            f"{compressed_size} compressed bytes inflate past {limit} bytes"
        )

class SinkError(HTTPClientException):
    """Ошибка записи скачиваемых данных в приемник."""
    pass

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ОТМЕНА
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class CancelledError(HTTPClientException):
    """
    Вызов прерван вызывающей стороной.

    Args:
        reason: "cancelled" или "deadline exceeded"
    """

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"request {reason}")

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# УТИЛИТЫ
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def classify_requests_exception(
    exc: Exception,
    url: str,
    timeout: Optional[float] = None
) -> HTTPClientException:
    """
    Конвертировать requests.exceptions в наши исключения.

    Args:
        exc: Исключение из requests
        url: URL запроса
        timeout: Таймаут попытки (для сообщения)

    Returns:
        Наше исключение с правильным флагом temporary

    Examples:
        >>> exc = requests.exceptions.Timeout()
        >>> our_exc = classify_requests_exception(exc, "https://example.com")
        >>> assert isinstance(our_exc, TimeoutError)
        >>> assert our_exc.temporary == True
    """
    detail = str(exc) or type(exc).__name__

    if isinstance(exc, requests.exceptions.Timeout):
        return TimeoutError(f"request timeout: {detail}", url, timeout)

    elif isinstance(exc, requests.exceptions.ProxyError):
        return ProxyError(f"proxy error: {detail}", url)

    elif isinstance(exc, requests.exceptions.SSLError):
        return TransportError(f"ssl error: {detail}", url)

    elif isinstance(exc, requests.exceptions.ConnectionError):
        return ConnectionError(f"connection error: {detail}", url)

    elif isinstance(exc, (
        requests.exceptions.URLRequired,
        requests.exceptions.MissingSchema,
        requests.exceptions.InvalidSchema,
        requests.exceptions.InvalidURL,
        requests.exceptions.InvalidHeader,
    )):
        return InvalidRequestError(f"invalid request: {detail}", url)

    elif isinstance(exc, requests.exceptions.ChunkedEncodingError):
        # Обрыв потока посреди тела ответа
        return TransportError(f"broken response stream: {detail}", url)

    else:
        return TransportError(detail, url)


def classify_httpx_exception(
    exc: Exception,
    url: str,
    timeout: Optional[float] = None
) -> HTTPClientException:
    """
    Конвертировать httpx исключения в наши исключения.

    Args:
        exc: Исключение из httpx
        url: URL запроса
        timeout: Таймаут попытки (для сообщения)

    Returns:
        Наше исключение с правильным флагом temporary
    """
    detail = str(exc) or type(exc).__name__

    if isinstance(exc, httpx.TimeoutException):
        return TimeoutError(f"request timeout: {detail}", url, timeout)

    elif isinstance(exc, httpx.ProxyError):
        return ProxyError(f"proxy error: {detail}", url)

    elif isinstance(exc, (httpx.ConnectError, httpx.ReadError, httpx.WriteError)):
        return ConnectionError(f"connection error: {detail}", url)

    elif isinstance(exc, (httpx.UnsupportedProtocol, httpx.InvalidURL)):
        return InvalidRequestError(f"invalid request: {detail}", url)

    else:
        return TransportError(detail, url)
