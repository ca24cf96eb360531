# src/resilient_http/core/transport.py
"""
Транспорт - одна сетевая операция request -> response.

Клиент не управляет соединениями, он только вызывает send() и владеет
телом ответа: каждый TransportResponse закрывается на любом пути выхода
(используется как context manager).
"""

from abc import ABC, abstractmethod
from http.cookiejar import DefaultCookiePolicy
from typing import Iterator, List, Mapping, Optional, Tuple

import requests
import urllib3
from requests.adapters import HTTPAdapter

from .config import PoolConfig
from .exceptions import TransportError, classify_requests_exception
from .options import PreparedCall
from .response import ACCEPT_ENCODING
from .session_manager import ThreadSafeSessionManager


class TransportResponse(ABC):
    """
    Ответ транспорта с еще не прочитанным телом.

    Тело отдается "сырым" (без снятия Content-Encoding), чтобы решение
    о распаковке принимал клиент.
    """

    status_code: int
    reason: str
    headers: Mapping[str, str]

    @property
    def status_text(self) -> str:
        """Строка статуса, например "404 Not Found"."""
        if self.reason:
            return f"{self.status_code} {self.reason}"
        return str(self.status_code)

    @property
    def cookies(self) -> List[Tuple[str, str]]:
        """Cookies из Set-Cookie ответа: [(name, value), ...]."""
        return []

    @abstractmethod
    def iter_raw(self, chunk_size: int = 8192) -> Iterator[bytes]:
        """Итерироваться по сырым байтам тела."""

    def read_raw(self) -> bytes:
        return b"".join(self.iter_raw())

    @abstractmethod
    def close(self) -> None:
        """Освободить соединение."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class Transport(ABC):
    """
    Транспорт: send(call, timeout) -> TransportResponse.

    Ошибки сети должны подниматься как TransportError с флагом temporary.
    """

    @abstractmethod
    def send(self, call: PreparedCall, timeout: float) -> TransportResponse:
        """Выполнить один обмен запрос/ответ."""

    def close(self) -> None:
        """Освободить ресурсы транспорта."""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# REQUESTS TRANSPORT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class _RejectAllCookies(DefaultCookiePolicy):
    """Сессия не накапливает cookies между вызовами."""

    def set_ok(self, cookie, request):
        return False


class RequestsTransportResponse(TransportResponse):
    """Обертка над requests.Response в режиме stream."""

    def __init__(self, response: requests.Response):
        self._response = response
        self.status_code = response.status_code
        self.reason = response.reason or ""
        self.headers = response.headers

    @property
    def cookies(self) -> List[Tuple[str, str]]:
        return [(cookie.name, cookie.value) for cookie in self._response.cookies]

    def iter_raw(self, chunk_size: int = 8192) -> Iterator[bytes]:
        url = self._response.url
        try:
            for chunk in self._response.raw.stream(chunk_size, decode_content=False):
                if chunk:
                    yield chunk
        except urllib3.exceptions.ReadTimeoutError as e:
            raise classify_requests_exception(requests.exceptions.ReadTimeout(str(e)), url) from e
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(f"read response body: {e}", url) from e

    def close(self) -> None:
        self._response.close()


class RequestsTransport(Transport):
    """
    Транспорт на базе requests.

    Features:
        - Connection pooling (HTTPAdapter, параметры из PoolConfig)
        - Thread-safe: каждый поток получает собственную сессию
        - Cookies не сохраняются между вызовами (если persist_cookies=False)
        - Accept-Encoding перечисляет только кодировки, которые снимает клиент

    Example:
        >>> transport = RequestsTransport(PoolConfig(pool_maxsize=20))
        >>> client = HTTPClient(ClientConfig(transport=transport))
    """

    def __init__(
        self,
        pool: Optional[PoolConfig] = None,
        follow_redirects: bool = True,
        persist_cookies: bool = False,
    ):
        self.pool = pool or PoolConfig()
        self.follow_redirects = follow_redirects
        self.persist_cookies = persist_cookies
        self._session_manager = ThreadSafeSessionManager(session_factory=self._create_session)

    def _create_session(self) -> requests.Session:
        """Create configured session."""
        session = requests.Session()

        adapter = HTTPAdapter(
            pool_connections=self.pool.pool_connections,
            pool_maxsize=self.pool.pool_maxsize,
            max_retries=0  # Ретраи через Retrier
        )
        session.mount('http://', adapter)
        session.mount('https://', adapter)
        session.max_redirects = self.pool.max_redirects
        # requests добавляет br/zstd, если установлены brotli/zstandard
        session.headers["Accept-Encoding"] = ACCEPT_ENCODING

        if not self.persist_cookies:
            session.cookies.set_policy(_RejectAllCookies())

        return session

    @property
    def session(self) -> requests.Session:
        """Thread-local сессия текущего потока."""
        return self._session_manager.get_session()

    def send(self, call: PreparedCall, timeout: float) -> TransportResponse:
        url = call.url
        try:
            response = self.session.request(
                method=call.method,
                url=url,
                data=call.body or None,
                headers=dict(call.headers),
                timeout=timeout,
                allow_redirects=self.follow_redirects,
                stream=True,
            )
        except requests.exceptions.RequestException as e:
            raise classify_requests_exception(e, url, timeout) from e
        except (ValueError, UnicodeError) as e:
            # Невалидный заголовок или URL, который requests не смог подготовить
            raise classify_requests_exception(requests.exceptions.InvalidURL(str(e)), url) from e

        return RequestsTransportResponse(response)

    def close(self) -> None:
        self._session_manager.close_all()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# LOGGING DECORATOR
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class LoggingTransport(Transport):
    """
    Декоратор транспорта: пишет debug-событие "do request" перед отправкой.

    Example:
        >>> transport = LoggingTransport(RequestsTransport(), logger)
    """

    def __init__(self, transport: Transport, logger, max_body_log: int = 4096):
        self.transport = transport
        self.logger = logger
        self.max_body_log = max_body_log

    def send(self, call: PreparedCall, timeout: float) -> TransportResponse:
        log_request(self.logger, call, timeout, self.max_body_log)
        return self.transport.send(call, timeout)

    def close(self) -> None:
        self.transport.close()


def log_request(logger, call: PreparedCall, timeout: float, max_body_log: int) -> None:
    """Событие "do request" (debug); ошибки логирования не влияют на вызов."""
    try:
        body = call.body[:max_body_log].decode("utf-8", errors="replace")
        logger.debug(
            "do request",
            method=call.method,
            url=call.url,
            body=body,
            timeout=timeout,
        )
    except Exception:
        pass
