"""
Pytest configuration and fixtures for resilient-http tests.
"""

import logging
from typing import Dict, Iterator, List, Optional

import pytest
import responses as responses_lib

from resilient_http.core.config import ClientConfig
from resilient_http.core.http_client import HTTPClient
from resilient_http.core.logging.config import LoggingConfig
from resilient_http.core.options import PreparedCall
from resilient_http.core.transport import Transport, TransportResponse


class FakeResponse(TransportResponse):
    """TransportResponse из памяти."""

    def __init__(self, status_code: int = 200, body: bytes = b"", headers: Optional[Dict[str, str]] = None,
                 reason: str = "", cookies=None):
        self.status_code = status_code
        self.reason = reason
        self.headers = headers or {}
        self._body = body
        self._cookies = list(cookies or [])
        self.closed = False

    @property
    def cookies(self):
        return self._cookies

    def iter_raw(self, chunk_size: int = 8192) -> Iterator[bytes]:
        for i in range(0, len(self._body), chunk_size):
            yield self._body[i:i + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeTransport(Transport):
    """
    Транспорт по сценарию: каждый элемент - исключение или FakeResponse.

    Последний элемент повторяется, если попыток больше, чем сценарий.
    """

    def __init__(self, *script):
        self.script = list(script) or [FakeResponse()]
        self.calls: List[Dict] = []
        self.responses: List[FakeResponse] = []
        self.closed = False

    def send(self, call: PreparedCall, timeout: float) -> TransportResponse:
        self.calls.append({
            "method": call.method,
            "url": call.url,
            "headers": dict(call.headers),
            "body": call.body,
            "timeout": timeout,
        })
        item = self.script[min(len(self.calls), len(self.script)) - 1]
        if isinstance(item, BaseException):
            raise item
        self.responses.append(item)
        return item

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def base_url():
    """Base URL for testing."""
    return "https://api.example.com"


@pytest.fixture
def mock_responses():
    """Mock HTTP responses using responses library."""
    with responses_lib.RequestsMock() as rsps:
        yield rsps


@pytest.fixture
def client():
    """HTTP client instance for testing."""
    client = HTTPClient(timeout=10)
    yield client
    client.close()


@pytest.fixture
def retry_client():
    """Client with three zero-delay retries."""
    client = HTTPClient(ClientConfig.create(timeout=10, backoffs=[0, 0, 0]))
    yield client
    client.close()


@pytest.fixture
def fake_transport():
    """Factory: fake_transport(FakeResponse(...), ConnectionError(...), ...)."""
    return FakeTransport


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def logging_config():
    return LoggingConfig.create(
        level="DEBUG",
        enable_console=True,
        enable_file=False
    )


@pytest.fixture
def logging_config_with_file(tmp_path):
    """
    LoggingConfig fixture with file logging enabled.

    Uses temporary directory for log files to avoid cleanup issues.
    """
    log_file = tmp_path / "test.log"
    return LoggingConfig.create(
        level="DEBUG",
        enable_console=False,
        enable_file=True,
        file_path=str(log_file)
    )


@pytest.fixture
def debug_logs(caplog):
    """caplog с уровнем DEBUG для логгера библиотеки."""
    caplog.set_level(logging.DEBUG, logger="resilient_http")
    return caplog
