# src/resilient_http/async_client.py
"""
Асинхронный HTTP клиент на базе httpx.

Тот же конвейер, что у HTTPClient (опции, повторы, распаковка, логи),
но попытки и ожидания выполняются корутинами. Каждая попытка
дополнительно "гоняется" с сигналом отмены Context: отмена прерывает
запрос, не дожидаясь таймаута.
"""

import os
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

import aiofiles
import aiofiles.os
import httpx

from .core.config import ClientConfig, PoolConfig
from .core.context import Context, background
from .core.exceptions import SinkError, classify_httpx_exception
from .core.http_client import BaseHTTPClient, Body, CallState, describe_destination, preview, to_body_bytes
from .core.logging import HTTPClientLogger
from .core.options import PreparedCall, RequestOption, set_header_default
from .core.response import (
    ACCEPT_ENCODING,
    ByteSink,
    Destination,
    Progress,
    check_status,
    decode_text,
    format_cookies,
    parse_content_length,
)
from .core.retry_engine import race_cancel
from .core.transport import log_request

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ASYNC TRANSPORT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class AsyncTransportResponse(ABC):
    """Async-ответ транспорта с непрочитанным "сырым" телом."""

    status_code: int
    reason: str
    headers: Mapping[str, str]

    @property
    def status_text(self) -> str:
        if self.reason:
            return f"{self.status_code} {self.reason}"
        return str(self.status_code)

    @property
    def cookies(self) -> List[Tuple[str, str]]:
        return []

    @abstractmethod
    def aiter_raw(self, chunk_size: int = 8192) -> AsyncIterator[bytes]:
        """Итерироваться по сырым байтам тела."""

    async def aread_raw(self) -> bytes:
        return b"".join([chunk async for chunk in self.aiter_raw()])

    @abstractmethod
    async def aclose(self) -> None:
        """Освободить соединение."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False


class AsyncTransport(ABC):
    """Async-аналог Transport."""

    @abstractmethod
    async def send(self, call: PreparedCall, timeout: float) -> AsyncTransportResponse:
        """
        Raises:
            TransportError: сетевая ошибка (temporary=True для временных)
        """

    async def aclose(self) -> None:
        """Закрыть соединения."""


class HttpxTransportResponse(AsyncTransportResponse):
    """Обертка над httpx.Response в режиме stream."""

    def __init__(self, response: httpx.Response):
        self._response = response
        self.status_code = response.status_code
        self.reason = response.reason_phrase or ""
        self.headers = response.headers

    @property
    def cookies(self) -> List[Tuple[str, str]]:
        return [(cookie.name, cookie.value) for cookie in self._response.cookies.jar]

    async def aiter_raw(self, chunk_size: int = 8192) -> AsyncIterator[bytes]:
        url = str(self._response.request.url)
        try:
            async for chunk in self._response.aiter_raw(chunk_size):
                if chunk:
                    yield chunk
        except httpx.HTTPError as e:
            raise classify_httpx_exception(e, url) from e

    async def aclose(self) -> None:
        await self._response.aclose()


class HttpxAsyncTransport(AsyncTransport):
    """
    Транспорт на базе httpx.AsyncClient.

    httpx.AsyncClient создается лениво (внутри event loop). Cookies
    ответа доступны в ответе, но между вызовами не сохраняются.

    Example:
        >>> transport = HttpxAsyncTransport(PoolConfig(pool_maxsize=20))
        >>> client = AsyncHTTPClient(ClientConfig(transport=transport))
    """

    def __init__(self, pool: Optional[PoolConfig] = None, follow_redirects: bool = True):
        self.pool = pool or PoolConfig()
        self.follow_redirects = follow_redirects
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Получить или создать httpx клиент."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Accept-Encoding": ACCEPT_ENCODING},
                limits=httpx.Limits(
                    max_connections=self.pool.pool_maxsize,
                    max_keepalive_connections=self.pool.pool_connections,
                ),
                follow_redirects=self.follow_redirects,
                max_redirects=self.pool.max_redirects,
            )
        return self._client

    async def send(self, call: PreparedCall, timeout: float) -> AsyncTransportResponse:
        url = call.url
        client = self._get_client()
        try:
            request = client.build_request(
                call.method,
                url,
                content=call.body or None,
                headers=dict(call.headers),
                timeout=httpx.Timeout(timeout),
            )
            response = await client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise classify_httpx_exception(e, url, timeout) from e
        except (ValueError, UnicodeError) as e:
            # Заголовок вне Latin-1 или URL, который httpx не смог подготовить
            raise classify_httpx_exception(httpx.InvalidURL(str(e)), url) from e
        finally:
            client.cookies.clear()

        return HttpxTransportResponse(response)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class AsyncLoggingTransport(AsyncTransport):
    """Декоратор async транспорта: debug-событие "do request" перед отправкой."""

    def __init__(self, transport: AsyncTransport, logger: HTTPClientLogger, max_body_log: int = 4096):
        self.transport = transport
        self.logger = logger
        self.max_body_log = max_body_log

    async def send(self, call: PreparedCall, timeout: float) -> AsyncTransportResponse:
        log_request(self.logger, call, timeout, self.max_body_log)
        return await self.transport.send(call, timeout)

    async def aclose(self) -> None:
        await self.transport.aclose()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CLIENT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

AsyncConsumer = Callable[[PreparedCall, AsyncTransportResponse], Awaitable[Tuple[Any, Dict[str, Any]]]]


class AsyncHTTPClient(BaseHTTPClient):
    """
    Асинхронный HTTP клиент с повторами, распаковкой и логированием.

    Example:
        >>> async with AsyncHTTPClient(ClientConfig.create(backoffs=[0.1, 0.2])) as client:
        ...     text = await client.get("https://api.example.com/hello")

        >>> # Отмена из другой задачи
        >>> ctx, cancel = background().with_cancel()
        >>> task = asyncio.create_task(client.get(url, ctx=ctx))
        >>> cancel()   # task завершится с CancelledError
    """

    def _create_transport(self, config: ClientConfig, logger: HTTPClientLogger) -> Tuple[AsyncTransport, bool]:
        transport: AsyncTransport = config.transport
        owns_transport = transport is None
        if owns_transport:
            transport = HttpxAsyncTransport(pool=config.pool, follow_redirects=config.follow_redirects)
        return AsyncLoggingTransport(transport, logger, logger.max_logged_body), owns_transport

    async def __aenter__(self) -> "AsyncHTTPClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Закрыть клиент и освободить ресурсы."""
        self._logger.close()
        if self._owns_transport:
            await self._transport.aclose()

    # ==================== HTTP методы ====================

    async def get(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return await self.do("GET", url, body, *options, ctx=ctx)

    async def post(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return await self.do("POST", url, body, *options, ctx=ctx)

    async def put(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return await self.do("PUT", url, body, *options, ctx=ctx)

    async def patch(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return await self.do("PATCH", url, body, *options, ctx=ctx)

    async def delete(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return await self.do("DELETE", url, body, *options, ctx=ctx)

    async def head(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return await self.do("HEAD", url, body, *options, ctx=ctx)

    async def options(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return await self.do("OPTIONS", url, body, *options, ctx=ctx)

    async def do(self, method: str, url: str, body: Body = "", *options: RequestOption,
                 ctx: Optional[Context] = None) -> str:
        """Async-версия HTTPClient.do()."""
        async def consume(call: PreparedCall, response: AsyncTransportResponse):
            text = decode_text(await self._read_body(call, response), response.headers, call.url)
            return text, {"result": self._truncate(text)}

        return await self._execute(method, url, to_body_bytes(body), options, ctx, consume)

    async def do_bytes(self, method: str, url: str, body: Body = "", *options: RequestOption,
                       ctx: Optional[Context] = None) -> bytes:
        """Async-версия HTTPClient.do_bytes()."""
        async def consume(call: PreparedCall, response: AsyncTransportResponse):
            data = await self._read_body(call, response)
            return data, {"result": preview(data, self._logger.max_logged_body)}

        return await self._execute(method, url, to_body_bytes(body), options, ctx, consume)

    async def download_file(
        self,
        url: str,
        destination: Destination,
        *options: RequestOption,
        ctx: Optional[Context] = None,
        chunk_size: int = 8192,
        show_progress: bool = False,
    ) -> int:
        """
        Async-версия HTTPClient.download_file().

        Файл по пути пишется через aiofiles, чтобы не блокировать event loop;
        файловый объект пишется как есть.

        Example:
            >>> async with AsyncHTTPClient() as client:
            ...     size = await client.download_file("https://example.com/big.zip", "big.zip")
        """
        ctx = ctx or background()
        sink = AsyncByteSink(destination)

        async def consume(call: PreparedCall, response: AsyncTransportResponse):
            check_status(response.status_code, response.status_text, call.url)
            await sink.begin()
            progress = Progress(parse_content_length(response.headers), show_progress)
            try:
                async for chunk in response.aiter_raw(chunk_size):
                    ctx.raise_if_done()
                    await sink.write(chunk)
                    progress.update(len(chunk))
                await sink.commit()
            except BaseException:
                await sink.abort()
                raise
            finally:
                progress.close()
            return sink.written, {"file_size": sink.written}

        options = options + (set_header_default("Accept-Encoding", "identity"),)
        return await self._execute("GET", url, b"", options, ctx, consume,
                                   out_file=describe_destination(destination))

    # ==================== Pipeline ====================

    async def _execute(
        self,
        method: str,
        url: str,
        body: bytes,
        options: Tuple[RequestOption, ...],
        ctx: Optional[Context],
        consume: AsyncConsumer,
        **log_fields: Any,
    ) -> Any:
        state, token = self._begin(method, url, body, options, ctx, **log_fields)
        try:
            return await self._config.build_retrier().run_async(
                lambda: self._attempt(state, consume),
                state.ctx,
                on_retry=self._log_retry,
            )
        finally:
            self._end(token)

    async def _attempt(self, state: CallState, consume: AsyncConsumer) -> Any:
        call = state.next_call()
        timeout = state.timeout_for(call)
        begin = time.monotonic()
        try:
            value, success_fields, cookies = await race_cancel(
                state.ctx, self._exchange(call, timeout, consume)
            )
        except Exception as e:
            self._log_failure(e, begin)
            raise

        self._log_success(begin, cookies, success_fields)
        return value

    async def _exchange(self, call: PreparedCall, timeout: float, consume: AsyncConsumer):
        async with await self._transport.send(call, timeout) as response:
            value, success_fields = await consume(call, response)
            return value, success_fields, format_cookies(response.cookies)

    async def _read_body(self, call: PreparedCall, response: AsyncTransportResponse) -> bytes:
        check_status(response.status_code, response.status_text, call.url)
        return self._decode_body(call, response.headers, await response.aread_raw())


class AsyncByteSink(ByteSink):
    """ByteSink для async загрузки: путь открывается через aiofiles."""

    async def begin(self) -> None:
        if not self._is_path:
            super().begin()
            return
        self.written = 0
        try:
            self._file = await aiofiles.open(self.destination, "wb")
        except OSError as e:
            raise SinkError(f"create download file: {e}") from e

    async def write(self, chunk: bytes) -> None:
        if not self._is_path:
            super().write(chunk)
            return
        try:
            await self._file.write(chunk)
        except OSError as e:
            raise SinkError(f"copy response data to download file: {e}") from e
        self.written += len(chunk)

    async def commit(self) -> None:
        if not self._is_path:
            super().commit()
            return
        try:
            await self._file.close()
        except OSError as e:
            raise SinkError(f"close download file: {e}") from e
        finally:
            self._file = None

    async def abort(self) -> None:
        if not self._is_path:
            return
        if self._file is not None:
            await self._file.close()
            self._file = None
        if os.path.exists(self.destination):
            await aiofiles.os.remove(self.destination)
