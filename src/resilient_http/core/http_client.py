# src/resilient_http/core/http_client.py
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING
import contextvars
import os
import time
from concurrent.futures import ThreadPoolExecutor

from .config import ClientConfig
from .context import Context, background
from .exceptions import (
    CancelledError,
    ConfigurationError,
    HTTPClientException,
    HTTPError,
)
from .logging import HTTPClientLogger, reset_log_fields, set_log_fields
from .options import PreparedCall, RequestOption, apply_options, set_header_default
from .response import (
    ByteSink,
    Destination,
    Progress,
    check_status,
    content_encoding,
    decode_text,
    decompress,
    format_cookies,
    parse_content_length,
)
from .retry_engine import run_cancellable
from .transport import LoggingTransport, RequestsTransport, Transport, TransportResponse

# Delayed import to avoid circular dependency
if TYPE_CHECKING:
    from .codec_client import JSONClient, XMLClient

Body = Any  # str | bytes | bytearray | None

# consume(call, response) -> (value, поля для события "request success")
Consumer = Callable[[PreparedCall, TransportResponse], Tuple[Any, Dict[str, Any]]]

EMIT_LEVELS = ("debug", "info", "warning", "error")


def to_body_bytes(body: Body) -> bytes:
    """
    Тело вызова в bytes (str кодируется в UTF-8, None - пустое тело).

    Raises:
        TypeError: тело не str, bytes, bytearray или None
    """
    if body is None:
        return b""
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    raise TypeError(f"request body must be str, bytes or None, got {type(body).__name__}")


def preview(data: bytes, limit: int) -> str:
    """Тело для логов: текст, обрезанный до limit байт."""
    text = data[:limit].decode("utf-8", errors="replace")
    if len(data) > limit:
        text += f"...({len(data)} bytes)"
    return text


def describe_destination(destination: Destination) -> str:
    if isinstance(destination, (str, os.PathLike)):
        return os.fspath(destination)
    return getattr(destination, "name", None) or repr(destination)


class CallState:
    """
    Состояние одного логического вызова между попытками.

    Первая рабочая копия запроса строится до цикла попыток (опции
    проверяются до любого I/O) и отдается первой попытке; следующие
    попытки получают свежие копии.
    """

    def __init__(self, client: 'BaseHTTPClient', method: str, url: str, body: bytes,
                 options: Tuple[RequestOption, ...], ctx: Context):
        self.client = client
        self.method = method
        self.url = url
        self.body = body
        self.options = options
        self.ctx = ctx
        self._first: List[PreparedCall] = [client._prepare(method, url, body, options)]

    @property
    def first_call(self) -> Optional[PreparedCall]:
        return self._first[0] if self._first else None

    def next_call(self) -> PreparedCall:
        if self._first:
            return self._first.pop()
        return self.client._prepare(self.method, self.url, self.body, self.options)

    def timeout_for(self, call: PreparedCall) -> float:
        """Таймаут попытки: таймаут вызова или клиента, не дальше дедлайна."""
        return self.ctx.bound_timeout(call.timeout or self.client.config.timeout)


class BaseHTTPClient:
    """
    Общая часть sync и async клиентов: конфиг, логгер, подготовка вызова,
    события логов. Сетевую часть реализуют наследники.
    """

    def __init__(self, config: Optional[ClientConfig] = None, **kwargs):
        """
        Args:
            config: ClientConfig; если не указан, создается ClientConfig.create(**kwargs)
            **kwargs: Параметры ClientConfig.create (только без config)
        """
        if config is None:
            config = ClientConfig.create(**kwargs)
        elif kwargs:
            raise ConfigurationError("pass either config or keyword parameters, not both")

        logger = HTTPClientLogger(config.logging)
        transport, owns_transport = self._create_transport(config, logger)

        # Immutable fields
        object.__setattr__(self, '_config', config)
        object.__setattr__(self, '_logger', logger)
        object.__setattr__(self, '_owns_transport', owns_transport)
        object.__setattr__(self, '_transport', transport)
        object.__setattr__(self, '_initialized', True)

    def _create_transport(self, config: ClientConfig, logger: HTTPClientLogger) -> Tuple[Any, bool]:
        """Вернуть (транспорт, клиент_владеет_транспортом)."""
        raise NotImplementedError

    def __setattr__(self, name, value):
        """Запретить изменение после init (immutability)."""
        if hasattr(self, '_initialized'):
            raise RuntimeError(
                f"Cannot modify '{name}' - {type(self).__name__} is immutable. "
                f"Create new instance instead."
            )
        object.__setattr__(self, name, value)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def logger(self) -> HTTPClientLogger:
        return self._logger

    # ==================== Call preparation ====================

    def _prepare(self, method: str, url: str, body: bytes, options: Tuple[RequestOption, ...]) -> PreparedCall:
        """Свежая рабочая копия запроса с примененными опциями."""
        call = PreparedCall(method, url, body)
        return apply_options(call, self._config.default_options + tuple(options))

    def _begin(self, method: str, url: str, body: bytes, options: Tuple[RequestOption, ...],
               ctx: Optional[Context], **log_fields: Any) -> Tuple[CallState, contextvars.Token]:
        """
        Подготовить вызов: проверить опции, собрать поля логов вызова.

        Raises:
            OptionError: опция упала
            CancelledError: контекст уже отменен
        """
        ctx = ctx or background()
        ctx.raise_if_done()
        state = CallState(self, method, url, body, tuple(options), ctx)
        call = state.first_call

        fields = self._log_context(ctx, call).fields
        fields.setdefault("method", call.method)
        fields.setdefault("url", call.url)
        if log_fields:
            fields.update(log_fields)
        else:
            fields.setdefault("body", preview(body, self._logger.max_logged_body))
        return state, set_log_fields(fields)

    @staticmethod
    def _end(token: contextvars.Token) -> None:
        reset_log_fields(token)

    def _decode_body(self, call: PreparedCall, headers, data: bytes) -> bytes:
        if self._config.decompress:
            data = decompress(data, content_encoding(headers), call.url,
                              max_size=self._config.max_decompressed_size)
        return data

    # ==================== Log events ====================

    def _log_context(self, ctx: Context, call: PreparedCall) -> Context:
        """Вызвать log_context_func; при ошибке остается исходный контекст."""
        func = self._config.log_context_func
        if func is None:
            return ctx
        try:
            enriched = func(ctx, call)
            if not isinstance(enriched, Context):
                raise TypeError(f"log_context_func must return Context, got {type(enriched).__name__}")
            return enriched
        except Exception as e:
            self.emit("error", "log context func failed", error=e)
            return ctx

    def _log_failure(self, error: BaseException, begin: float) -> None:
        if isinstance(error, CancelledError) or not isinstance(error, HTTPClientException):
            return
        message = "bad http status code" if isinstance(error, HTTPError) else "request failed"
        self.emit("error", message, error=error, proc_time=self._since(begin))

    def _log_success(self, begin: float, cookies: str, fields: Dict[str, Any]) -> None:
        self.emit("debug", "request success", set_cookies=cookies, proc_time=self._since(begin), **fields)

    def _log_retry(self, attempt: int, error: BaseException, delay: float) -> None:
        self.emit("warning", "will retry", attempt=attempt, delay=round(delay, 3), error=error)

    def emit(self, level: str, message: str, **fields: Any) -> None:
        """
        Записать событие в лог клиента вместе с полями текущего вызова.

        Для оберток над клиентом (codec clients и т.п.). Ошибки
        логирования не влияют на вызов.

        Args:
            level: "debug", "info", "warning" или "error"
            message: Текст события
            **fields: Поля события

        Example:
            >>> client.emit("error", "marshal request body", error=err)

        Raises:
            ValueError: неизвестный level
        """
        if level not in EMIT_LEVELS:
            raise ValueError(f"unknown log level {level!r}")
        try:
            getattr(self._logger, level)(message, **fields)
        except Exception:
            pass

    def _truncate(self, text: str) -> str:
        limit = self._logger.max_logged_body
        return text if len(text) <= limit else text[:limit] + f"...({len(text)} chars)"

    @staticmethod
    def _since(begin: float) -> float:
        return round(time.monotonic() - begin, 6)


class HTTPClient(BaseHTTPClient):
    """
    HTTP клиент с повторами, распаковкой ответов и логированием.

    Каждый вызов проходит конвейер:
        опции (дефолтные, затем вызова) -> попытка через транспорт ->
        классификация ошибки -> ожидание и повтор -> декодирование ответа

    Features:
        - Повторы по классификатору (RetryConfig), прерываемые отменой Context
        - Отмена Context прерывает и попытку, ждущую сеть
        - gzip/deflate ответы распаковываются даже без Accept-Encoding
        - Structured logging каждого вызова (поля из Context и log_context_func)
        - Immutable после создания, можно использовать из нескольких потоков

    Example:
        >>> config = ClientConfig.create(timeout=5, backoffs=[0.1, 0.5])
        >>> with HTTPClient(config) as client:
        ...     text = client.get("https://api.example.com/hello", "", set_query({"name": "world"}))
    """

    def __init__(self, config: Optional[ClientConfig] = None, **kwargs):
        super().__init__(config, **kwargs)
        # Попытки с отменяемым контекстом идут здесь, вызывающий поток ждет результат или отмену
        executor = ThreadPoolExecutor(
            max_workers=self._config.pool.pool_maxsize,
            thread_name_prefix="resilient-http",
        )
        object.__setattr__(self, '_executor', executor)

    def _create_transport(self, config: ClientConfig, logger: HTTPClientLogger) -> Tuple[Transport, bool]:
        transport: Transport = config.transport
        owns_transport = transport is None
        if owns_transport:
            transport = RequestsTransport(pool=config.pool, follow_redirects=config.follow_redirects)
        return LoggingTransport(transport, logger, logger.max_logged_body), owns_transport

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        """
        Освободить ресурсы: хендлеры логгера, рабочие потоки и соединения
        встроенного транспорта.

        Транспорт, переданный через ClientConfig, закрывает владелец.
        """
        self._logger.close()
        self._executor.shutdown(wait=False)
        if self._owns_transport:
            self._transport.close()

    # ==================== Codec wrappers ====================

    def json(self) -> 'JSONClient':
        """
        JSON обертка над этим клиентом.

        Example:
            >>> reply = client.json().post(url, {"name": "x"}, Reply)
        """
        from .codec_client import JSONClient
        return JSONClient(self)

    def xml(self) -> 'XMLClient':
        """XML обертка над этим клиентом."""
        from .codec_client import XMLClient
        return XMLClient(self)

    # ==================== Verbs ====================

    def get(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        """
        GET запрос.

        Example:
            >>> client.get("https://api.example.com/users", "", set_query({"page": "2"}))
        """
        return self.do("GET", url, body, *options, ctx=ctx)

    def post(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        """
        POST запрос.

        Example:
            >>> client.post(url, "hello=world", set_type_form())
        """
        return self.do("POST", url, body, *options, ctx=ctx)

    def put(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return self.do("PUT", url, body, *options, ctx=ctx)

    def patch(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return self.do("PATCH", url, body, *options, ctx=ctx)

    def delete(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return self.do("DELETE", url, body, *options, ctx=ctx)

    def head(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return self.do("HEAD", url, body, *options, ctx=ctx)

    def options(self, url: str, body: Body = "", *options: RequestOption, ctx: Optional[Context] = None) -> str:
        return self.do("OPTIONS", url, body, *options, ctx=ctx)

    def do(self, method: str, url: str, body: Body = "", *options: RequestOption,
           ctx: Optional[Context] = None) -> str:
        """
        Выполнить запрос с произвольным методом и вернуть тело ответа как текст.

        Args:
            method: HTTP метод
            url: Полный URL
            body: Тело (str, bytes или None)
            *options: Опции вызова (применяются после дефолтных)
            ctx: Контекст отмены и полей логов

        Returns:
            Тело ответа, декодированное по charset из Content-Type (по умолчанию UTF-8)

        Raises:
            OptionError: опция упала (до сетевого вызова)
            TransportError: сетевая ошибка последней попытки
            HTTPError: статус вне 200-299
            DecodeError: поврежденное сжатие или невалидная кодировка
            CancelledError: контекст отменен или дедлайн наступил
        """
        def consume(call: PreparedCall, response: TransportResponse):
            text = decode_text(self._read_body(call, response), response.headers, call.url)
            return text, {"result": self._truncate(text)}

        return self._execute(method, url, to_body_bytes(body), options, ctx, consume)

    def do_bytes(self, method: str, url: str, body: Body = "", *options: RequestOption,
                 ctx: Optional[Context] = None) -> bytes:
        """Как do(), но возвращает тело ответа в bytes (после распаковки)."""
        def consume(call: PreparedCall, response: TransportResponse):
            data = self._read_body(call, response)
            return data, {"result": preview(data, self._logger.max_logged_body)}

        return self._execute(method, url, to_body_bytes(body), options, ctx, consume)

    def download_file(
        self,
        url: str,
        destination: Destination,
        *options: RequestOption,
        ctx: Optional[Context] = None,
        chunk_size: int = 8192,
        show_progress: bool = False,
    ) -> int:
        """
        Скачать ответ GET запроса в файл, не держа его в памяти.

        Тело пишется как пришло: Content-Encoding здесь не снимается, поэтому
        запрос просит Accept-Encoding: identity (опция вызова может его заменить).

        Args:
            url: URL
            destination: Путь к файлу или бинарный файловый объект
            *options: Опции вызова
            ctx: Контекст отмены (проверяется между чанками)
            chunk_size: Размер чанка
            show_progress: Показать прогресс (требует tqdm)

        Returns:
            Количество записанных байт

        Raises:
            SinkError: ошибка записи (не повторяется)
            (и те же ошибки, что do())

        Example:
            >>> size = client.download_file("https://example.com/big.zip", "big.zip")
        """
        ctx = ctx or background()
        sink = ByteSink(destination)

        def consume(call: PreparedCall, response: TransportResponse):
            check_status(response.status_code, response.status_text, call.url)
            sink.begin()
            progress = Progress(parse_content_length(response.headers), show_progress)
            try:
                for chunk in response.iter_raw(chunk_size):
                    ctx.raise_if_done()
                    sink.write(chunk)
                    progress.update(len(chunk))
                sink.commit()
            except BaseException:
                sink.abort()
                raise
            finally:
                progress.close()
            return sink.written, {"file_size": sink.written}

        options = options + (set_header_default("Accept-Encoding", "identity"),)
        return self._execute("GET", url, b"", options, ctx, consume,
                             out_file=describe_destination(destination))

    # ==================== Pipeline ====================

    def _execute(
        self,
        method: str,
        url: str,
        body: bytes,
        options: Tuple[RequestOption, ...],
        ctx: Optional[Context],
        consume: Consumer,
        **log_fields: Any,
    ) -> Any:
        state, token = self._begin(method, url, body, options, ctx, **log_fields)
        try:
            return self._config.build_retrier().run(
                lambda: self._attempt(state, consume),
                state.ctx,
                on_retry=self._log_retry,
            )
        finally:
            self._end(token)

    def _attempt(self, state: CallState, consume: Consumer) -> Any:
        call = state.next_call()
        timeout = state.timeout_for(call)
        begin = time.monotonic()

        def exchange():
            return self._exchange(state.ctx, call, timeout, consume)

        try:
            if state.ctx.cancellable:
                value, cookies, success_fields = run_cancellable(state.ctx, self._executor, exchange)
            else:
                value, cookies, success_fields = exchange()
        except Exception as e:
            self._log_failure(e, begin)
            raise

        self._log_success(begin, cookies, success_fields)
        return value

    def _exchange(self, ctx: Context, call: PreparedCall, timeout: float,
                  consume: Consumer) -> Tuple[Any, str, Dict[str, Any]]:
        """Отправить запрос и прочитать ответ. Отмена ctx закрывает ответ."""
        ctx.raise_if_done()
        with self._transport.send(call, timeout) as response:
            unregister = ctx.on_cancel(response.close)
            try:
                value, success_fields = consume(call, response)
            except Exception:
                # чтение оборвано закрытием ответа
                ctx.raise_if_done()
                raise
            finally:
                unregister()
            return value, format_cookies(response.cookies), success_fields

    def _read_body(self, call: PreparedCall, response: TransportResponse) -> bytes:
        check_status(response.status_code, response.status_text, call.url)
        return self._decode_body(call, response.headers, response.read_raw())
