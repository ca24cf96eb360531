# src/resilient_http/core/codec_client.py
"""
JSONClient и XMLClient - обертки над HTTPClient, говорящие на JSON/XML.

Тело запроса кодируется кодеком, Content-Type выставляется принудительно
(опция добавляется после опций вызова), ответ декодируется в result_type.
"""

from typing import Any, Optional, Type, TypeVar

from .codecs import JSON_CODEC, XML_CODEC, Codec
from .config import ClientConfig
from .context import Context
from .exceptions import DecodeError, EncodeError
from .http_client import HTTPClient
from .options import RequestOption

T = TypeVar("T")


class CodecClient:
    """
    Базовая обертка: HTTPClient + Codec.

    Verbs: get/post/put/patch/delete/head/options(url, body=None, result_type=None, *options, ctx=None)

    Example:
        >>> client = JSONClient(HTTPClient(config))
        >>> reply = client.post(url, {"name": "x"}, Reply)
        >>> reply.errno
        0
    """

    codec: Codec

    def __init__(self, client: Optional[HTTPClient] = None, config: Optional[ClientConfig] = None,
                 codec: Optional[Codec] = None):
        """
        Args:
            client: HTTPClient; если не указан, создается из config
            config: ClientConfig для нового клиента
            codec: Свой кодек вместо кодека класса
        """
        if client is None:
            client = HTTPClient(config)
        self.client = client
        if codec is not None:
            self.codec = codec

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        self.client.close()

    def get(self, url: str, body: Any = None, result_type: Optional[Type[T]] = None,
            *options: RequestOption, ctx: Optional[Context] = None) -> Optional[T]:
        return self.do("GET", url, body, result_type, *options, ctx=ctx)

    def post(self, url: str, body: Any = None, result_type: Optional[Type[T]] = None,
             *options: RequestOption, ctx: Optional[Context] = None) -> Optional[T]:
        return self.do("POST", url, body, result_type, *options, ctx=ctx)

    def put(self, url: str, body: Any = None, result_type: Optional[Type[T]] = None,
            *options: RequestOption, ctx: Optional[Context] = None) -> Optional[T]:
        return self.do("PUT", url, body, result_type, *options, ctx=ctx)

    def patch(self, url: str, body: Any = None, result_type: Optional[Type[T]] = None,
              *options: RequestOption, ctx: Optional[Context] = None) -> Optional[T]:
        return self.do("PATCH", url, body, result_type, *options, ctx=ctx)

    def delete(self, url: str, body: Any = None, result_type: Optional[Type[T]] = None,
               *options: RequestOption, ctx: Optional[Context] = None) -> Optional[T]:
        return self.do("DELETE", url, body, result_type, *options, ctx=ctx)

    def head(self, url: str, body: Any = None, result_type: Optional[Type[T]] = None,
             *options: RequestOption, ctx: Optional[Context] = None) -> Optional[T]:
        return self.do("HEAD", url, body, result_type, *options, ctx=ctx)

    def options(self, url: str, body: Any = None, result_type: Optional[Type[T]] = None,
                *options: RequestOption, ctx: Optional[Context] = None) -> Optional[T]:
        return self.do("OPTIONS", url, body, result_type, *options, ctx=ctx)

    def do(self, method: str, url: str, body: Any = None, result_type: Optional[Type[T]] = None,
           *options: RequestOption, ctx: Optional[Context] = None) -> Optional[T]:
        """
        Закодировать body, выполнить запрос и декодировать ответ.

        Args:
            method: HTTP метод
            url: URL
            body: Значение для кодирования (None - пустое тело)
            result_type: Тип результата (None - ответ не декодируется)
            *options: Опции вызова
            ctx: Контекст

        Returns:
            Значение result_type или None (нет result_type или пустой ответ)

        Raises:
            EncodeError: body не кодируется (запрос не отправляется)
            DecodeError: ответ не подходит под result_type
            (и ошибки HTTPClient.do)
        """
        data = self.encode(body)
        options = options + (self.codec.content_type_option(),)

        raw = self.client.do_bytes(method, url, data, *options, ctx=ctx)

        if result_type is None or not raw:
            return None
        return self.decode(raw, result_type)

    def encode(self, body: Any) -> bytes:
        if body is None:
            return b""
        try:
            return self.codec.encode(body)
        except EncodeError as e:
            self.client.emit("error", "marshal request body", error=e)
            raise

    def decode(self, data: bytes, result_type: Any) -> Any:
        try:
            return self.codec.decode(data, result_type)
        except DecodeError as e:
            self.client.emit("error", "unmarshal response body", error=e)
            raise


class JSONClient(CodecClient):
    """
    Клиент, который говорит на JSON.

    Example:
        >>> with JSONClient(config=ClientConfig.create(timeout=5)) as client:
        ...     user = client.get("https://api.example.com/users/1", None, User)
    """

    codec = JSON_CODEC


class XMLClient(CodecClient):
    """Клиент, который говорит на XML (Content-Type: application/xml)."""

    codec = XML_CODEC
