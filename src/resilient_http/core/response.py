# src/resilient_http/core/response.py
"""
Обработка ответа: проверка статуса, распаковка, кодировка, приемники байтов.
"""

import os
import zlib
from email.message import Message
from typing import Any, BinaryIO, Iterable, Mapping, Optional, Tuple, Union

from .exceptions import DecodeError, DecompressionBombError, HTTPError, SinkError

DEFAULT_CHARSET = "utf-8"

# Кодировки Content-Encoding, которые клиент снимает сам.
# Accept-Encoding запросов перечисляет только их
GZIP_ENCODINGS = {"gzip", "x-gzip"}
DEFLATE_ENCODINGS = {"deflate"}
IDENTITY_ENCODINGS = {"", "identity"}
ACCEPT_ENCODING = "gzip, deflate"


def check_status(status_code: int, status_text: str, url: str) -> None:
    """
    Raises:
        HTTPError: статус вне диапазона 200-299
    """
    if status_code < 200 or status_code >= 300:
        raise HTTPError(status_code, status_text, url)


def content_encoding(headers: Mapping[str, str]) -> str:
    """Последняя примененная кодировка из Content-Encoding (в нижнем регистре)."""
    value = headers.get("Content-Encoding") or ""
    codings = [c.strip().lower() for c in value.split(",") if c.strip()]
    return codings[-1] if codings else ""


def _inflate(data: bytes, wbits: int, max_size: Optional[int], url: str, name: str,
             members: bool = False) -> bytes:
    """
    Распаковать поток zlib порциями, не выходя за max_size байт.

    members=True продолжает распаковку склеенных gzip-членов.
    """
    out = bytearray()
    while data:
        inflater = zlib.decompressobj(wbits)
        # max_length=0 снимает ограничение
        budget = max_size + 1 - len(out) if max_size else 0
        out += inflater.decompress(data, budget)
        if max_size and len(out) > max_size:
            raise DecompressionBombError(len(data), max_size, url)
        if not inflater.eof:
            raise DecodeError(f"read {name} body: truncated data (url: {url})")
        if not members:
            break
        # gzip допускает нулевое выравнивание после последнего члена
        data = inflater.unused_data.lstrip(b"\x00")
    return bytes(out)


def decompress(data: bytes, encoding: str, url: str = "", max_size: Optional[int] = None) -> bytes:
    """
    Снять сжатие с тела ответа.

    Сервер может прислать gzip даже если клиент не просил сжатия,
    поэтому распаковка выполняется по заголовку ответа.

    Args:
        data: Сырое тело
        encoding: Значение content_encoding()
        url: URL (для сообщения об ошибке)
        max_size: Предел распакованного размера в байтах (None - без предела)

    Raises:
        DecompressionBombError: распакованное тело больше max_size
        DecodeError: данные повреждены или кодировка не поддерживается
    """
    if encoding in IDENTITY_ENCODINGS or not data:
        return data

    if encoding in GZIP_ENCODINGS:
        try:
            return _inflate(data, 16 + zlib.MAX_WBITS, max_size, url, "gzip", members=True)
        except zlib.error as e:
            raise DecodeError(f"read gzip body: {e} (url: {url})") from e

    if encoding in DEFLATE_ENCODINGS:
        # deflate встречается и с zlib-оберткой, и "сырым"
        for wbits in (zlib.MAX_WBITS, -zlib.MAX_WBITS):
            try:
                return _inflate(data, wbits, max_size, url, "deflate")
            except zlib.error:
                continue
        raise DecodeError(f"read deflate body: invalid data (url: {url})")

    raise DecodeError(f"unsupported content encoding {encoding!r} (url: {url})")


def charset_of(headers: Mapping[str, str]) -> str:
    """
    Charset из Content-Type, по умолчанию utf-8.

    Example:
        >>> charset_of({"Content-Type": "text/html; charset=ISO-8859-1"})
        'iso-8859-1'
    """
    content_type = headers.get("Content-Type")
    if not content_type:
        return DEFAULT_CHARSET
    message = Message()
    message["Content-Type"] = content_type
    return message.get_content_charset() or DEFAULT_CHARSET


def decode_text(data: bytes, headers: Mapping[str, str], url: str = "") -> str:
    """
    Декодировать тело в строку по charset ответа.

    Raises:
        DecodeError: неизвестная кодировка или невалидные байты
    """
    charset = charset_of(headers)
    try:
        return data.decode(charset)
    except LookupError as e:
        raise DecodeError(f"unknown response charset {charset!r} (url: {url})") from e
    except UnicodeDecodeError as e:
        raise DecodeError(f"decode response body as {charset}: {e} (url: {url})") from e


def format_cookies(cookies: Iterable[Tuple[str, str]]) -> str:
    """
    Cookies в формате для логов.

    Example:
        >>> format_cookies([("a", "1"), ("b", "2")])
        'a=1|b=2'
    """
    return "|".join(f"{name}={value}" for name, value in cookies)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BYTE SINKS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

Destination = Union[str, "os.PathLike[str]", BinaryIO]


class ByteSink:
    """
    Приемник скачиваемых байтов.

    Путь: файл создается (обрезается) на каждой попытке, при неудаче
    частичный файл удаляется. Файловый объект: если он seekable,
    каждая попытка начинает запись с исходной позиции.

    Example:
        >>> sink = ByteSink("/tmp/out.bin")
        >>> sink.begin()
        >>> sink.write(b"data")
        >>> sink.commit()
    """

    def __init__(self, destination: Destination):
        self.destination = destination
        self._is_path = isinstance(destination, (str, os.PathLike))
        self._file: Optional[BinaryIO] = None
        self._start: Optional[int] = None
        self.written = 0

        if not self._is_path:
            if not hasattr(destination, "write"):
                raise SinkError(f"download destination must be a path or a binary file object, got {destination!r}")
            try:
                if destination.seekable():
                    self._start = destination.tell()
            except (AttributeError, OSError):
                self._start = None

    @property
    def rewindable(self) -> bool:
        return self._is_path or self._start is not None

    def begin(self) -> None:
        """Подготовить приемник к новой попытке."""
        if self.written and not self.rewindable:
            raise SinkError("cannot retry download: destination is not seekable and already holds partial data")
        self.written = 0
        try:
            if self._is_path:
                self._file = open(self.destination, "wb")
            else:
                self._file = self.destination
                if self._start is not None:
                    self._file.seek(self._start)
                    self._file.truncate()
        except OSError as e:
            raise SinkError(f"create download file: {e}") from e

    def write(self, chunk: bytes) -> None:
        try:
            self._file.write(chunk)
        except OSError as e:
            raise SinkError(f"copy response data to download file: {e}") from e
        self.written += len(chunk)

    def commit(self) -> None:
        """Попытка завершилась успешно."""
        try:
            if self._is_path and self._file is not None:
                self._file.close()
            elif self._file is not None and hasattr(self._file, "flush"):
                self._file.flush()
        except OSError as e:
            raise SinkError(f"close download file: {e}") from e
        finally:
            if self._is_path:
                self._file = None

    def abort(self) -> None:
        """Попытка упала: закрыть и удалить частичный файл."""
        if self._is_path:
            if self._file is not None:
                self._file.close()
                self._file = None
            if os.path.exists(self.destination):
                os.remove(self.destination)


class Progress:
    """Прогресс-бар загрузки (tqdm, если установлен)."""

    def __init__(self, total: int, enabled: bool):
        self._bar: Any = None
        if enabled:
            try:
                from tqdm import tqdm
                self._bar = tqdm(total=total or None, unit='B', unit_scale=True)
            except ImportError:
                self._bar = None

    def update(self, n: int) -> None:
        if self._bar is not None:
            self._bar.update(n)

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()


def parse_content_length(headers: Mapping[str, str]) -> int:
    try:
        return int(headers.get("Content-Length") or 0)
    except ValueError:
        return 0

