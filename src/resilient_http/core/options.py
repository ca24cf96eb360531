# src/resilient_http/core/options.py
"""
Request options - функции, изменяющие запрос перед отправкой.

Опция получает PreparedCall (рабочую копию запроса) и меняет заголовки,
query или таймаут. Опции применяются по порядку: сначала дефолтные опции
клиента, затем опции конкретного вызова. Первая упавшая опция прерывает
вызов до любого сетевого I/O.
"""

from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from requests.structures import CaseInsensitiveDict

from .exceptions import OptionError

CONTENT_TYPE_JSON = "application/json; charset=UTF-8"
CONTENT_TYPE_XML = "application/xml; charset=UTF-8"
CONTENT_TYPE_FORM = "application/x-www-form-urlencoded"

_FORBIDDEN_HEADER_CHARS = ("\r", "\n", "\0")


class PreparedCall:
    """
    Рабочая копия запроса для одной попытки.

    Создается заново перед каждой попыткой из неизменяемых входных данных
    вызова, поэтому опции применяются к "чистому" запросу каждый раз.

    Attributes:
        method: HTTP метод (в верхнем регистре)
        headers: Заголовки (case-insensitive)
        query: Query параметры {key: [values]} в порядке добавления
        body: Тело запроса (bytes)
        timeout: Таймаут этого вызова (None = таймаут клиента)
    """

    def __init__(self, method: str, url: str, body: bytes = b"", timeout: Optional[float] = None):
        parts = urlsplit(url)
        self.method = method.upper()
        self.body = body
        self.timeout = timeout
        self.headers: CaseInsensitiveDict = CaseInsensitiveDict()
        self.query: Dict[str, List[str]] = parse_qs(parts.query, keep_blank_values=True)
        self._parts = parts
        self._query_modified = False

    @property
    def url(self) -> str:
        """Полный URL; query перекодируется только если его меняли опции."""
        if not self._query_modified:
            return urlunsplit(self._parts)
        return urlunsplit(self._parts._replace(query=encode_query(self.query)))

    def add_query(self, key: str, value: str) -> None:
        """Добавить значение к ключу (не заменяя существующие)."""
        self.query.setdefault(key, []).append(value)
        self._query_modified = True


RequestOption = Callable[[PreparedCall], None]


def encode_query(query: Mapping[str, Sequence[str]]) -> str:
    """
    Детерминированно закодировать query: ключи отсортированы,
    значения одного ключа в порядке добавления.

    Example:
        >>> encode_query({"b": ["2"], "a": ["1", "3"]})
        'a=1&a=3&b=2'
    """
    pairs = [(key, value) for key in sorted(query) for value in query[key]]
    return urlencode(pairs)


def apply_options(call: PreparedCall, options: Iterable[RequestOption]) -> PreparedCall:
    """
    Применить опции по порядку (fail-fast).

    Raises:
        OptionError: первая упавшая опция; остальные не применяются
    """
    for option in options:
        try:
            option(call)
        except OptionError:
            raise
        except Exception as e:
            name = getattr(option, "__qualname__", repr(option))
            raise OptionError(f"request option {name} failed: {e}") from e
    return call


# ==================== Встроенные опции ====================

def set_header(key: str, value: str) -> RequestOption:
    """
    Установить заголовок (перезаписывает предыдущее значение).

    Невалидные ключ/значение (пустой ключ, CR, LF, NUL) дают OptionError
    в момент применения.
    """
    def option(call: PreparedCall) -> None:
        if not key or not key.strip():
            raise OptionError("header key must not be empty")
        for text in (key, value):
            if any(ch in str(text) for ch in _FORBIDDEN_HEADER_CHARS):
                raise OptionError(f"invalid header {key!r}: control characters are not allowed")
        call.headers[key] = str(value)

    option.__qualname__ = f"set_header({key!r})"
    return option


def set_header_default(key: str, value: str) -> RequestOption:
    """
    Установить заголовок, только если предыдущие опции его не задали.

    Example:
        >>> apply_options(call, [set_header("Accept", "text/csv"), set_header_default("Accept", "*/*")])
    """
    def option(call: PreparedCall) -> None:
        call.headers.setdefault(key, value)

    option.__qualname__ = f"set_header_default({key!r})"
    return option


def set_headers(headers: Mapping[str, str]) -> RequestOption:
    """Установить несколько заголовков по порядку."""
    options = [set_header(k, v) for k, v in headers.items()]

    def option(call: PreparedCall) -> None:
        apply_options(call, options)

    return option


def set_type_json() -> RequestOption:
    """Content-Type: application/json; charset=UTF-8"""
    return set_header("Content-Type", CONTENT_TYPE_JSON)


def set_type_xml() -> RequestOption:
    """Content-Type: application/xml; charset=UTF-8"""
    return set_header("Content-Type", CONTENT_TYPE_XML)


def set_type_form() -> RequestOption:
    """Content-Type: application/x-www-form-urlencoded"""
    return set_header("Content-Type", CONTENT_TYPE_FORM)


def set_user_agent(user_agent: str) -> RequestOption:
    return set_header("User-Agent", user_agent)


def set_bearer_token(token: str) -> RequestOption:
    """Authorization: Bearer <token>"""
    return set_header("Authorization", f"Bearer {token}")


QueryValues = Union[Mapping[str, Union[str, Sequence[str]]], Sequence[Tuple[str, str]]]


def set_query(values: QueryValues) -> RequestOption:
    """
    Добавить query параметры.

    Семантика аддитивная: каждая пара (key, value) добавляется к уже
    существующим значениям ключа (в том числе из исходного URL и из
    предыдущих set_query). После этого весь query перекодируется
    с сортировкой по ключу.

    Args:
        values: {key: value}, {key: [values]} или [(key, value), ...]

    Example:
        >>> client.get(url, "", set_query({"a": "1"}), set_query({"a": "2"}))
        # -> ?a=1&a=2
    """
    if isinstance(values, Mapping):
        pairs: List[Tuple[str, str]] = []
        for key, value in values.items():
            if isinstance(value, (list, tuple)):
                pairs.extend((key, str(v)) for v in value)
            else:
                pairs.append((key, str(value)))
    else:
        pairs = [(key, str(value)) for key, value in values]

    def option(call: PreparedCall) -> None:
        for key, value in pairs:
            call.add_query(key, value)

    return option


def set_timeout(seconds: float) -> RequestOption:
    """Переопределить таймаут попытки для этого вызова."""
    def option(call: PreparedCall) -> None:
        if seconds <= 0:
            raise OptionError(f"timeout must be positive, got {seconds}")
        call.timeout = float(seconds)

    return option
