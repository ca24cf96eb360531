# src/resilient_http/core/codecs.py
"""
Кодеки тела запроса/ответа для JSONClient и XMLClient.

Кодек знает три вещи: как превратить значение в bytes, как разобрать
bytes в значение нужного типа и какой Content-Type ставить запросу.
Валидация и приведение типов делается через pydantic TypeAdapter, поэтому
целевым типом может быть pydantic модель, dataclass, TypedDict или
встроенный тип (dict, list[int], ...).
"""

import dataclasses
import types
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Union, get_args, get_origin, get_type_hints

from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from .exceptions import DecodeError, EncodeError
from .options import RequestOption, set_type_json, set_type_xml

_ANY_ADAPTER: TypeAdapter = TypeAdapter(Any)


@lru_cache(maxsize=256)
def _adapter(target_type: Any) -> TypeAdapter:
    return TypeAdapter(target_type)


def _validate_python(value: Any, target_type: Any) -> Any:
    try:
        return _adapter(target_type).validate_python(value)
    except ValidationError as e:
        raise DecodeError(f"unmarshal response body into {_type_name(target_type)}: {e}") from e


def _type_name(target_type: Any) -> str:
    return getattr(target_type, "__name__", None) or repr(target_type)


class Codec(ABC):
    """Интерфейс кодека."""

    @abstractmethod
    def encode(self, value: Any) -> bytes:
        """
        Raises:
            EncodeError: значение не сериализуется
        """

    @abstractmethod
    def decode(self, data: bytes, target_type: Any = None) -> Any:
        """
        Raises:
            DecodeError: данные невалидны или не подходят под target_type
        """

    @abstractmethod
    def content_type_option(self) -> RequestOption:
        """Опция, выставляющая Content-Type запроса."""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# JSON
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class JSONCodec(Codec):
    """
    JSON через pydantic.

    Example:
        >>> codec = JSONCodec()
        >>> codec.encode({"name": "x"})
        b'{"name":"x"}'
        >>> codec.decode(b'{"errno": 0}', Reply)
        Reply(errno=0, errmsg='')
    """

    def encode(self, value: Any) -> bytes:
        try:
            return _ANY_ADAPTER.dump_json(value)
        except PydanticSerializationError as e:
            raise EncodeError(f"marshal request body: {e}") from e

    def decode(self, data: bytes, target_type: Any = None) -> Any:
        try:
            return _adapter(Any if target_type is None else target_type).validate_json(data)
        except ValidationError as e:
            raise DecodeError(f"unmarshal response body into {_type_name(target_type)}: {e}") from e

    def content_type_option(self) -> RequestOption:
        return set_type_json()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# XML
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

TEXT_KEY = "#text"
ATTR_PREFIX = "@"


class XMLCodec(Codec):
    """
    XML через xml.etree.ElementTree.

    Кодирование: Element пишется как есть; dataclass, pydantic модель или
    mapping превращается в элемент. Имя корня берется из атрибута класса
    ``__xml_tag__`` или из имени класса; у mapping корнем служит
    единственный ключ. Ключи с префиксом "@" становятся атрибутами,
    списки - повторяющимися элементами.

    Декодирование: без target_type возвращается корневой Element, иначе
    элемент переводится в dict (атрибуты и дочерние элементы как ключи)
    и валидируется pydantic в target_type.

    Example:
        >>> @dataclass
        ... class Person:
        ...     __xml_tag__ = "person"
        ...     name: str
        >>> XMLCodec().encode(Person(name="Ann"))
        b'<person><name>Ann</name></person>'
    """

    def encode(self, value: Any) -> bytes:
        try:
            element = value if isinstance(value, ET.Element) else self._to_element(value)
            return ET.tostring(element, encoding="unicode").encode("utf-8")
        except (TypeError, ValueError, PydanticSerializationError) as e:
            raise EncodeError(f"marshal request body: {e}") from e

    def decode(self, data: bytes, target_type: Any = None) -> Any:
        try:
            root = ET.fromstring(data)
        except ET.ParseError as e:
            raise DecodeError(f"unmarshal response body: {e}") from e

        if target_type is None or target_type is ET.Element:
            return root
        value = _fit(element_to_dict(root), target_type)
        return _validate_python(value, target_type)

    def content_type_option(self) -> RequestOption:
        return set_type_xml()

    def _to_element(self, value: Any) -> ET.Element:
        if isinstance(value, Mapping):
            if len(value) != 1:
                raise ValueError("mapping must have exactly one root key")
            (tag, content), = value.items()
            return dict_to_element(str(tag), content)

        tag = getattr(type(value), "__xml_tag__", None) or type(value).__name__
        if isinstance(value, BaseModel):
            content = value.model_dump(mode="json", by_alias=True)
        elif dataclasses.is_dataclass(value) and not isinstance(value, type):
            content = _ANY_ADAPTER.dump_python(value, mode="json")
        else:
            raise TypeError(f"cannot marshal {type(value).__name__} to XML")
        return dict_to_element(tag, content)


def dict_to_element(tag: str, content: Any) -> ET.Element:
    """
    Построить элемент из значения.

    Example:
        >>> ET.tostring(dict_to_element("a", {"@id": 1, "b": [1, 2]}))
        b'<a id="1"><b>1</b><b>2</b></a>'
    """
    element = ET.Element(tag)
    _fill(element, content)
    return element


def _fill(element: ET.Element, content: Any) -> None:
    if isinstance(content, Mapping):
        for key, value in content.items():
            key = str(key)
            if key.startswith(ATTR_PREFIX):
                element.set(key[len(ATTR_PREFIX):], _scalar(value))
            elif key == TEXT_KEY:
                element.text = _scalar(value)
            elif isinstance(value, (list, tuple)):
                for item in value:
                    _fill(ET.SubElement(element, key), item)
            else:
                _fill(ET.SubElement(element, key), value)
    elif content is not None:
        element.text = _scalar(content)


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (Mapping, list, tuple)):
        raise TypeError(f"cannot use {type(value).__name__} as XML text or attribute")
    return str(value)


def element_to_dict(element: ET.Element) -> Any:
    """
    Обратное преобразование: атрибуты и дочерние элементы -> ключи.

    Элемент без атрибутов и детей дает свой текст. Повторяющиеся
    дочерние элементы собираются в список.

    Example:
        >>> element_to_dict(ET.fromstring('<a id="1"><b>x</b><b>y</b></a>'))
        {'id': '1', 'b': ['x', 'y']}
    """
    children = list(element)
    if not children and not element.attrib:
        return element.text or ""

    result: Dict[str, Any] = dict(element.attrib)
    for child in children:
        value = element_to_dict(child)
        if child.tag in result and child.tag not in element.attrib:
            existing = result[child.tag]
            if isinstance(existing, list):
                existing.append(value)
            else:
                result[child.tag] = [existing, value]
        else:
            result[child.tag] = value

    text = (element.text or "").strip()
    if text:
        result[TEXT_KEY] = text
    return result


_LIST_ORIGINS = (list, tuple, set, frozenset)
_UNION_TYPE = getattr(types, "UnionType", Union)  # X | Y


def _fit(value: Any, target_type: Any) -> Any:
    """
    Подогнать форму dict из XML под аннотации целевого типа.

    Единственный дочерний элемент XML неотличим от списка из одного
    элемента, поэтому для полей-списков значение оборачивается в список.
    """
    origin = get_origin(target_type)

    if origin is Union or origin is _UNION_TYPE:
        args = [a for a in get_args(target_type) if a is not type(None)]
        return _fit(value, args[0]) if len(args) == 1 else value

    if origin in _LIST_ORIGINS or target_type in _LIST_ORIGINS:
        if value in (None, ""):
            items: List[Any] = []
        elif isinstance(value, list):
            items = value
        else:
            items = [value]
        args = get_args(target_type)
        return [_fit(item, args[0] if args else Any) for item in items]

    if isinstance(value, dict):
        fields = _field_types(target_type)
        if fields:
            return {key: _fit(item, fields.get(key, Any)) for key, item in value.items()}
    return value


def _field_types(target_type: Any) -> Dict[str, Any]:
    if isinstance(target_type, type) and issubclass(target_type, BaseModel):
        fields: Dict[str, Any] = {}
        for name, info in target_type.model_fields.items():
            fields[info.alias or name] = info.annotation
        return fields
    if dataclasses.is_dataclass(target_type) and isinstance(target_type, type):
        try:
            return get_type_hints(target_type)
        except (NameError, TypeError):
            return {}
    return {}


JSON_CODEC = JSONCodec()
XML_CODEC = XMLCodec()

