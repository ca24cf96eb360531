"""
Tests for JSON and XML codecs.
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional

import pytest
from pydantic import BaseModel
from typing_extensions import TypedDict

from resilient_http.core.codecs import (
    JSONCodec,
    XMLCodec,
    dict_to_element,
    element_to_dict,
)
from resilient_http.core.exceptions import DecodeError, EncodeError
from resilient_http.core.options import CONTENT_TYPE_JSON, CONTENT_TYPE_XML, PreparedCall


class Reply(BaseModel):
    errno: int
    errmsg: str = ""


@dataclass
class Point:
    x: int
    y: int


class Movie(TypedDict):
    title: str
    year: int


@dataclass
class Person:
    __xml_tag__ = "person"
    name: str
    age: int


@dataclass
class Team:
    __xml_tag__ = "team"
    name: str
    member: List[str] = field(default_factory=list)


class Catalog(BaseModel):
    id: str
    item: List[str]
    note: Optional[str] = None


# ==================== JSON ====================

class TestJSONCodec:

    def test_encode_builtins(self):
        assert JSONCodec().encode({"name": "x", "tags": [1, 2]}) == b'{"name":"x","tags":[1,2]}'

    def test_encode_model_and_dataclass(self):
        codec = JSONCodec()
        assert codec.encode(Reply(errno=0, errmsg="ok")) == b'{"errno":0,"errmsg":"ok"}'
        assert codec.encode(Point(1, 2)) == b'{"x":1,"y":2}'

    def test_encode_unserializable(self):
        with pytest.raises(EncodeError, match="marshal request body"):
            JSONCodec().encode({"value": object()})

    def test_decode_into_model(self):
        reply = JSONCodec().decode(b'{"errno": 0, "errmsg": "hello world"}', Reply)
        assert reply == Reply(errno=0, errmsg="hello world")

    def test_decode_into_dataclass_typeddict_and_list(self):
        codec = JSONCodec()
        assert codec.decode(b'{"x": 1, "y": 2}', Point) == Point(1, 2)
        assert codec.decode(b'{"title": "Heat", "year": 1995}', Movie) == {"title": "Heat", "year": 1995}
        assert codec.decode(b"[1, 2, 3]", List[int]) == [1, 2, 3]

    def test_decode_without_type(self):
        assert JSONCodec().decode(b'{"a": [1]}') == {"a": [1]}

    def test_decode_invalid_json(self):
        with pytest.raises(DecodeError, match="unmarshal response body"):
            JSONCodec().decode(b"{not json", Reply)

    def test_decode_wrong_shape(self):
        with pytest.raises(DecodeError):
            JSONCodec().decode(b'{"errmsg": "no errno"}', Reply)

    def test_content_type_option(self):
        call = PreparedCall("POST", "https://example.com")
        JSONCodec().content_type_option()(call)
        assert call.headers["Content-Type"] == CONTENT_TYPE_JSON


# ==================== XML ====================

class TestXMLCodec:

    def test_encode_dataclass_with_tag(self):
        assert XMLCodec().encode(Person(name="Ann", age=30)) == b"<person><name>Ann</name><age>30</age></person>"

    def test_encode_model_uses_class_name(self):
        assert XMLCodec().encode(Reply(errno=0, errmsg="ok")) == b"<Reply><errno>0</errno><errmsg>ok</errmsg></Reply>"

    def test_encode_mapping_with_attributes_and_lists(self):
        data = {"order": {"@id": 7, "item": ["a", "b"], "paid": True}}
        assert XMLCodec().encode(data) == b'<order id="7"><item>a</item><item>b</item><paid>true</paid></order>'

    def test_encode_element(self):
        element = ET.Element("ping")
        assert XMLCodec().encode(element) == b"<ping />"

    def test_encode_escapes_text(self):
        assert XMLCodec().encode({"q": "a < b & c"}) == b"<q>a &lt; b &amp; c</q>"

    @pytest.mark.parametrize("value", [
        {"a": 1, "b": 2},
        {},
        ["not", "a", "mapping"],
        42,
    ])
    def test_encode_rejects_unsupported(self, value):
        with pytest.raises(EncodeError):
            XMLCodec().encode(value)

    def test_decode_without_type_returns_element(self):
        root = XMLCodec().decode(b"<reply><errno>0</errno></reply>")
        assert isinstance(root, ET.Element)
        assert root.find("errno").text == "0"

    def test_decode_into_model(self):
        data = b"<Reply><errno>0</errno><errmsg>hello world</errmsg></Reply>"
        assert XMLCodec().decode(data, Reply) == Reply(errno=0, errmsg="hello world")

    def test_decode_attributes(self):
        data = b'<point x="3" y="4"/>'
        assert XMLCodec().decode(data, Point) == Point(3, 4)

    def test_decode_single_child_into_list_field(self):
        data = b"<team><name>core</name><member>ann</member></team>"
        assert XMLCodec().decode(data, Team) == Team(name="core", member=["ann"])

    def test_decode_repeated_children(self):
        data = b'<catalog id="c1"><item>a</item><item>b</item><note>n</note></catalog>'
        assert XMLCodec().decode(data, Catalog) == Catalog(id="c1", item=["a", "b"], note="n")

    def test_decode_malformed(self):
        with pytest.raises(DecodeError):
            XMLCodec().decode(b"<unclosed>", Reply)

    def test_decode_wrong_shape(self):
        with pytest.raises(DecodeError):
            XMLCodec().decode(b"<Reply><errmsg>x</errmsg></Reply>", Reply)

    def test_content_type_option(self):
        call = PreparedCall("POST", "https://example.com")
        XMLCodec().content_type_option()(call)
        assert call.headers["Content-Type"] == CONTENT_TYPE_XML


def test_element_to_dict():
    element = ET.fromstring('<a id="1"><b>x</b><b>y</b><c>z</c></a>')
    assert element_to_dict(element) == {"id": "1", "b": ["x", "y"], "c": "z"}


def test_element_to_dict_mixed_text():
    element = ET.fromstring('<price currency="EUR">9.99</price>')
    assert element_to_dict(element) == {"currency": "EUR", "#text": "9.99"}


def test_dict_to_element_text_key():
    element = dict_to_element("price", {"@currency": "EUR", "#text": 9.99})
    assert ET.tostring(element) == b'<price currency="EUR">9.99</price>'
