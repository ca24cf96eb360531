"""
Тесты HTTPClient: конвейер опций, повторы, статусы, распаковка.
"""

import gzip
import threading
import time

import pytest
import requests
import responses
from responses import matchers

from resilient_http.core.config import ClientConfig
from resilient_http.core.context import background
from resilient_http.core.exceptions import (
    CancelledError,
    ConfigurationError,
    ConnectionError,
    DecodeError,
    DecompressionBombError,
    HTTPError,
    InvalidRequestError,
    OptionError,
)
from resilient_http.core.http_client import HTTPClient, preview, to_body_bytes
from resilient_http.core.options import (
    set_header,
    set_query,
    set_timeout,
    set_type_form,
    set_user_agent,
)
from resilient_http.core.retry_engine import StreamResetRetryClassifier
from resilient_http.core.transport import Transport

URL = "https://api.example.com/hello"


class TestClientInit:

    def test_default_config(self):
        client = HTTPClient()
        assert client.config.timeout == 15.0
        client.close()

    def test_kwargs_build_config(self):
        client = HTTPClient(timeout=3, backoffs=[0.1])
        assert client.config.timeout == 3
        assert client.config.retry.backoffs == (0.1,)
        client.close()

    def test_config_and_kwargs_conflict(self):
        with pytest.raises(ConfigurationError):
            HTTPClient(ClientConfig(), timeout=3)

    def test_immutable(self, client):
        with pytest.raises(RuntimeError, match="immutable"):
            client.foo = "bar"

    def test_context_manager_closes_owned_transport_only(self, fake_transport):
        transport = fake_transport()
        with HTTPClient(ClientConfig(transport=transport)):
            pass
        assert transport.closed is False


# ==================== Basic calls ====================

@responses.activate
def test_get_with_query(client):
    responses.add(
        responses.GET, URL,
        body="hello world",
        match=[matchers.query_param_matcher({"hello": "world"})],
    )

    assert client.get(URL, "", set_query({"hello": "world"})) == "hello world"
    assert responses.calls[0].request.url == URL + "?hello=world"


@responses.activate
def test_form_post(client):
    responses.add(responses.POST, URL, body="hello world")

    assert client.post(URL, "hello=world", set_type_form()) == "hello world"
    sent = responses.calls[0].request
    assert sent.body == b"hello=world"
    assert sent.headers["Content-Type"] == "application/x-www-form-urlencoded"


@responses.activate
@pytest.mark.parametrize("method", ["put", "patch", "delete", "options"])
def test_other_verbs(client, method):
    responses.add(method.upper(), URL, body=method)
    assert getattr(client, method)(URL) == method
    assert responses.calls[0].request.method == method.upper()


@responses.activate
def test_head(client):
    responses.add(responses.HEAD, URL)
    assert client.head(URL) == ""


@responses.activate
def test_do_custom_method(client):
    responses.add("PROPFIND", URL, body="dav")
    assert client.do("PROPFIND", URL) == "dav"


@responses.activate
def test_bytes_body(client):
    responses.add(responses.POST, URL, body="ok")
    client.post(URL, b"\x00\x01binary")
    assert responses.calls[0].request.body == b"\x00\x01binary"


@responses.activate
def test_do_bytes(client):
    responses.add(responses.GET, URL, body=b"\xff\x00raw")
    assert client.do_bytes("GET", URL) == b"\xff\x00raw"


@responses.activate
def test_charset_from_content_type(client):
    responses.add(responses.GET, URL, body="привет".encode("cp1251"),
                  content_type="text/plain; charset=windows-1251")
    assert client.get(URL) == "привет"


# ==================== Options ====================

@responses.activate
def test_default_options_then_call_options():
    responses.add(responses.GET, URL, body="ok")
    config = ClientConfig(default_options=(set_header("X-Mode", "default"), set_user_agent("svc/1")))

    with HTTPClient(config) as client:
        client.get(URL, "", set_header("X-Mode", "call"))

    headers = responses.calls[0].request.headers
    assert headers["X-Mode"] == "call"
    assert headers["User-Agent"] == "svc/1"


def test_failing_option_makes_no_network_call(fake_transport):
    transport = fake_transport()
    client = HTTPClient(ClientConfig(transport=transport))

    with pytest.raises(OptionError):
        client.get(URL, "", set_header("X-Bad", "a\r\nb"))

    assert transport.calls == []


def test_failing_option_not_retried(fake_transport):
    transport = fake_transport()
    client = HTTPClient(ClientConfig(transport=transport).with_retry([0, 0]))

    def broken(call):
        raise RuntimeError("option bug")

    with pytest.raises(OptionError, match="option bug"):
        client.get(URL, "", broken)
    assert transport.calls == []


def test_options_applied_once_per_attempt(fake_transport, fake_response):
    """Каждая попытка получает свежую копию запроса: query не накапливается."""
    transport = fake_transport(
        ConnectionError("reset"),
        ConnectionError("reset"),
        fake_response(200, b"ok"),
    )
    client = HTTPClient(ClientConfig(transport=transport).with_retry([0, 0]))
    applied = []

    def counting(call):
        applied.append(call)

    assert client.get(URL, "", set_query({"a": "1"}), counting) == "ok"
    assert len(applied) == 3
    assert len({id(call) for call in applied}) == 3
    assert [c["url"] for c in transport.calls] == [URL + "?a=1"] * 3


def test_set_timeout_overrides_client_timeout(fake_transport):
    transport = fake_transport()
    client = HTTPClient(ClientConfig(transport=transport, timeout=30))
    client.get(URL, "", set_timeout(2))
    client.get(URL)
    assert transport.calls[0]["timeout"] == 2
    assert transport.calls[1]["timeout"] == 30


# ==================== Status & decoding ====================

@responses.activate
def test_non_2xx_single_attempt(retry_client):
    responses.add(responses.GET, URL, status=404, body="missing")

    with pytest.raises(HTTPError) as exc_info:
        retry_client.get(URL)

    assert exc_info.value.status_code == 404
    assert exc_info.value.status_text == "404 Not Found"
    assert len(responses.calls) == 1


@responses.activate
def test_redirect_status_without_following():
    responses.add(responses.GET, URL, status=302, headers={"Location": "https://elsewhere.example.com/"})
    with HTTPClient(ClientConfig(follow_redirects=False)) as client:
        with pytest.raises(HTTPError) as exc_info:
            client.get(URL)
    assert exc_info.value.status_code == 302


@responses.activate
def test_gzip_body_decompressed_without_asking(client):
    responses.add(responses.GET, URL, body=gzip.compress(b"hello world"),
                  headers={"Content-Encoding": "gzip"})

    assert client.get(URL) == "hello world"


@responses.activate
def test_decompress_disabled():
    compressed = gzip.compress(b"hello")
    responses.add(responses.GET, URL, body=compressed, headers={"Content-Encoding": "gzip"})
    with HTTPClient(ClientConfig(decompress=False)) as client:
        assert client.do_bytes("GET", URL) == compressed


@responses.activate
def test_corrupt_gzip_not_retried(retry_client):
    responses.add(responses.GET, URL, body=b"not gzip at all", headers={"Content-Encoding": "gzip"})

    with pytest.raises(DecodeError):
        retry_client.get(URL)
    assert len(responses.calls) == 1


@responses.activate
def test_accept_encoding_lists_only_decodable_codings(client):
    responses.add(responses.GET, URL, body="plain")

    client.get(URL)
    assert responses.calls[0].request.headers["Accept-Encoding"] == "gzip, deflate"


@responses.activate
def test_brotli_body_rejected(client):
    responses.add(responses.GET, URL, body=b"\x1b\x0b\x00\xf8compressed", headers={"Content-Encoding": "br"})

    with pytest.raises(DecodeError, match="unsupported content encoding 'br'"):
        client.get(URL)


@responses.activate
def test_decompression_limit():
    responses.add(responses.GET, URL, body=gzip.compress(b"a" * 4096), headers={"Content-Encoding": "gzip"})

    with HTTPClient(ClientConfig(max_decompressed_size=1024)) as client:
        with pytest.raises(DecompressionBombError):
            client.get(URL)
    assert len(responses.calls) == 1


# ==================== Retry ====================

@responses.activate
def test_two_temporary_failures_then_success(retry_client):
    responses.add(responses.GET, URL, body=requests.exceptions.ConnectionError("reset 1"))
    responses.add(responses.GET, URL, body=requests.exceptions.ConnectionError("reset 2"))
    responses.add(responses.GET, URL, body="finally")

    assert retry_client.get(URL) == "finally"
    assert len(responses.calls) == 3


@responses.activate
def test_exhausted_retries_raise_last_error():
    for i in range(3):
        responses.add(responses.GET, URL, body=requests.exceptions.ConnectionError(f"reset {i}"))

    with HTTPClient(ClientConfig.create(backoffs=[0, 0])) as client:
        with pytest.raises(ConnectionError, match="reset 2"):
            client.get(URL)
    assert len(responses.calls) == 3


@responses.activate
def test_no_retry_config_single_attempt(client):
    responses.add(responses.GET, URL, body=requests.exceptions.ConnectionError("reset"))
    responses.add(responses.GET, URL, body="never")

    with pytest.raises(ConnectionError):
        client.get(URL)
    assert len(responses.calls) == 1


def test_retry_resends_same_body(fake_transport, fake_response):
    transport = fake_transport(ConnectionError("reset"), fake_response(200, b"ok"))
    client = HTTPClient(ClientConfig(transport=transport).with_retry([0]))

    client.post(URL, "payload=1")
    assert [c["body"] for c in transport.calls] == [b"payload=1", b"payload=1"]


def test_stream_reset_classifier(fake_transport, fake_response):
    from resilient_http.core.exceptions import TransportError

    transport = fake_transport(TransportError("stream error: PROTOCOL_ERROR"), fake_response(200, b"ok"))
    config = ClientConfig.create(transport=transport, backoffs=[0], classifier=StreamResetRetryClassifier())

    assert HTTPClient(config).get(URL) == "ok"
    assert len(transport.calls) == 2


def test_invalid_url_not_retried(retry_client):
    with pytest.raises(InvalidRequestError):
        retry_client.get("not-a-url")


def test_responses_closed_on_every_path(fake_transport, fake_response):
    ok = fake_response(200, b"ok")
    bad = fake_response(500, b"oops", reason="Internal Server Error")
    transport = fake_transport(ok, bad)
    client = HTTPClient(ClientConfig(transport=transport))

    client.get(URL)
    with pytest.raises(HTTPError):
        client.get(URL)
    assert ok.closed and bad.closed


# ==================== Cancellation ====================

def test_cancelled_context_makes_no_call(fake_transport):
    transport = fake_transport()
    ctx, cancel = background().with_cancel()
    cancel()

    with pytest.raises(CancelledError):
        HTTPClient(ClientConfig(transport=transport)).get(URL, ctx=ctx)
    assert transport.calls == []


def test_cancel_during_backoff(fake_transport):
    transport = fake_transport(ConnectionError("reset"))
    client = HTTPClient(ClientConfig(transport=transport).with_retry([30, 30]))
    ctx, cancel = background().with_cancel()
    threading.Timer(0.05, cancel).start()

    with pytest.raises(CancelledError):
        client.get(URL, ctx=ctx)
    assert len(transport.calls) == 1


def test_deadline_bounds_attempt_timeout(fake_transport):
    transport = fake_transport()
    client = HTTPClient(ClientConfig(transport=transport, timeout=30))
    client.get(URL, ctx=background().with_timeout(1))
    assert transport.calls[0]["timeout"] <= 1


class HangingTransport(Transport):
    """send() висит, пока тест его не отпустит."""

    def __init__(self, response):
        self.response = response
        self.calls = 0
        self.release = threading.Event()

    def send(self, call, timeout):
        self.calls += 1
        self.release.wait(5)
        return self.response

    def close(self):
        self.release.set()


def test_cancel_while_waiting_for_headers(fake_response):
    transport = HangingTransport(fake_response(200, b"late"))
    client = HTTPClient(ClientConfig(transport=transport).with_retry([0, 0]))
    ctx, cancel = background().with_cancel()
    threading.Timer(0.05, cancel).start()

    start = time.monotonic()
    with pytest.raises(CancelledError):
        client.get(URL, ctx=ctx)
    assert time.monotonic() - start < 2
    assert transport.calls == 1
    transport.release.set()
    client.close()


def test_cancel_closes_response_being_read(fake_transport, fake_response):
    class StalledResponse(fake_response):
        def __init__(self):
            super().__init__(200)
            self.closed_event = threading.Event()

        def iter_raw(self, chunk_size=8192):
            yield b"partial"
            if self.closed_event.wait(5):
                raise ConnectionError("read on closed response")
            yield b"rest"

        def close(self):
            super().close()
            self.closed_event.set()

    response = StalledResponse()
    client = HTTPClient(ClientConfig(transport=fake_transport(response)).with_retry([0, 0]))
    ctx, cancel = background().with_cancel()
    threading.Timer(0.05, cancel).start()

    start = time.monotonic()
    with pytest.raises(CancelledError):
        client.get(URL, ctx=ctx)
    assert time.monotonic() - start < 2
    assert response.closed_event.wait(1)


def test_result_after_cancel_not_returned(fake_transport, fake_response):
    ctx, cancel = background().with_cancel()

    class CancelOnRead(fake_response):
        def iter_raw(self, chunk_size=8192):
            cancel()
            yield b"done"

    transport = fake_transport(CancelOnRead(200))
    with pytest.raises(CancelledError):
        HTTPClient(ClientConfig(transport=transport)).get(URL, ctx=ctx)
    assert len(transport.calls) == 1


def test_background_context_runs_on_calling_thread(fake_transport):
    seen = []

    class RecordingTransport(fake_transport):
        def send(self, call, timeout):
            seen.append(threading.current_thread())
            return super().send(call, timeout)

    HTTPClient(ClientConfig(transport=RecordingTransport())).get(URL)
    assert seen == [threading.current_thread()]


# ==================== Helpers ====================

def test_to_body_bytes():
    assert to_body_bytes(None) == b""
    assert to_body_bytes("é") == "é".encode("utf-8")
    assert to_body_bytes(b"x") == b"x"
    assert to_body_bytes(bytearray(b"xy")) == b"xy"


@pytest.mark.parametrize("body", [5, ["a"], {"a": 1}, 1.5])
def test_unsupported_body_type_rejected(fake_transport, body):
    transport = fake_transport()
    with pytest.raises(TypeError, match="request body must be str, bytes or None"):
        HTTPClient(ClientConfig(transport=transport)).post(URL, body)
    assert transport.calls == []


def test_emit_logs_through_client_logger(debug_logs, fake_transport):
    client = HTTPClient(ClientConfig(transport=fake_transport()))
    client.emit("info", "wrapper event", step=2)

    record = [r for r in debug_logs.records if r.getMessage() == "wrapper event"][0]
    assert record.step == 2
    with pytest.raises(ValueError, match="unknown log level"):
        client.emit("verbose", "wrapper event")


def test_preview_truncates():
    assert preview(b"abcdef", 3) == "abc...(6 bytes)"
    assert preview(b"abc", 10) == "abc"
