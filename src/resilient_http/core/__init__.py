"""Core модули resilient-http."""

from .config import ClientConfig, RetryConfig, PoolConfig, DEFAULT_TIMEOUT
from .context import Context, background
from .exceptions import (
    HTTPClientException,
    OptionError,
    EncodeError,
    ConfigurationError,
    TransportError,
    TimeoutError,
    ConnectionError,
    ProxyError,
    InvalidRequestError,
    HTTPError,
    DecodeError,
    DecompressionBombError,
    SinkError,
    CancelledError,
    classify_requests_exception,
    classify_httpx_exception,
)
from .options import (
    PreparedCall,
    RequestOption,
    apply_options,
    set_header,
    set_header_default,
    set_headers,
    set_type_json,
    set_type_xml,
    set_type_form,
    set_user_agent,
    set_bearer_token,
    set_query,
    set_timeout,
)
from .retry_engine import (
    Retrier,
    SingleAttempt,
    RetryClassifier,
    DefaultRetryClassifier,
    StreamResetRetryClassifier,
    RetryDecision,
    RetryState,
    constant_backoff,
    exponential_backoff,
)
from .transport import Transport, TransportResponse, RequestsTransport, LoggingTransport
from .http_client import HTTPClient
from .codecs import Codec, JSONCodec, XMLCodec
from .codec_client import JSONClient, XMLClient

__all__ = [
    # Config
    "ClientConfig",
    "RetryConfig",
    "PoolConfig",
    "DEFAULT_TIMEOUT",
    # Context
    "Context",
    "background",
    # Exceptions
    "HTTPClientException",
    "OptionError",
    "EncodeError",
    "ConfigurationError",
    "TransportError",
    "TimeoutError",
    "ConnectionError",
    "ProxyError",
    "InvalidRequestError",
    "HTTPError",
    "DecodeError",
    "DecompressionBombError",
    "SinkError",
    "CancelledError",
    "classify_requests_exception",
    "classify_httpx_exception",
    # Options
    "PreparedCall",
    "RequestOption",
    "apply_options",
    "set_header",
    "set_header_default",
    "set_headers",
    "set_type_json",
    "set_type_xml",
    "set_type_form",
    "set_user_agent",
    "set_bearer_token",
    "set_query",
    "set_timeout",
    # Retry
    "Retrier",
    "SingleAttempt",
    "RetryClassifier",
    "DefaultRetryClassifier",
    "StreamResetRetryClassifier",
    "RetryDecision",
    "RetryState",
    "constant_backoff",
    "exponential_backoff",
    # Transport
    "Transport",
    "TransportResponse",
    "RequestsTransport",
    "LoggingTransport",
    # Clients
    "HTTPClient",
    "Codec",
    "JSONCodec",
    "XMLCodec",
    "JSONClient",
    "XMLClient",
]
