"""resilient-http - HTTP клиент с повторами, отменой и structured logging."""

import logging
from importlib.metadata import version, PackageNotFoundError

from .core.http_client import HTTPClient
from .core.codec_client import JSONClient, XMLClient
from .async_client import AsyncHTTPClient
from .core.config import ClientConfig, RetryConfig, PoolConfig
from .core.context import Context, background
from .core.env_config import load_from_env, load_from_file
from .core.exceptions import (
    HTTPClientException,
    OptionError,
    EncodeError,
    ConfigurationError,
    TransportError,
    TimeoutError,
    ConnectionError,
    HTTPError,
    DecodeError,
    DecompressionBombError,
    SinkError,
    CancelledError,
)
from .core.logging import LoggingConfig
from .core.options import (
    PreparedCall,
    RequestOption,
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
from .core.retry_engine import (
    RetryClassifier,
    DefaultRetryClassifier,
    StreamResetRetryClassifier,
    RetryDecision,
    constant_backoff,
    exponential_backoff,
)

# NullHandler: без настройки логирования приложением записи никуда не пишутся
logging.getLogger('resilient_http').addHandler(logging.NullHandler())

try:
    __version__ = version("resilient-http")
except PackageNotFoundError:
    # Package is not installed (development mode)
    __version__ = "0.0.0-dev"

__all__ = [
    # Clients
    "HTTPClient",
    "AsyncHTTPClient",
    "JSONClient",
    "XMLClient",

    # Config
    "ClientConfig",
    "RetryConfig",
    "PoolConfig",
    "LoggingConfig",
    "load_from_env",
    "load_from_file",

    # Context
    "Context",
    "background",

    # Options
    "PreparedCall",
    "RequestOption",
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
    "RetryClassifier",
    "DefaultRetryClassifier",
    "StreamResetRetryClassifier",
    "RetryDecision",
    "constant_backoff",
    "exponential_backoff",

    # Exceptions
    "HTTPClientException",
    "OptionError",
    "EncodeError",
    "ConfigurationError",
    "TransportError",
    "TimeoutError",
    "ConnectionError",
    "HTTPError",
    "DecodeError",
    "DecompressionBombError",
    "SinkError",
    "CancelledError",
]
