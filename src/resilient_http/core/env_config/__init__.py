"""
Environment and file configuration for resilient-http.

Example:
    >>> from resilient_http.core.env_config import load_from_env, load_from_file
    >>>
    >>> config = load_from_env()                      # RESILIENT_HTTP_* + .env
    >>> config = load_from_env(timeout=5)             # with overrides
    >>> config = load_from_file("client.yaml")
"""

from .settings import ClientSettings, ENV_PREFIX, parse_backoffs
from .loader import load_from_env, load_settings
from .file_loader import load_from_file, settings_from_dict

__all__ = [
    "ClientSettings",
    "ENV_PREFIX",
    "parse_backoffs",
    "load_from_env",
    "load_settings",
    "load_from_file",
    "settings_from_dict",
]
