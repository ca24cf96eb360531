"""
Configuration loader from environment variables and .env files.
"""

from typing import Optional

from pydantic import ValidationError

from ..config import ClientConfig
from ..exceptions import ConfigurationError
from .settings import ClientSettings


def load_settings(env_file: Optional[str] = ".env", **overrides) -> ClientSettings:
    """
    Прочитать ClientSettings.

    Raises:
        ConfigurationError: неизвестный override или невалидное значение
    """
    unknown = sorted(set(overrides) - set(ClientSettings.model_fields))
    if unknown:
        raise ConfigurationError(f"unknown settings: {', '.join(unknown)}")

    try:
        return ClientSettings(_env_file=env_file, **overrides)
    except ValidationError as e:
        raise ConfigurationError(f"invalid environment configuration: {e}") from e


def load_from_env(env_file: Optional[str] = ".env", **overrides) -> ClientConfig:
    """
    Load ClientConfig from environment variables.

    Priority (highest to lowest):
    1. **overrides - explicit parameters
    2. Environment variables (RESILIENT_HTTP_*)
    3. .env file
    4. Defaults

    Args:
        env_file: Путь к .env файлу (None - не читать файл)
        **overrides: Значения полей ClientSettings

    Returns:
        ClientConfig instance

    Example:
        >>> config = load_from_env()
        >>> config = load_from_env(env_file=".env.prod", timeout=5)
    """
    return load_settings(env_file, **overrides).to_config()
