"""
Configuration file loader for YAML and JSON files.

Файл содержит те же поля, что и ClientSettings. Поля можно
сгруппировать по секциям retry/pool/log:

    resilient_http:
      timeout: 5
      retry:
        backoffs: [0.1, 0.5]
        classifier: stream_reset
      log:
        enabled: true
        format: json

Переменные окружения при загрузке из файла не читаются.
"""

import json
from pathlib import Path
from typing import Any, Dict, Union

from pydantic import ValidationError

from ..config import ClientConfig
from ..exceptions import ConfigurationError
from .settings import ClientSettings

ROOT_SECTION = "resilient_http"
SECTIONS = ("retry", "pool", "log")


def load_from_file(path: Union[str, Path]) -> ClientConfig:
    """
    Загрузить ClientConfig из .yaml/.yml/.json файла.

    Raises:
        FileNotFoundError: Если файл не найден
        ConfigurationError: Если формат не поддерживается или конфиг невалидный
        ImportError: Если PyYAML не установлен (для YAML)

    Example:
        >>> config = load_from_file("client.yaml")
        >>> client = HTTPClient(config)
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = _read_yaml(path)
    elif suffix == ".json":
        data = _read_json(path)
    else:
        raise ConfigurationError(
            f"Unsupported config file format: {suffix}. Supported formats: .yaml, .yml, .json"
        )

    return settings_from_dict(data, str(path)).to_config()


def settings_from_dict(data: Any, source: str = "<dict>") -> ClientSettings:
    """Провалидировать разобранный конфиг (секции разворачиваются в плоские поля)."""
    if isinstance(data, dict) and ROOT_SECTION in data:
        data = data[ROOT_SECTION]
    if not isinstance(data, dict) or not data:
        raise ConfigurationError(f"Config must be a non-empty mapping in {source}")

    flat: Dict[str, Any] = {}
    for key, value in data.items():
        if key in SECTIONS and isinstance(value, dict):
            for name, item in value.items():
                flat[f"{key}_{name}"] = item
        else:
            flat[key] = value

    try:
        # model_validate не читает окружение, только переданные данные
        return ClientSettings.model_validate(flat)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config in {source}: {e}") from e


def _read_yaml(path: Path) -> Any:
    try:
        import yaml
    except ImportError:
        raise ImportError(
            "PyYAML is required to load YAML configs. "
            "Install it with: pip install resilient-http[yaml] or pip install pyyaml"
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML syntax in {path}: {e}") from e


def _read_json(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON syntax in {path}: {e}") from e
