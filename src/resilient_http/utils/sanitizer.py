# src/resilient_http/utils/sanitizer.py
"""
Маскирование чувствительных данных в логах.

Клиент пишет в логи URL, тело запроса и результат, поэтому пароли,
токены и ключи из них вырезаются до того, как попадут в handler.
"""

import re
from typing import Any, Dict, Mapping

MASK = "***REDACTED***"

# Ключи, которые маскируются целиком (сравнение без учета регистра)
SENSITIVE_KEYS = {
    'password', 'passwd', 'pwd',
    'token', 'access_token', 'refresh_token', 'id_token', 'jwt',
    'secret', 'client_secret', 'api_key', 'apikey', 'private_key',
    'authorization', 'proxy_authorization', 'auth',
    'cookie', 'session_id', 'sessionid',
    'credit_card', 'card_number', 'cvv', 'cvc', 'otp', 'pin',
}

# Ключи вида <что-то>_token, <что-то>_secret и т.п.
SENSITIVE_SUFFIXES = ('_password', '_token', '_secret', '_key')

# Чувствительные значения внутри строк (заголовки, тела форм, query)
SENSITIVE_PATTERNS = [
    (re.compile(r'(Bearer\s+)([A-Za-z0-9\-._~+/]+=*)', re.IGNORECASE), r'\1' + MASK),
    (re.compile(r'(Basic\s+)([A-Za-z0-9+/]+=*)', re.IGNORECASE), r'\1' + MASK),
    (re.compile(r'((?:api[_-]?key|token|password|secret)=)([^\s&,;"]+)', re.IGNORECASE), r'\1' + MASK),
    (re.compile(r'("(?:api[_-]?key|token|password|secret)"\s*:\s*")([^"]*)(")', re.IGNORECASE), r'\1' + MASK + r'\3'),
]

_USERINFO = re.compile(r'://([^:/@]+):([^@/]+)@')


def is_sensitive_key(key: Any) -> bool:
    key = str(key).lower().replace('-', '_')
    return key in SENSITIVE_KEYS or key.endswith(SENSITIVE_SUFFIXES)


def mask_sensitive_data(data: Any, mask: str = MASK) -> Any:
    """
    Рекурсивно маскирует чувствительные данные в словарях, списках, строках.

    Возвращает копию; объекты других типов возвращаются как есть.

    Examples:
        >>> mask_sensitive_data({"user": "alice", "password": "123"})
        {'user': 'alice', 'password': '***REDACTED***'}

        >>> mask_sensitive_data("login=alice&password=123")
        'login=alice&password=***REDACTED***'
    """
    if isinstance(data, str):
        return mask_string(data, mask)
    if isinstance(data, Mapping):
        return mask_headers(data, mask)
    if isinstance(data, (list, tuple)):
        return type(data)(mask_sensitive_data(item, mask) for item in data)
    return data


def mask_string(text: str, mask: str = MASK) -> str:
    result = _USERINFO.sub(rf'://\1:{mask}@', text)
    for pattern, replacement in SENSITIVE_PATTERNS:
        if mask != MASK:
            replacement = replacement.replace(MASK, mask)
        result = pattern.sub(replacement, result)
    return result


def mask_headers(headers: Mapping[str, Any], mask: str = MASK) -> Dict[str, Any]:
    """
    Examples:
        >>> mask_headers({"Authorization": "Bearer t", "User-Agent": "app/1.0"})
        {'Authorization': '***REDACTED***', 'User-Agent': 'app/1.0'}
    """
    return {
        key: mask if is_sensitive_key(key) else mask_sensitive_data(value, mask)
        for key, value in headers.items()
    }


def add_sensitive_keys(*keys: str) -> None:
    """Расширить список маскируемых ключей (например, 'x_internal_sign')."""
    for key in keys:
        SENSITIVE_KEYS.add(key.lower().replace('-', '_'))
