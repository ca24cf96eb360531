"""Utility modules for resilient-http."""

from .sanitizer import (
    mask_sensitive_data,
    mask_string,
    mask_headers,
    is_sensitive_key,
    add_sensitive_keys,
)

__all__ = [
    'mask_sensitive_data',
    'mask_string',
    'mask_headers',
    'is_sensitive_key',
    'add_sensitive_keys',
]
