"""Extraction of API keys from request headers."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

__all__ = ["AuthError", "get_api_key"]

_HEADER = "authorization"
_SCHEME = "ApiKey"


class AuthError(Exception):
    """Raised when a request carries no usable API key."""


def _header_value(headers: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> str:
    items = headers.items() if hasattr(headers, "items") else headers
    for key, value in items:
        if key.lower() != _HEADER:
            continue
        if isinstance(value, (list, tuple)):
            return value[0] if value else ""
        return value
    return ""


def get_api_key(headers) -> str:
    """Return the key from an ``Authorization: ApiKey <key>`` header.

    Header names are matched case-insensitively; values may be strings or
    lists of strings, in which case the first one is used.
    """
    value = _header_value(headers)
    if not value:
        raise AuthError("no authentication info found")

    parts = value.split(" ")
    if len(parts) != 2:
        raise AuthError("malformed auth header")
    scheme, key = parts
    if scheme != _SCHEME:
        raise AuthError("malformed first part of auth header")
    return key